"""KPI engine: derives pipeline metrics from raw aggregates, cache first.

Flow for ``compute_metric``:
1. Validate metric, window and filters (before touching the cache)
2. Serve a fresh cached ``MetricResponse`` unchanged if there is one
3. Otherwise await the aggregate source, derive, enforce the sample floor
4. Cache the response, hand it to the audit hook, return it

Degenerate derivations (zero denominators, too few samples) come back as
``value=None`` with a reason and are cached like any other result. Upstream
failures propagate and leave the cache untouched.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from app.core.cache import MetricCache, metrics_cache, utc_now
from app.core.config import Settings, get_settings
from app.core.errors import MetricContractError, UnknownMetricError
from app.core.fiscal import ROLLING_WINDOW_DAYS, FiscalInfo, fiscal_info, months_in_window
from app.models.base import isoformat_utc
from app.models.metric import (
    FilterParams,
    MetricName,
    MetricResponse,
    MetricSource,
    MetricWindow,
    WhatIfParams,
    WhatIfResults,
)
from app.services.aggregates import AggregateSource

logger = logging.getLogger(__name__)

INSUFFICIENT_SAMPLES = "insufficient samples"
NO_RESOURCE_PLAN = "No resource plan available for current bids"

AuditHook = Callable[[MetricResponse, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class MetricDefinition:
    """A KPI, the windows it can be computed over (default first) and its floor."""

    name: MetricName
    windows: tuple[MetricWindow, ...]
    description: str
    min_samples: int = 0
    ttl: float | None = None  # seconds; None → cache default

    @property
    def default_window(self) -> MetricWindow:
        return self.windows[0]


def build_catalogue(settings: Settings) -> dict[MetricName, MetricDefinition]:
    every_window = (
        MetricWindow.ROLLING_90D,
        MetricWindow.FISCAL_YTD,
        MetricWindow.CURRENT_MONTH,
        MetricWindow.ALL_TIME,
    )
    definitions = [
        MetricDefinition(
            name=MetricName.AWARDED_YTD,
            windows=(MetricWindow.FISCAL_YTD,),
            description="Sum of executed awards within the fiscal year",
        ),
        MetricDefinition(
            name=MetricName.PIPELINE_VALUE,
            windows=(MetricWindow.ALL_TIME,),
            description="Base bid value of open proposals and negotiations",
        ),
        MetricDefinition(
            name=MetricName.MONTHLY_AWARD_PACE,
            windows=(MetricWindow.ROLLING_90D, MetricWindow.FISCAL_YTD, MetricWindow.CURRENT_MONTH),
            description="Awards in the window divided by the months it spans",
        ),
        MetricDefinition(
            name=MetricName.PROJECTED_FY_END,
            windows=(MetricWindow.ROLLING_90D, MetricWindow.FISCAL_YTD),
            description="Awarded YTD plus monthly pace times months remaining",
        ),
        MetricDefinition(
            name=MetricName.PROJECTS_NEEDED,
            windows=(MetricWindow.ROLLING_90D,),
            description="Awards still needed to reach the annual target at the recent average size",
        ),
        MetricDefinition(
            name=MetricName.WIN_RATE,
            windows=every_window,
            description="Awards / (awards + losses)",
            min_samples=1,
        ),
        MetricDefinition(
            name=MetricName.AVG_PIPELINE_VELOCITY,
            windows=every_window,
            description="Average days from submission to award",
            min_samples=settings.min_samples_for_velocity,
            ttl=900,
        ),
        MetricDefinition(
            name=MetricName.CAPACITY_IF_ALL_BIDS_WIN,
            windows=(MetricWindow.ALL_TIME,),
            description="Value of current bids as a percentage of total capacity",
        ),
    ]
    return {d.name: d for d in definitions}


def coerce_filters(filters: FilterParams | Mapping[str, Any] | None) -> FilterParams:
    if filters is None:
        return FilterParams()
    if isinstance(filters, FilterParams):
        return filters
    if not isinstance(filters, Mapping):
        raise MetricContractError(f"Filters must be a mapping, got {type(filters).__name__}")
    try:
        return FilterParams.model_validate(dict(filters))
    except ValidationError as exc:
        raise MetricContractError(f"Malformed filter set: {exc.errors()[0]['msg']}") from exc


def safe_ratio(numerator: float, denominator: float) -> float | None:
    if not denominator:
        return None
    return numerator / denominator


def _upstream_null_reason(aggregates: Mapping[str, Any]) -> str | None:
    """Reason carried by an aggregate set that is already ``value=None``, else None."""
    if "value" in aggregates and aggregates["value"] is None:
        return aggregates.get("reason") or INSUFFICIENT_SAMPLES
    return None


@dataclass
class Derived:
    value: float | int | None
    params: dict[str, Any] = field(default_factory=dict)
    samples: int | None = None
    reason: str | None = None
    source: MetricSource = MetricSource.PIPELINE_PROJECTS


@dataclass(frozen=True)
class DerivationContext:
    now: datetime
    window: MetricWindow
    filters: FilterParams
    fiscal: FiscalInfo
    settings: Settings

    def window_params(self) -> dict[str, Any]:
        if self.window == MetricWindow.ROLLING_90D:
            return {"window_days": ROLLING_WINDOW_DAYS}
        return {}


# ── Derivations ──────────────────────────────────────────────

def _derive_awarded_ytd(agg: dict, ctx: DerivationContext) -> Derived:
    return Derived(
        value=float(agg["awarded_total"]),
        params={"fiscal_year": ctx.fiscal.fiscal_year, "include_loi": ctx.filters.include_loi},
        samples=agg["samples"],
    )


def _derive_pipeline_value(agg: dict, ctx: DerivationContext) -> Derived:
    total = float(agg["base_value"])
    if ctx.filters.include_options:
        total += float(agg["options_value"])
    params: dict[str, Any] = {"include_options": ctx.filters.include_options}
    if ctx.filters.stage:
        params["stage"] = ctx.filters.stage
    return Derived(value=total, params=params, samples=agg["samples"])


def _derive_monthly_award_pace(agg: dict, ctx: DerivationContext) -> Derived:
    months = months_in_window(ctx.window, ctx.now, ctx.settings.fiscal_year)
    pace = safe_ratio(float(agg["awarded_total"]), months or 0)
    return Derived(
        value=pace,
        params={**ctx.window_params(), "months_in_window": months or 0},
        samples=agg["samples"],
        reason=None if pace is not None else INSUFFICIENT_SAMPLES,
    )


def _derive_projected_fy_end(agg: dict, ctx: DerivationContext) -> Derived:
    months = months_in_window(ctx.window, ctx.now, ctx.settings.fiscal_year)
    pace = safe_ratio(float(agg["awarded_window"]), months or 0)
    params = {
        "awarded_ytd": float(agg["awarded_ytd"]),
        "monthly_award_pace": pace,
        "months_remaining": ctx.fiscal.months_remaining,
    }
    if pace is None:
        return Derived(None, params, agg["samples"], INSUFFICIENT_SAMPLES, MetricSource.COMPUTED)
    projected = float(agg["awarded_ytd"]) + pace * ctx.fiscal.months_remaining
    return Derived(projected, params, agg["samples"], source=MetricSource.COMPUTED)


def _derive_projects_needed(agg: dict, ctx: DerivationContext) -> Derived:
    recent_avg = safe_ratio(float(agg["recent_awarded_total"]), agg["samples"])
    avg_award_size = recent_avg if recent_avg else ctx.settings.default_avg_award_size
    target = float(agg["target_fy"])
    awarded = float(agg["awarded_ytd"])
    params = {
        "target_fy": target,
        "target_is_default": bool(agg.get("target_is_default", False)),
        "awarded_ytd": awarded,
        "avg_award_size_90d": avg_award_size,
        "avg_award_size_is_default": not recent_avg,
    }
    if avg_award_size <= 0:
        return Derived(None, params, agg["samples"], INSUFFICIENT_SAMPLES, MetricSource.COMPUTED)
    needed = max(0, math.ceil((target - awarded) / avg_award_size))
    return Derived(needed, params, agg["samples"], source=MetricSource.COMPUTED)


def _derive_win_rate(agg: dict, ctx: DerivationContext) -> Derived:
    awards, losses = int(agg["awards"]), int(agg["losses"])
    rate = safe_ratio(awards, awards + losses)
    return Derived(
        value=rate,
        params={**ctx.window_params(), "awards_count": awards, "losses_count": losses},
        samples=awards + losses,
        reason=None if rate is not None else INSUFFICIENT_SAMPLES,
    )


def _derive_avg_pipeline_velocity(agg: dict, ctx: DerivationContext) -> Derived:
    durations = list(agg.get("durations_days", []))
    avg = safe_ratio(sum(durations), len(durations))
    return Derived(
        value=round(avg) if avg is not None else None,
        params={**ctx.window_params(), "min_samples": ctx.settings.min_samples_for_velocity},
        samples=agg.get("samples", len(durations)),
        reason=None if avg is not None else INSUFFICIENT_SAMPLES,
    )


def _derive_capacity_if_all_bids_win(agg: dict, ctx: DerivationContext) -> Derived:
    capacity = ctx.settings.total_capacity
    params = {
        "total_planned_hours": float(agg["total_planned_hours"]),
        "total_bid_value": float(agg["total_value"]),
        "total_capacity": capacity,
    }
    if not agg.get("has_resource_plan"):
        return Derived(None, params, agg["samples"], NO_RESOURCE_PLAN)
    ratio = safe_ratio(float(agg["total_value"]), capacity)
    if ratio is None:
        return Derived(None, params, agg["samples"], INSUFFICIENT_SAMPLES)
    return Derived(ratio * 100, params, agg["samples"])


DERIVATIONS: dict[MetricName, Callable[[dict, DerivationContext], Derived]] = {
    MetricName.AWARDED_YTD: _derive_awarded_ytd,
    MetricName.PIPELINE_VALUE: _derive_pipeline_value,
    MetricName.MONTHLY_AWARD_PACE: _derive_monthly_award_pace,
    MetricName.PROJECTED_FY_END: _derive_projected_fy_end,
    MetricName.PROJECTS_NEEDED: _derive_projects_needed,
    MetricName.WIN_RATE: _derive_win_rate,
    MetricName.AVG_PIPELINE_VELOCITY: _derive_avg_pipeline_velocity,
    MetricName.CAPACITY_IF_ALL_BIDS_WIN: _derive_capacity_if_all_bids_win,
}


# ── Engine ───────────────────────────────────────────────────

class MetricsEngine:
    """Computes ``MetricResponse`` envelopes, consulting the cache first."""

    def __init__(
        self,
        source: AggregateSource,
        cache: MetricCache | None = None,
        *,
        audit: AuditHook | None = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Settings | None = None,
    ) -> None:
        self.source = source
        self.cache = metrics_cache if cache is None else cache
        self.audit = audit
        self._clock = clock
        self.settings = settings or get_settings()
        self.catalogue = build_catalogue(self.settings)

    def definition(self, metric: MetricName | str) -> MetricDefinition:
        try:
            return self.catalogue[MetricName(metric)]
        except ValueError as exc:
            raise UnknownMetricError(f"Unknown metric '{metric}'") from exc

    def resolve_window(
        self,
        definition: MetricDefinition,
        window: MetricWindow | str | None,
    ) -> MetricWindow:
        if window is None:
            return definition.default_window
        try:
            resolved = MetricWindow(window)
        except ValueError as exc:
            raise MetricContractError(f"Unknown window '{window}'") from exc
        if resolved not in definition.windows:
            supported = ", ".join(w.value for w in definition.windows)
            raise MetricContractError(
                f"Metric '{definition.name}' does not support window '{resolved}' (supported: {supported})"
            )
        return resolved

    async def compute_metric(
        self,
        metric: MetricName | str,
        filters: FilterParams | Mapping[str, Any] | None = None,
        window: MetricWindow | str | None = None,
    ) -> MetricResponse:
        definition = self.definition(metric)
        resolved_window = self.resolve_window(definition, window)
        filter_set = coerce_filters(filters)
        cache_filters = filter_set.canonical()

        cached = self.cache.get(definition.name, cache_filters, resolved_window)
        if cached is not None:
            if not isinstance(cached, MetricResponse):
                raise MetricContractError(
                    f"Cached value for '{definition.name}' is {type(cached).__name__}, not MetricResponse"
                )
            return cached

        aggregates = await self.source.fetch_aggregates(definition.name, filter_set, resolved_window)
        response = self._build_response(definition, resolved_window, filter_set, aggregates)

        self.cache.set(definition.name, cache_filters, resolved_window, response, ttl=definition.ttl)
        logger.info(
            "Computed %s (%s): value=%s samples=%s",
            response.metric, response.window, response.value, response.samples,
        )
        if self.audit is not None:
            try:
                await self.audit(response, cache_filters)
            except Exception:
                logger.exception("Audit hook failed for %s", response.metric)
        return response

    async def compute_all(
        self,
        filters: FilterParams | Mapping[str, Any] | None = None,
    ) -> dict[str, MetricResponse]:
        """Every metric at its default window, as shown on the dashboard summary."""
        filter_set = coerce_filters(filters)
        return {
            name.value: await self.compute_metric(name, filter_set)
            for name in self.catalogue
        }

    async def calculate_what_if(
        self,
        params: WhatIfParams,
        filters: FilterParams | Mapping[str, Any] | None = None,
    ) -> WhatIfResults:
        """Re-derive target-facing KPIs under a simulated win rate and award size.

        Simulations are neither cached nor audited.
        """
        filter_set = coerce_filters(filters)
        awarded = await self.compute_metric(MetricName.AWARDED_YTD, filter_set)
        pipeline = await self.compute_metric(MetricName.PIPELINE_VALUE, filter_set)
        targets = await self.source.fetch_aggregates(
            MetricName.PROJECTS_NEEDED, filter_set, MetricWindow.ROLLING_90D,
        )
        bids = await self.source.fetch_aggregates(
            MetricName.CAPACITY_IF_ALL_BIDS_WIN, filter_set, MetricWindow.ALL_TIME,
        )

        now = self._clock()
        as_of = isoformat_utc(now)
        info = fiscal_info(now, self.settings.fiscal_year)
        awarded_ytd = float(awarded.value or 0)

        targets_reason = _upstream_null_reason(targets)
        if targets_reason is None:
            target: float | None = float(targets["target_fy"])
            projects_needed: int | None = max(
                0, math.ceil((target - awarded_ytd) / params.avg_award_size)
            )
        else:
            target = projects_needed = None

        expected_monthly = float(pipeline.value or 0) / 3 * params.win_rate
        projected = awarded_ytd + expected_monthly * info.months_remaining

        bids_reason = _upstream_null_reason(bids)
        if bids_reason is None:
            bidding_value: float | None = float(bids["total_value"])
            expected_wins: float | None = bidding_value * params.win_rate
            capacity_ratio = safe_ratio(expected_wins, self.settings.total_capacity)
            if capacity_ratio is None:
                bids_reason = INSUFFICIENT_SAMPLES
        else:
            bidding_value = expected_wins = capacity_ratio = None

        return WhatIfResults(
            projects_needed=MetricResponse(
                metric=MetricName.PROJECTS_NEEDED.value,
                value=projects_needed,
                window=MetricWindow.ROLLING_90D,
                params={
                    "target_fy": target,
                    "awarded_ytd": awarded_ytd,
                    "avg_award_size_90d": params.avg_award_size,
                    "simulated_win_rate": params.win_rate,
                },
                as_of=as_of,
                source=MetricSource.WHAT_IF.value,
                reason=targets_reason,
            ),
            projected_fy_end=MetricResponse(
                metric=MetricName.PROJECTED_FY_END.value,
                value=projected,
                window=MetricWindow.ROLLING_90D,
                params={
                    "awarded_ytd": awarded_ytd,
                    "monthly_award_pace": expected_monthly,
                    "months_remaining": info.months_remaining,
                    "simulated_win_rate": params.win_rate,
                },
                as_of=as_of,
                source=MetricSource.WHAT_IF.value,
            ),
            capacity_if_all_win=MetricResponse(
                metric=MetricName.CAPACITY_IF_ALL_BIDS_WIN.value,
                value=capacity_ratio * 100 if capacity_ratio is not None else None,
                window=MetricWindow.ALL_TIME,
                params={
                    "total_bidding_value": bidding_value,
                    "expected_wins": expected_wins,
                    "simulated_win_rate": params.win_rate,
                },
                as_of=as_of,
                source=MetricSource.WHAT_IF.value,
                reason=bids_reason,
            ),
            is_simulated=True,
        )

    # ── Internal helpers ─────────────────────────────────────

    def _build_response(
        self,
        definition: MetricDefinition,
        window: MetricWindow,
        filters: FilterParams,
        aggregates: dict[str, Any],
    ) -> MetricResponse:
        now = self._clock()
        upstream_reason = _upstream_null_reason(aggregates)
        if upstream_reason is not None:
            # Upstream already decided there is nothing to report
            derived = Derived(
                value=None,
                params=dict(aggregates.get("params") or {}),
                samples=aggregates.get("samples"),
                reason=upstream_reason,
            )
        else:
            ctx = DerivationContext(
                now=now,
                window=window,
                filters=filters,
                fiscal=fiscal_info(now, self.settings.fiscal_year),
                settings=self.settings,
            )
            derived = DERIVATIONS[definition.name](aggregates, ctx)

        if derived.value is not None and not math.isfinite(derived.value):
            derived = replace(derived, value=None, reason=INSUFFICIENT_SAMPLES)
        samples = derived.samples
        if derived.value is not None and samples is not None and samples < definition.min_samples:
            derived = replace(
                derived,
                value=None,
                reason=f"{INSUFFICIENT_SAMPLES} ({samples} < {definition.min_samples})",
            )

        return MetricResponse(
            metric=definition.name.value,
            value=derived.value,
            window=window,
            params=derived.params,
            as_of=isoformat_utc(now),
            source=derived.source.value,
            reason=derived.reason,
            samples=samples,
        )
