"""Raw aggregate source: SQL rollups over pipeline_projects feeding the KPI engine.

Each metric asks for a small dict of totals and counts; ``samples`` is always
present. Database errors surface as ``AggregateSourceError`` so the engine can
tell an upstream failure apart from a contract violation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.cache import utc_now
from app.core.config import Settings, get_settings
from app.core.errors import AggregateSourceError
from app.core.fiscal import fiscal_info, window_start
from app.models.annual_target import AnnualTarget
from app.models.metric import FilterParams, MetricName, MetricWindow
from app.models.pipeline_project import (
    LOI_CONTRACT_TYPE,
    OpportunityStage,
    PipelineProject,
    PipelineType,
)

logger = logging.getLogger(__name__)

OPEN_BID_STAGES = (OpportunityStage.PROPOSAL, OpportunityStage.NEGOTIATION)

# Awards without an award_date count from their last update
_award_at = func.coalesce(PipelineProject.award_date, PipelineProject.updated_at)
_award_amount = func.coalesce(PipelineProject.awarded_amount, PipelineProject.value, 0)


class AggregateSource(Protocol):
    async def fetch_aggregates(
        self,
        metric: MetricName,
        filters: FilterParams,
        window: MetricWindow,
    ) -> dict[str, Any]: ...


def apply_filters(stmt, filters: FilterParams):
    """Narrow an opportunity query by state, stage, set-aside and status."""
    stmt = stmt.where(PipelineProject.pipeline_type == PipelineType.OPPORTUNITY)
    if filters.state:
        stmt = stmt.where(PipelineProject.project_state == filters.state)
    if filters.stage:
        stmt = stmt.where(PipelineProject.stage_id == filters.stage)
    if filters.set_aside:
        stmt = stmt.where(PipelineProject.set_aside == filters.set_aside)
    if filters.status:
        stmt = stmt.where(PipelineProject.status == filters.status)
    return stmt


class SqlAggregateSource:
    """AggregateSource backed by the relational store."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Callable[[], datetime] = utc_now,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self._clock = clock
        self.settings = settings or get_settings()

    async def fetch_aggregates(
        self,
        metric: MetricName,
        filters: FilterParams,
        window: MetricWindow,
    ) -> dict[str, Any]:
        handler = getattr(self, f"_fetch_{MetricName(metric).value}")
        try:
            return await handler(filters, window)
        except SQLAlchemyError as exc:
            logger.exception("Aggregate query failed for %s (%s)", metric, window)
            # Leave the session usable for the caller's next query
            await self.session.rollback()
            raise AggregateSourceError(f"Could not load aggregates for {metric}") from exc

    # ── Shared rollups ───────────────────────────────────────

    def _start(self, window: MetricWindow) -> datetime | None:
        return window_start(window, self._clock(), self.settings.fiscal_year)

    async def _award_totals(
        self,
        filters: FilterParams,
        start: datetime | None,
        end: datetime | None = None,
    ) -> tuple[float, int]:
        stmt = select(
            func.coalesce(func.sum(_award_amount), 0),
            func.count(),
        ).where(PipelineProject.stage_id == OpportunityStage.AWARD)
        stmt = apply_filters(stmt, filters)
        if not filters.include_loi:
            stmt = stmt.where(or_(
                PipelineProject.contract_type.is_(None),  # type: ignore[union-attr]
                PipelineProject.contract_type != LOI_CONTRACT_TYPE,
            ))
        if start is not None:
            stmt = stmt.where(_award_at >= start)
        if end is not None:
            stmt = stmt.where(_award_at < end)
        total, count = (await self.session.execute(stmt)).one()
        return float(total), int(count)

    async def _fiscal_ytd_awards(self, filters: FilterParams) -> tuple[float, int]:
        info = fiscal_info(self._clock(), self.settings.fiscal_year)
        return await self._award_totals(filters, info.starts_at, info.ends_at)

    # ── Per-metric queries ───────────────────────────────────

    async def _fetch_awarded_ytd(self, filters: FilterParams, window: MetricWindow) -> dict:
        total, count = await self._fiscal_ytd_awards(filters)
        return {"awarded_total": total, "samples": count}

    async def _fetch_pipeline_value(self, filters: FilterParams, window: MetricWindow) -> dict:
        stmt = select(
            func.coalesce(func.sum(PipelineProject.value), 0),
            func.coalesce(func.sum(PipelineProject.options_value), 0),
            func.count(),
        ).where(PipelineProject.stage_id.in_(OPEN_BID_STAGES))  # type: ignore[attr-defined]
        stmt = apply_filters(stmt, filters)
        base, options, count = (await self.session.execute(stmt)).one()
        return {"base_value": float(base), "options_value": float(options), "samples": int(count)}

    async def _fetch_monthly_award_pace(self, filters: FilterParams, window: MetricWindow) -> dict:
        total, count = await self._award_totals(filters, self._start(window))
        return {"awarded_total": total, "samples": count}

    async def _fetch_projected_fy_end(self, filters: FilterParams, window: MetricWindow) -> dict:
        ytd_total, _ = await self._fiscal_ytd_awards(filters)
        window_total, count = await self._award_totals(filters, self._start(window))
        return {"awarded_ytd": ytd_total, "awarded_window": window_total, "samples": count}

    async def _fetch_projects_needed(self, filters: FilterParams, window: MetricWindow) -> dict:
        info = fiscal_info(self._clock(), self.settings.fiscal_year)
        target = (await self.session.execute(
            select(AnnualTarget.target_amount).where(AnnualTarget.year == info.fiscal_year)
        )).scalar_one_or_none()
        ytd_total, _ = await self._fiscal_ytd_awards(filters)
        recent_total, recent_count = await self._award_totals(filters, self._start(window))
        return {
            "target_fy": float(target) if target is not None else self.settings.default_target_fy,
            "target_is_default": target is None,
            "awarded_ytd": ytd_total,
            "recent_awarded_total": recent_total,
            "samples": recent_count,
        }

    async def _fetch_win_rate(self, filters: FilterParams, window: MetricWindow) -> dict:
        stmt = select(PipelineProject.stage_id, func.count()).where(
            PipelineProject.stage_id.in_((OpportunityStage.AWARD, OpportunityStage.LOST)),  # type: ignore[attr-defined]
        )
        stmt = apply_filters(stmt, filters)
        start = self._start(window)
        if start is not None:
            stmt = stmt.where(PipelineProject.updated_at >= start)
        stmt = stmt.group_by(PipelineProject.stage_id)
        counts = {stage: count for stage, count in (await self.session.execute(stmt)).all()}
        awards = int(counts.get(OpportunityStage.AWARD, 0))
        losses = int(counts.get(OpportunityStage.LOST, 0))
        return {"awards": awards, "losses": losses, "samples": awards + losses}

    async def _fetch_avg_pipeline_velocity(self, filters: FilterParams, window: MetricWindow) -> dict:
        stmt = select(PipelineProject.submission_date, PipelineProject.award_date).where(
            PipelineProject.stage_id == OpportunityStage.AWARD,
            PipelineProject.submission_date.is_not(None),  # type: ignore[union-attr]
            PipelineProject.award_date.is_not(None),  # type: ignore[union-attr]
        )
        stmt = apply_filters(stmt, filters)
        start = self._start(window)
        if start is not None:
            stmt = stmt.where(PipelineProject.award_date >= start)
        rows = (await self.session.execute(stmt)).all()
        durations = [(awarded - submitted).days for submitted, awarded in rows]
        return {"durations_days": durations, "samples": len(durations)}

    async def _fetch_capacity_if_all_bids_win(self, filters: FilterParams, window: MetricWindow) -> dict:
        stmt = select(
            func.coalesce(func.sum(PipelineProject.value), 0),
            func.coalesce(func.sum(PipelineProject.planned_hours), 0),
            func.count(PipelineProject.planned_hours),
            func.count(),
        ).where(PipelineProject.stage_id == OpportunityStage.PROPOSAL)
        stmt = apply_filters(stmt, filters)
        total_value, planned_hours, planned_count, count = (await self.session.execute(stmt)).one()
        return {
            "total_value": float(total_value),
            "total_planned_hours": float(planned_hours),
            "has_resource_plan": int(planned_count) > 0,
            "samples": int(count),
        }
