"""Executive KPI endpoints: metric envelopes, what-if simulation and cache admin."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.api.deps import Engine
from app.core.cache import metrics_cache
from app.models.metric import FilterParams, MetricName, MetricResponse, WhatIfParams, WhatIfResults

router = APIRouter(prefix="/metrics", tags=["metrics"])


# ── Schemas ──────────────────────────────────────────────────

class CacheStats(BaseModel):
    size: int
    keys: list[str]


class WhatIfRequest(WhatIfParams):
    filters: FilterParams = FilterParams()


def filter_params(
    state: str | None = None,
    stage: str | None = None,
    set_aside: str | None = None,
    status: str | None = None,
    include_options: bool = False,
    include_loi: bool = False,
) -> FilterParams:
    """Collect the dashboard's global filters from the query string."""
    return FilterParams(
        state=state,
        stage=stage,
        set_aside=set_aside,
        status=status,
        include_options=include_options,
        include_loi=include_loi,
    )


Filters = Annotated[FilterParams, Depends(filter_params)]


# ── Cache administration ─────────────────────────────────────

@router.get("/cache/stats", response_model=CacheStats)
async def get_cache_stats() -> CacheStats:
    return CacheStats(**metrics_cache.stats())


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache() -> None:
    metrics_cache.clear()


@router.delete("/cache/{metric}", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_metric_cache(metric: MetricName) -> None:
    metrics_cache.invalidate_metric(metric)


# ── Metrics ──────────────────────────────────────────────────

@router.post("/what-if", response_model=WhatIfResults)
async def what_if(body: WhatIfRequest, engine: Engine) -> WhatIfResults:
    """Project target-facing KPIs under a simulated win rate and award size."""
    return await engine.calculate_what_if(
        WhatIfParams(win_rate=body.win_rate, avg_award_size=body.avg_award_size),
        body.filters,
    )


@router.get("", response_model=dict[str, MetricResponse])
async def get_all_metrics(engine: Engine, filters: Filters) -> dict[str, MetricResponse]:
    """Every KPI at its default window."""
    return await engine.compute_all(filters)


@router.get("/{metric}", response_model=MetricResponse)
async def get_metric(
    metric: str,
    engine: Engine,
    filters: Filters,
    window: str | None = None,
) -> MetricResponse:
    """A single KPI; unknown metrics are 404, unsupported windows 422."""
    return await engine.compute_metric(metric, filters, window)
