"""KPI response envelope, filter set and what-if schemas."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer


class MetricName(StrEnum):
    AWARDED_YTD = "awarded_ytd"
    PIPELINE_VALUE = "pipeline_value"
    MONTHLY_AWARD_PACE = "monthly_award_pace"
    PROJECTED_FY_END = "projected_fy_end"
    PROJECTS_NEEDED = "projects_needed"
    WIN_RATE = "win_rate"
    AVG_PIPELINE_VELOCITY = "avg_pipeline_velocity"
    CAPACITY_IF_ALL_BIDS_WIN = "capacity_if_all_bids_win"


class MetricWindow(StrEnum):
    ROLLING_90D = "rolling_90d"
    FISCAL_YTD = "fiscal_ytd"
    CURRENT_MONTH = "current_month"
    ALL_TIME = "all_time"


class MetricSource(StrEnum):
    PIPELINE_PROJECTS = "pipeline_projects"
    COMPUTED = "computed"
    WHAT_IF = "what_if_simulation"


class FilterParams(BaseModel):
    """Query constraints narrowing which projects contribute to a metric."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    state: str | None = None
    stage: str | None = None
    set_aside: str | None = None
    status: str | None = None
    include_options: bool = False
    include_loi: bool = False

    def canonical(self) -> dict[str, Any]:
        """Only the non-default constraints, so ``{}`` and ``{"include_loi": False}`` match."""
        return self.model_dump(exclude_defaults=True)


class MetricResponse(BaseModel):
    """Wire envelope shared by dashboards and the audit log.

    ``reason`` and ``samples`` are left out of the serialized form when unset.
    """

    model_config = ConfigDict(frozen=True)

    metric: str
    value: float | int | None
    window: MetricWindow
    params: dict[str, Any] = Field(default_factory=dict)
    as_of: str
    source: str
    reason: str | None = None
    samples: int | None = None

    @model_serializer(mode="wrap")
    def _drop_unset_optionals(self, handler):
        data = handler(self)
        for key in ("reason", "samples"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class WhatIfParams(BaseModel):
    win_rate: float = Field(gt=0, le=1, description="Simulated win rate as a fraction")
    avg_award_size: float = Field(gt=0, description="Simulated average award size (USD)")


class WhatIfResults(BaseModel):
    projects_needed: MetricResponse
    projected_fy_end: MetricResponse
    capacity_if_all_win: MetricResponse
    is_simulated: bool = True
