"""Import all models so SQLModel.metadata picks them up."""

from app.models.annual_target import AnnualTarget, AnnualTargetRead, AnnualTargetUpsert
from app.models.kpi_audit_log import KpiAuditLog
from app.models.metric import (
    FilterParams,
    MetricName,
    MetricResponse,
    MetricSource,
    MetricWindow,
    WhatIfParams,
    WhatIfResults,
)
from app.models.pipeline_project import (
    GeographicPoint,
    OpportunityStage,
    PipelineProject,
    PipelineProjectCreate,
    PipelineProjectRead,
    PipelineProjectUpdate,
    PipelineType,
)

__all__ = [
    "AnnualTarget",
    "AnnualTargetRead",
    "AnnualTargetUpsert",
    "FilterParams",
    "GeographicPoint",
    "KpiAuditLog",
    "MetricName",
    "MetricResponse",
    "MetricSource",
    "MetricWindow",
    "OpportunityStage",
    "PipelineProject",
    "PipelineProjectCreate",
    "PipelineProjectRead",
    "PipelineProjectUpdate",
    "PipelineType",
    "WhatIfParams",
    "WhatIfResults",
]
