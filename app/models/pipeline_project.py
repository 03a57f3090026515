"""PipelineProject model: one bid opportunity or project on a pipeline board."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class PipelineType(StrEnum):
    OPPORTUNITY = "opportunity"
    PRECONSTRUCTION = "preconstruction"
    EXECUTION = "execution"
    CLOSEOUT = "closeout"


class OpportunityStage(StrEnum):
    LEAD = "opp_lead"
    PROPOSAL = "opp_proposal"
    NEGOTIATION = "opp_negotiation"
    AWARD = "opp_award"
    LOST = "opp_lost"


# Contract types excluded from award totals unless include_loi is set
LOI_CONTRACT_TYPE = "loi"


class PipelineProject(TimestampMixin, SQLModel, table=True):
    __tablename__ = "pipeline_projects"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    pipeline_type: PipelineType = Field(default=PipelineType.OPPORTUNITY, index=True)
    # Stage ids are board-configurable; the OpportunityStage values drive the KPIs
    stage_id: str = Field(max_length=50, nullable=False, index=True)

    project_state: str | None = Field(default=None, max_length=2, index=True)
    set_aside: str | None = Field(default=None, max_length=50)
    status: str | None = Field(default=None, max_length=50)
    contract_type: str | None = Field(default=None, max_length=50)

    # Money (USD)
    value: float = Field(default=0)
    awarded_amount: float | None = Field(default=None)
    options_value: float | None = Field(default=None)

    planned_hours: float | None = Field(default=None)
    submission_date: datetime | None = Field(default=None)
    award_date: datetime | None = Field(default=None, index=True)

    project_latitude: float | None = Field(default=None)
    project_longitude: float | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class PipelineProjectCreate(SQLModel):
    name: str = Field(max_length=255)
    pipeline_type: PipelineType = PipelineType.OPPORTUNITY
    stage_id: str = Field(max_length=50)
    project_state: str | None = Field(default=None, max_length=2)
    set_aside: str | None = Field(default=None, max_length=50)
    status: str | None = Field(default=None, max_length=50)
    contract_type: str | None = Field(default=None, max_length=50)
    value: float = Field(default=0, ge=0)
    awarded_amount: float | None = Field(default=None, ge=0)
    options_value: float | None = Field(default=None, ge=0)
    planned_hours: float | None = Field(default=None, ge=0)
    submission_date: datetime | None = None
    award_date: datetime | None = None
    project_latitude: float | None = Field(default=None, ge=-90, le=90)
    project_longitude: float | None = Field(default=None, ge=-180, le=180)


class PipelineProjectUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=255)
    stage_id: str | None = Field(default=None, max_length=50)
    project_state: str | None = Field(default=None, max_length=2)
    set_aside: str | None = Field(default=None, max_length=50)
    status: str | None = Field(default=None, max_length=50)
    contract_type: str | None = Field(default=None, max_length=50)
    value: float | None = Field(default=None, ge=0)
    awarded_amount: float | None = Field(default=None, ge=0)
    options_value: float | None = Field(default=None, ge=0)
    planned_hours: float | None = Field(default=None, ge=0)
    submission_date: datetime | None = None
    award_date: datetime | None = None
    project_latitude: float | None = Field(default=None, ge=-90, le=90)
    project_longitude: float | None = Field(default=None, ge=-180, le=180)


class PipelineProjectRead(SQLModel):
    id: uuid.UUID
    name: str
    pipeline_type: PipelineType
    stage_id: str
    project_state: str | None
    set_aside: str | None
    status: str | None
    contract_type: str | None
    value: float
    awarded_amount: float | None
    options_value: float | None
    planned_hours: float | None
    submission_date: datetime | None
    award_date: datetime | None
    project_latitude: float | None
    project_longitude: float | None
    created_at: datetime
    updated_at: datetime


class GeographicPoint(SQLModel):
    id: uuid.UUID
    name: str
    latitude: float
    longitude: float
    value: float
    stage: str
    state: str | None
