"""KpiAuditLog model: one row per freshly computed KPI."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import new_uuid, utcnow


class KpiAuditLog(SQLModel, table=True):
    __tablename__ = "kpi_audit_log"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    metric_name: str = Field(max_length=100, nullable=False, index=True)
    metric_value: float | None = Field(default=None)
    window_type: str = Field(max_length=20, nullable=False)
    source: str = Field(max_length=100, nullable=False)
    samples: int | None = Field(default=None)
    reason: str | None = Field(default=None, max_length=500)

    # JSON text, as passed to / used by the derivation
    params: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))
    filters: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))

    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
