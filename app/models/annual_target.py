"""AnnualTarget model: the awards goal for a fiscal year."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class AnnualTarget(TimestampMixin, SQLModel, table=True):
    __tablename__ = "annual_targets"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    year: int = Field(unique=True, nullable=False, index=True)
    target_amount: float = Field(nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class AnnualTargetUpsert(SQLModel):
    target_amount: float = Field(gt=0)


class AnnualTargetRead(SQLModel):
    year: int
    target_amount: float
    updated_at: datetime
