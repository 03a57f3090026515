"""FastAPI dependencies for database sessions and the KPI engine."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import metrics_cache
from app.core.config import get_settings
from app.core.database import get_session
from app.services.aggregates import SqlAggregateSource
from app.services.audit import session_audit_hook
from app.services.metrics import MetricsEngine


async def get_metrics_engine(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MetricsEngine:
    """Per-request engine over the shared process-wide metrics cache."""
    settings = get_settings()
    return MetricsEngine(
        SqlAggregateSource(session, settings=settings),
        metrics_cache,
        audit=session_audit_hook(session) if settings.kpi_audit_enabled else None,
        settings=settings,
    )


# Typed shorthand for use in route signatures
Session = Annotated[AsyncSession, Depends(get_session)]
Engine = Annotated[MetricsEngine, Depends(get_metrics_engine)]
