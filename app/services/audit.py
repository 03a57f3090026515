"""KPI audit trail: persist each freshly computed metric to kpi_audit_log."""

import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.kpi_audit_log import KpiAuditLog
from app.models.metric import MetricResponse

logger = logging.getLogger(__name__)


async def record_kpi_calculation(
    session: AsyncSession,
    response: MetricResponse,
    filters: dict[str, Any],
) -> None:
    """Write one audit row for a computed metric. Never raises."""
    try:
        entry = KpiAuditLog(
            metric_name=response.metric,
            metric_value=float(response.value) if response.value is not None else None,
            window_type=response.window.value,
            source=response.source,
            samples=response.samples,
            reason=response.reason,
            params=json.dumps(response.params, default=str),
            filters=json.dumps(filters, sort_keys=True, default=str),
        )
        session.add(entry)
        await session.commit()
    except Exception:
        logger.exception("KPI audit write failed for %s", response.metric)
        await session.rollback()


def session_audit_hook(session: AsyncSession):
    """Bind ``record_kpi_calculation`` to a session for use as a MetricsEngine audit hook."""

    async def _hook(response: MetricResponse, filters: dict[str, Any]) -> None:
        await record_kpi_calculation(session, response, filters)

    return _hook
