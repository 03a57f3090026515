"""Tests for the nightly KPI audit job and the audit trail writer."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AggregateSourceError
from app.models.kpi_audit_log import KpiAuditLog
from app.models.metric import MetricName, MetricResponse, MetricWindow
from app.models.pipeline_project import PipelineProject
from app.services.aggregates import SqlAggregateSource
from app.services.audit import record_kpi_calculation
from app.workers.kpi_audit import audit_kpis
from app.workers.main import WorkerSettings


async def _run_audit(test_session_factory) -> dict:
    with patch("app.workers.kpi_audit.async_session_factory", test_session_factory):
        return await audit_kpis({})


@pytest.mark.asyncio
async def test_audit_records_every_metric(session, test_session_factory):
    session.add(PipelineProject(name="Bid", stage_id="opp_proposal", value=4_000_000, planned_hours=100))
    await session.commit()

    result = await _run_audit(test_session_factory)
    assert result == {"success": len(MetricName), "failed": 0, "errors": []}

    rows = (await session.execute(select(KpiAuditLog))).scalars().all()
    assert {r.metric_name for r in rows} == {m.value for m in MetricName}

    pipeline = next(r for r in rows if r.metric_name == "pipeline_value")
    assert pipeline.metric_value == 4_000_000
    assert pipeline.window_type == "all_time"
    assert json.loads(pipeline.filters) == {}


@pytest.mark.asyncio
async def test_audit_keeps_going_when_a_metric_fails(session, test_session_factory):
    original = SqlAggregateSource.fetch_aggregates

    async def _flaky(self, metric, filters, window):
        if metric == MetricName.WIN_RATE:
            raise AggregateSourceError("Could not load aggregates for win_rate")
        return await original(self, metric, filters, window)

    with patch.object(SqlAggregateSource, "fetch_aggregates", _flaky):
        result = await _run_audit(test_session_factory)

    assert result["success"] == len(MetricName) - 1
    assert result["failed"] == 1
    assert result["errors"][0]["metric"] == "win_rate"

    rows = (await session.execute(select(KpiAuditLog))).scalars().all()
    assert "win_rate" not in {r.metric_name for r in rows}


@pytest.mark.asyncio
async def test_failed_query_rolls_back_before_next_metric(session, test_session_factory):
    failing_query = AsyncMock(side_effect=OperationalError("SELECT stage_id", {}, Exception("boom")))
    rollback = AsyncMock(wraps=AsyncSession.rollback)

    async def _spy_rollback(self):
        await rollback(self)

    with (
        patch.object(SqlAggregateSource, "_fetch_win_rate", failing_query),
        patch.object(AsyncSession, "rollback", _spy_rollback),
    ):
        result = await _run_audit(test_session_factory)

    assert result["failed"] == 1
    assert result["success"] == len(MetricName) - 1
    rollback.assert_awaited_once()

    rows = (await session.execute(select(KpiAuditLog))).scalars().all()
    assert len(rows) == len(MetricName) - 1


@pytest.mark.asyncio
async def test_record_kpi_calculation_never_raises():
    session = MagicMock()
    session.commit = AsyncMock(side_effect=RuntimeError("database is locked"))
    session.rollback = AsyncMock()
    response = MetricResponse(
        metric="win_rate",
        value=0.5,
        window=MetricWindow.ROLLING_90D,
        params={"awards_count": 1, "losses_count": 1},
        as_of="2026-03-10T12:00:00Z",
        source="pipeline_projects",
        samples=2,
    )

    await record_kpi_calculation(session, response, {})

    session.add.assert_called_once()
    session.rollback.assert_awaited_once()


def test_worker_schedules_nightly_audit():
    assert audit_kpis in WorkerSettings.functions
    job = WorkerSettings.cron_jobs[0]
    assert job.hour == {2}
    assert job.minute == {0}
