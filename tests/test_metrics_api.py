"""Tests for the metrics endpoints."""

from unittest.mock import AsyncMock, patch

from httpx import AsyncClient
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AggregateSourceError
from app.models.base import utcnow
from app.models.kpi_audit_log import KpiAuditLog
from app.services.aggregates import SqlAggregateSource


async def _create_project(client: AsyncClient, name: str, stage_id: str, **fields) -> dict:
    resp = await client.post("/v1/projects", json={"name": name, "stage_id": stage_id, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _seed_outcomes(client: AsyncClient, awards: int, losses: int) -> None:
    for i in range(awards):
        await _create_project(
            client, f"Award {i}", "opp_award",
            value=1_000_000, award_date=utcnow().isoformat(), project_state="TX",
        )
    for i in range(losses):
        await _create_project(client, f"Loss {i}", "opp_lost", value=500_000, project_state="TX")


async def _audit_rows(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(KpiAuditLog))).scalar_one()


async def test_win_rate_endpoint(client: AsyncClient):
    await _seed_outcomes(client, awards=3, losses=1)

    resp = await client.get("/v1/metrics/win_rate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["metric"] == "win_rate"
    assert data["value"] == 0.75
    assert data["window"] == "rolling_90d"
    assert data["samples"] == 4
    assert data["source"] == "pipeline_projects"
    assert data["as_of"].endswith("Z")
    assert "reason" not in data


async def test_win_rate_without_data_is_null_with_reason(client: AsyncClient):
    resp = await client.get("/v1/metrics/win_rate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["value"] is None
    assert data["reason"]
    assert data["samples"] == 0


async def test_unknown_metric_is_404(client: AsyncClient):
    resp = await client.get("/v1/metrics/bid_hit_ratio")
    assert resp.status_code == 404
    assert resp.json()["code"] == "unknown_metric"


async def test_bad_window_is_422(client: AsyncClient):
    resp = await client.get("/v1/metrics/win_rate?window=weekly")
    assert resp.status_code == 422
    assert resp.json()["code"] == "contract_violation"

    resp = await client.get("/v1/metrics/awarded_ytd?window=rolling_90d")
    assert resp.status_code == 422


async def test_window_query_param(client: AsyncClient):
    await _seed_outcomes(client, awards=1, losses=1)
    resp = await client.get("/v1/metrics/win_rate?window=all_time")
    assert resp.status_code == 200
    assert resp.json()["window"] == "all_time"
    assert "window_days" not in resp.json()["params"]


async def test_repeat_request_served_from_cache(client: AsyncClient, session: AsyncSession):
    await _seed_outcomes(client, awards=2, losses=2)

    resp1 = await client.get("/v1/metrics/win_rate?state=TX")
    resp2 = await client.get("/v1/metrics/win_rate?state=TX")
    assert resp1.json() == resp2.json()

    stats = (await client.get("/v1/metrics/cache/stats")).json()
    assert stats["size"] == 1
    assert stats["keys"][0].startswith('win_rate:rolling_90d:{"state":"TX"}:')

    # Only the computed call was audited
    assert await _audit_rows(session) == 1


async def test_audit_row_contents(client: AsyncClient, session: AsyncSession):
    await _seed_outcomes(client, awards=1, losses=0)
    await client.get("/v1/metrics/win_rate?state=TX")

    row = (await session.execute(select(KpiAuditLog))).scalar_one()
    assert row.metric_name == "win_rate"
    assert row.metric_value == 1.0
    assert row.window_type == "rolling_90d"
    assert row.samples == 1
    assert row.filters == '{"state": "TX"}'


async def test_project_write_invalidates_metrics(client: AsyncClient):
    await _seed_outcomes(client, awards=1, losses=1)
    first = (await client.get("/v1/metrics/win_rate")).json()
    assert first["value"] == 0.5

    await _seed_outcomes(client, awards=2, losses=0)
    assert (await client.get("/v1/metrics/cache/stats")).json()["size"] == 0

    second = (await client.get("/v1/metrics/win_rate")).json()
    assert second["value"] == 0.75


async def test_all_metrics(client: AsyncClient):
    await _seed_outcomes(client, awards=2, losses=1)

    resp = await client.get("/v1/metrics")
    assert resp.status_code == 200
    data = resp.json()
    assert set(data) == {
        "awarded_ytd",
        "pipeline_value",
        "monthly_award_pace",
        "projected_fy_end",
        "projects_needed",
        "win_rate",
        "avg_pipeline_velocity",
        "capacity_if_all_bids_win",
    }
    for name, envelope in data.items():
        assert envelope["metric"] == name
        assert {"value", "window", "params", "as_of", "source"} <= set(envelope)
        if envelope["value"] is None:
            assert envelope["reason"]
    assert data["awarded_ytd"]["value"] == 2_000_000
    assert data["capacity_if_all_bids_win"]["reason"]


async def test_what_if_endpoint(client: AsyncClient):
    await _create_project(client, "Open bid", "opp_proposal", value=9_000_000)

    resp = await client.post("/v1/metrics/what-if", json={
        "win_rate": 0.5,
        "avg_award_size": 25_000_000,
        "filters": {},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["is_simulated"] is True
    assert data["projects_needed"]["source"] == "what_if_simulation"
    # 9M * 0.5 / 30M * 100
    assert data["capacity_if_all_win"]["value"] == 15.0


async def test_what_if_validates_win_rate(client: AsyncClient):
    resp = await client.post("/v1/metrics/what-if", json={"win_rate": 1.5, "avg_award_size": 1})
    assert resp.status_code == 422


async def test_cache_admin_endpoints(client: AsyncClient):
    await client.get("/v1/metrics/win_rate")
    await client.get("/v1/metrics/pipeline_value")
    assert (await client.get("/v1/metrics/cache/stats")).json()["size"] == 2

    resp = await client.delete("/v1/metrics/cache/win_rate")
    assert resp.status_code == 204
    keys = (await client.get("/v1/metrics/cache/stats")).json()["keys"]
    assert len(keys) == 1
    assert keys[0].startswith("pipeline_value:")

    resp = await client.delete("/v1/metrics/cache")
    assert resp.status_code == 204
    assert (await client.get("/v1/metrics/cache/stats")).json()["size"] == 0


async def test_upstream_failure_is_502_and_not_cached(client: AsyncClient):
    failing = AsyncMock(side_effect=AggregateSourceError("Could not load aggregates for win_rate"))
    with patch.object(SqlAggregateSource, "fetch_aggregates", failing):
        resp = await client.get("/v1/metrics/win_rate")

    assert resp.status_code == 502
    assert resp.json()["code"] == "upstream_failure"
    assert (await client.get("/v1/metrics/cache/stats")).json()["size"] == 0


async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
