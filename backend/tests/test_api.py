from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from healthpulse.config import settings
from healthpulse.database import get_db
from healthpulse.main import check_mode, create_app, lifespan
from healthpulse.services.hysteresis import HealthRecord, HealthState
from healthpulse.services.registry import MonitorRegistry
from healthpulse.services.scheduler import FanoutScheduler
from healthpulse.services.state_store import HealthStateStore
from healthpulse.services.task_queue import InMemoryTaskQueue

MONITOR = {
    "name": "Billing",
    "endpoint": " https://billing.test/health ",
    "method": "head",
    "threshold_count": 2,
    "alert_target": "ops@example.com",
}


@pytest_asyncio.fixture
async def app(session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.mark.asyncio
async def test_health_endpoint(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_create_get_list_delete_monitor(client) -> None:
    response = await client.post("/api/monitors", json=MONITOR)
    assert response.status_code == 201
    created = response.json()
    assert created["endpoint"] == "https://billing.test/health"
    assert created["method"] == "HEAD"
    assert created["expected_status"] == 200
    assert created["active"] is True
    assert created["health"] is None

    response = await client.get(f"/api/monitors/{created['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Billing"

    response = await client.get("/api/monitors")
    assert [m["id"] for m in response.json()] == [created["id"]]

    response = await client.delete(f"/api/monitors/{created['id']}")
    assert response.status_code == 204

    response = await client.get(f"/api/monitors/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"endpoint": "ftp://billing.test"},
        {"method": "TRACE"},
        {"threshold_count": 0},
        {"expected_status": 700},
        {"timeout_ms": 0},
    ],
)
async def test_invalid_monitor_is_rejected(client, overrides) -> None:
    response = await client.post("/api/monitors", json={**MONITOR, **overrides})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_unknown_monitor(client) -> None:
    response = await client.delete("/api/monitors/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_overview_counts_states(client, session_factory) -> None:
    ids = []
    for name in ("a", "b", "c"):
        response = await client.post("/api/monitors", json={**MONITOR, "name": name})
        ids.append(response.json()["id"])

    store = HealthStateStore(session_factory)
    await store.put(ids[0], HealthRecord(2, HealthState.UNHEALTHY), None, cycle=10)
    await store.put(ids[1], HealthRecord.initial(), None, cycle=10)

    response = await client.get("/api/status/overview")
    assert response.status_code == 200
    overview = response.json()

    assert overview["total_monitors"] == 3
    assert overview["monitors_unhealthy"] == 1
    assert overview["monitors_healthy"] == 1
    assert overview["monitors_unknown"] == 1
    assert [m["state"] for m in overview["monitors"]] == ["UNHEALTHY", "HEALTHY", "UNKNOWN"]

    response = await client.get(f"/api/monitors/{ids[0]}")
    assert response.json()["health"]["consecutive_failures"] == 2


@pytest.mark.asyncio
async def test_fanout_endpoint_runs_a_tick(app, client, session_factory) -> None:
    await client.post("/api/monitors", json=MONITOR)
    await client.post("/api/monitors", json={**MONITOR, "name": "paused", "active": False})
    queue = InMemoryTaskQueue(visibility_timeout=30)
    app.state.fanout = FanoutScheduler(MonitorRegistry(session_factory), queue)

    response = await client.post("/api/fanout")

    assert response.status_code == 200
    body = response.json()
    assert body["monitors"] == 1
    assert body["queued"] == 1
    assert body["batches"] == 1
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_fanout_endpoint_without_scheduler(client) -> None:
    response = await client.post("/api/fanout")
    assert response.status_code == 503


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["api", "scheduler"])
async def test_memory_queue_without_workers_is_rejected(monkeypatch, mode) -> None:
    monkeypatch.setattr(settings, "mode", mode)
    monkeypatch.setattr(settings, "queue_backend", "memory")

    with pytest.raises(ValueError, match="memory"):
        async with lifespan(create_app()):
            pass


@pytest.mark.asyncio
async def test_unknown_mode_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr(settings, "mode", "everything")

    with pytest.raises(ValueError, match="Unknown mode"):
        async with lifespan(create_app()):
            pass


@pytest.mark.parametrize(
    "mode, queue_backend",
    [("all", "memory"), ("worker", "memory"), ("api", "database"), ("scheduler", "database")],
)
def test_deliverable_mode_combinations_are_accepted(mode, queue_backend) -> None:
    check_mode(mode, queue_backend)
