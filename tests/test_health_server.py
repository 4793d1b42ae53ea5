"""Local status endpoint."""

import pytest
from aiohttp import test_utils

from hlash.services.subscription.scheduler import UpdateScheduler
from hlash.services.subscription.updater import UpdateOutcome
from hlash.services.system.health_server import HealthServer

from .fakes import FakeSignaler, FakeUpdater


@pytest.mark.asyncio
async def test_health_before_first_update():
    server = HealthServer(UpdateScheduler(FakeUpdater(), 0), port=0, engine_pid=lambda: 4242)

    async with test_utils.TestClient(test_utils.TestServer(server.build_app())) as client:
        response = await client.get("/health")
        body = await response.json()

    assert response.status == 200
    assert body["status"] == "healthy"
    assert body["last_update"] is None
    assert body["next_update_at"] is None
    assert body["engine_pid"] == 4242


@pytest.mark.asyncio
async def test_manual_update_commits_and_reloads():
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(FakeUpdater([UpdateOutcome.COMMITTED]), 0, reload_signaler=signaler)
    server = HealthServer(scheduler, port=0)

    async with test_utils.TestClient(test_utils.TestServer(server.build_app())) as client:
        response = await client.post("/update")
        body = await response.json()
        health = await (await client.get("/health")).json()

    assert response.status == 200
    assert body["success"] is True
    assert body["outcome"] == "committed"
    assert signaler.requests == 1
    assert health["last_update"]["outcome"] == "committed"


@pytest.mark.asyncio
async def test_manual_update_failure():
    scheduler = UpdateScheduler(FakeUpdater([UpdateOutcome.DOWNLOAD_FAILED]), 0)
    server = HealthServer(scheduler, port=0)

    async with test_utils.TestClient(test_utils.TestServer(server.build_app())) as client:
        response = await client.post("/update")
        body = await response.json()

    assert response.status == 502
    assert body["success"] is False
    assert body["error"] == "download_failed"
