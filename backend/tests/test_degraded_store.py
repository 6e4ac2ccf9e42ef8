"""Behaviour when the relational store cannot be reached."""

import httpx
import pytest
import pytest_asyncio

from factorydash.api.app import create_app
from factorydash.db import build_engine, check_connection
from factorydash.services.workflow_client import WorkflowEngineClient

from conftest import make_settings


@pytest_asyncio.fixture
async def degraded_client(tmp_path, fake_engine):
    # Parent directory does not exist, so SQLite cannot open the file
    url = f"sqlite+aiosqlite:///{tmp_path}/missing/dir/ledger.db"
    settings = make_settings(url)
    engine = build_engine(url)
    workflow_client = WorkflowEngineClient(
        settings.workflow_engine, transport=httpx.MockTransport(fake_engine.handler)
    )
    app = create_app(settings=settings, engine=engine, workflow_client=workflow_client)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    await workflow_client.close()
    await engine.dispose()


@pytest.mark.asyncio
async def test_check_connection_reports_failure(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/ledger.db")
    assert await check_connection(engine) is False
    await engine.dispose()


@pytest.mark.asyncio
async def test_list_endpoints_answer_degraded_not_empty(degraded_client, auth_headers):
    for path in ("/api/sessions", "/api/errors"):
        response = await degraded_client.get(path, headers=auth_headers)
        assert response.status_code == 503
        body = response.json()
        assert body["ok"] is False
        assert body["degraded"] is True
        assert body["data"] == []
        assert body["total"] == 0


@pytest.mark.asyncio
async def test_ledger_writes_fail_with_service_unavailable(degraded_client, auth_headers):
    response = await degraded_client.post("/api/internal/step-update", json={"sessionId": 1, "stepName": "ideas"})
    assert response.status_code == 503
    assert response.json() == {"ok": False, "error": "Database unavailable"}

    response = await degraded_client.get("/api/sessions/1", headers=auth_headers)
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_notifications_still_work_without_store(degraded_client):
    response = await degraded_client.post("/api/internal/content-ready", json={"idea_id": 1})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_reports_database_down(degraded_client):
    response = await degraded_client.get("/api/health")
    assert response.status_code == 503
    body = response.json()
    assert body["database"] is False
    assert body["workflow_engine"] is True
