"""API tests for the workflow-engine callback routes."""

import pytest

from factorydash.auth import Identity
from factorydash.services.fanout import GLOBAL_ROOM, session_room


async def _session_id(ledger) -> int:
    return (await ledger.create_session("Widget X", "WB")).id


@pytest.mark.asyncio
async def test_step_update_requires_session_and_step_name(client, ledger):
    session_id = await _session_id(ledger)

    response = await client.post("/api/internal/step-update", json={"sessionId": session_id})
    assert response.status_code == 400
    assert "stepName" in response.json()["error"] or "step_name" in response.json()["error"]

    response = await client.post("/api/internal/step-update", json={"stepName": "ideas"})
    assert response.status_code == 400

    response = await client.post("/api/internal/step-update", json={
        "sessionId": session_id, "stepName": "ideas", "status": "finished",
    })
    assert response.status_code == 400

    response = await client.post("/api/internal/step-update", json={"sessionId": 999, "stepName": "ideas"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_repeated_step_update_keeps_one_row(client, ledger):
    session_id = await _session_id(ledger)
    body = {
        "sessionId": session_id, "stepName": "script", "stepOrder": 3,
        "status": "completed", "outputData": {"text": "hello"},
    }

    first = await client.post("/api/internal/step-update", json=body)
    second = await client.post("/api/internal/step-update", json=body)

    assert first.status_code == second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]
    steps = await ledger.list_steps(session_id)
    assert len(steps) == 1
    assert steps[0].output_data == {"text": "hello"}


@pytest.mark.asyncio
async def test_session_update_validation(client, ledger):
    session_id = await _session_id(ledger)

    response = await client.post("/api/internal/session-update", json={"sessionId": session_id})
    assert response.status_code == 400

    response = await client.post("/api/internal/session-update", json={"sessionId": session_id, "status": "paused"})
    assert response.status_code == 400
    assert (await ledger.get_session(session_id)).status == "created"


@pytest.mark.asyncio
async def test_session_update_after_cancel_is_ignored(client, ledger):
    session_id = await _session_id(ledger)
    await ledger.cancel(session_id)

    response = await client.post("/api/internal/session-update", json={
        "sessionId": session_id, "status": "processing", "currentStep": "video",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["ignored"] is True
    assert body["data"]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_session_update_publishes_awaiting_decision(client, ledger, broadcaster):
    session_id = await _session_id(ledger)
    watcher = broadcaster.connect(Identity("bob"))
    broadcaster.join(watcher, session_room(session_id))

    await client.post("/api/internal/session-update", json={
        "sessionId": session_id, "status": "ready_for_review",
        "resumeUrl": "http://engine.test/webhook-waiting/5",
    })

    message = watcher.outbox.get_nowait()
    assert message["event"] == "session-update"
    assert message["data"]["awaitingDecision"] is True
    assert message["data"]["status"] == "ready_for_review"


@pytest.mark.asyncio
async def test_error_reports(client, ledger):
    session_id = await _session_id(ledger)

    response = await client.post("/api/internal/error", json={"workflowName": "video-factory"})
    assert response.status_code == 400

    response = await client.post("/api/internal/error", json={
        "sessionId": session_id, "workflowName": "video-factory",
        "nodeName": "render", "errorMessage": "GPU out of memory", "errorStack": "Traceback...",
    })
    assert response.status_code == 200
    assert response.json()["data"]["id"] > 0

    response = await client.post("/api/internal/log-error", json={})
    assert response.status_code == 200

    errors, total = await ledger.list_errors()
    assert total == 2
    assert errors[0].workflow_name == "unknown"
    assert errors[0].error_message == "Unknown error"
    assert errors[1].error_stack == "Traceback..."
    # Error reports never touch the session row
    assert (await ledger.get_session(session_id)).status == "created"


@pytest.mark.asyncio
async def test_cost_report(client, ledger):
    session_id = await _session_id(ledger)

    response = await client.post("/api/internal/cost", json={
        "sessionId": session_id, "stepName": "ideas", "provider": "openai", "model": "gpt-4o",
        "promptTokens": 120, "completionTokens": 80, "costUsd": 0.004,
    })
    assert response.status_code == 200
    assert response.json()["data"]["tokens_total"] == 200

    response = await client.post("/api/internal/cost", json={
        "sessionId": 999, "provider": "openai", "model": "gpt-4o",
    })
    assert response.status_code == 404

    response = await client.post("/api/internal/cost", json={"model": "gpt-4o"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_media_registration_defaults(client, ledger):
    session_id = await _session_id(ledger)

    response = await client.post("/api/internal/media", json={
        "sessionId": session_id, "fileKey": "sessions/1/card.bin", "fileName": "card.bin",
    })
    assert response.status_code == 201
    media_id = response.json()["data"]["id"]

    media = await ledger.list_media(session_id)
    assert [m.id for m in media] == [media_id]
    assert media[0].file_type == "document"
    assert media[0].mime_type == "application/octet-stream"
    assert media[0].source == "workflow"

    response = await client.post("/api/internal/media", json={"sessionId": session_id, "fileName": "x"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_ready_notifications_are_fanned_out(client, ledger, broadcaster):
    session_id = await _session_id(ledger)
    dashboard = broadcaster.connect(Identity("dash"))
    watcher = broadcaster.connect(Identity("bob"))
    broadcaster.join(dashboard, GLOBAL_ROOM)
    broadcaster.join(watcher, session_room(session_id))

    response = await client.post("/api/internal/video-ready", json={
        "session_id": session_id, "final_video_url": "https://cdn.test/v.mp4", "status": "ready",
    })
    assert response.json() == {"ok": True}
    response = await client.post("/api/internal/card-ready", json={"card_id": 4, "product_name": "Widget X"})
    assert response.status_code == 200

    video = watcher.outbox.get_nowait()
    assert video["event"] == "video-ready"
    assert video["data"]["final_video_url"] == "https://cdn.test/v.mp4"
    assert "timestamp" in video["data"]
    assert watcher.outbox.empty()

    events = [dashboard.outbox.get_nowait()["event"] for _ in range(2)]
    assert events == ["video-ready", "card-ready"]
