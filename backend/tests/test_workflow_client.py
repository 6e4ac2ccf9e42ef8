"""Tests for the single-attempt workflow engine client."""

import json

import httpx
import pytest

from factorydash.config import WorkflowEngineConfig
from factorydash.services.workflow_client import (
    OUTCOME_OK,
    OUTCOME_TIMEOUT,
    OUTCOME_UPSTREAM_ERROR,
    WorkflowEngineClient,
)


def _client(handler, **config) -> WorkflowEngineClient:
    engine_config = WorkflowEngineConfig(base_url="http://engine.test/", **config)
    return WorkflowEngineClient(engine_config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_start_pipeline_posts_to_master_webhook():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"executionId": "abc"})

    client = _client(handler)
    result = await client.start_pipeline({"sessionId": 7})
    await client.close()

    assert result.outcome == OUTCOME_OK
    assert result.data == {"executionId": "abc"}
    assert str(seen[0].url) == "http://engine.test/webhook/master-pipeline"
    assert json.loads(seen[0].content) == {"sessionId": 7}


@pytest.mark.asyncio
async def test_single_attempt_on_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    client = _client(handler)
    result = await client.publish({"sessionId": 1})
    await client.close()

    assert result.outcome == OUTCOME_UPSTREAM_ERROR
    assert result.status_code == 503
    assert not result.ok
    assert len(calls) == 1
    assert str(calls[0].url) == "http://engine.test/webhook/publisher"


@pytest.mark.asyncio
async def test_timeout_is_reported_not_raised():
    def handler(request):
        raise httpx.ReadTimeout("slow engine", request=request)

    client = _client(handler)
    result = await client.resume("http://engine.test/webhook-waiting/1", "approve")
    await client.close()

    assert result.outcome == OUTCOME_TIMEOUT
    assert result.as_dict()["outcome"] == "timeout"


@pytest.mark.asyncio
async def test_unreachable_engine_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    result = await client.ping()
    await client.close()

    assert result.outcome == OUTCOME_UPSTREAM_ERROR
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_resume_uses_absolute_wait_address():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="resumed")

    client = _client(handler)
    result = await client.resume("http://other-host:5678/webhook-waiting/99", "select_idea", 0)
    await client.close()

    assert result.ok
    assert result.data == "resumed"
    assert str(seen[0].url) == "http://other-host:5678/webhook-waiting/99"
    assert json.loads(seen[0].content) == {"action": "select_idea", "ideaIndex": 0}
