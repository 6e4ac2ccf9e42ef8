"""Outbound HTTP calls to the external workflow engine.

Provides:
- start_pipeline: fire the master-pipeline webhook for a new session
- resume: deliver a human decision to a paused run's wait address
- publish: hand approved content to the publisher webhook
- ping: liveness probe for the health endpoint

Every call is a single attempt with a bounded timeout. Failures never raise;
they come back as an OutboundResult the caller logs and decides to surface.

Usage:
    client = WorkflowEngineClient(settings.workflow_engine)
    result = await client.start_pipeline({"sessionId": 1, ...})
    if not result.ok:
        logger.warning(result.error)
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from factorydash.config import WorkflowEngineConfig

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True)
class OutboundResult:
    """Outcome of one call to the workflow engine."""

    outcome: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_OK

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "statusCode": self.status_code,
            "error": self.error,
        }


class WorkflowEngineClient:
    """Async client for the workflow engine's webhooks.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: WorkflowEngineConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def _post(self, url: str, payload: dict, timeout: float) -> OutboundResult:
        logger.info(f"POST {url}")
        try:
            response = await self.client.post(url, json=payload, timeout=timeout)
        except httpx.TimeoutException as e:
            logger.warning(f"  {url} timed out after {timeout}s: {type(e).__name__}")
            return OutboundResult(OUTCOME_TIMEOUT, error=f"Timed out after {timeout}s")
        except httpx.HTTPError as e:
            logger.warning(f"  {url} unreachable: {type(e).__name__}: {e}")
            return OutboundResult(OUTCOME_UPSTREAM_ERROR, error=f"{type(e).__name__}: {e}")

        logger.info(f"  response: HTTP {response.status_code}")
        if response.is_error:
            return OutboundResult(
                OUTCOME_UPSTREAM_ERROR,
                status_code=response.status_code,
                error=f"Workflow engine answered HTTP {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text or None
        return OutboundResult(OUTCOME_OK, status_code=response.status_code, data=data)

    async def start_pipeline(self, payload: dict) -> OutboundResult:
        """Trigger the master pipeline for a freshly created session."""
        return await self._post(self.config.start_path, payload, self.config.timeout_seconds)

    async def resume(self, resume_url: str, action: str, idea_index: Optional[int] = None) -> OutboundResult:
        """Deliver a human decision to the absolute wait address of a paused run."""
        payload: dict[str, Any] = {"action": action}
        if idea_index is not None:
            payload["ideaIndex"] = idea_index
        return await self._post(resume_url, payload, self.config.timeout_seconds)

    async def publish(self, payload: dict) -> OutboundResult:
        """Hand approved content to the publisher workflow."""
        return await self._post(self.config.publish_path, payload, self.config.publish_timeout_seconds)

    async def ping(self) -> OutboundResult:
        """Probe the engine's health endpoint with a short timeout."""
        try:
            response = await self.client.get(self.config.health_path, timeout=5.0)
        except httpx.HTTPError as e:
            return OutboundResult(OUTCOME_UPSTREAM_ERROR, error=f"{type(e).__name__}: {e}")
        if response.is_error:
            return OutboundResult(
                OUTCOME_UPSTREAM_ERROR,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )
        return OutboundResult(OUTCOME_OK, status_code=response.status_code)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
