"""Callback ingress: applies workflow-engine progress reports to the ledger.

Each handler writes through the SessionLedger first and only then publishes
to the Broadcaster, so the ledger is durable whether or not anyone is
watching. Publishing only enqueues and never fails the callback.

Stage-ready callbacks (content/video/card) are pure notifications and work
even while the relational store is down.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from factorydash.db.models import CostEntry, MediaFile, PipelineStep, WorkflowError
from factorydash.schemas.callbacks import (
    CardReady,
    ContentReady,
    CostReport,
    ErrorReport,
    LogErrorReport,
    MediaRegistration,
    SessionUpdate,
    StepUpdate,
    VideoReady,
)
from factorydash.services.fanout import Broadcaster
from factorydash.services.ledger import SessionLedger, StatusReport

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class CallbackIngress:
    def __init__(self, ledger: SessionLedger, broadcaster: Broadcaster):
        self.ledger = ledger
        self.broadcaster = broadcaster

    async def step_update(self, report: StepUpdate) -> PipelineStep:
        step = await self.ledger.record_step(
            report.session_id,
            report.step_name,
            step_order=report.step_order,
            status=report.status,
            input_data=report.input_data,
            output_data=report.output_data,
            ai_model=report.ai_model,
            tokens_used=report.tokens_used,
            duration_ms=report.duration_ms,
        )
        self.broadcaster.publish(step.session_id, "step-update", {
            "sessionId": step.session_id,
            "stepName": step.step_name,
            "stepOrder": step.step_order,
            "status": step.status,
        })
        return step

    async def session_update(self, report: SessionUpdate) -> StatusReport:
        result = await self.ledger.apply_status_report(
            report.session_id,
            report.status,
            current_step=report.current_step,
            error_message=report.error_message,
            error_step=report.error_step,
            resume_url=report.resume_url,
        )
        if result.ignored:
            return result

        row = result.session
        self.broadcaster.publish(row.id, "session-update", {
            "sessionId": row.id,
            "status": row.status,
            "currentStep": row.current_step,
            "awaitingDecision": row.resume_url is not None,
            "errorMessage": row.error_message,
        })
        return result

    async def error(self, report: ErrorReport) -> WorkflowError:
        return await self._record_error(
            session_id=report.session_id,
            workflow_name=report.workflow_name,
            node_name=report.node_name,
            error_message=report.error_message,
            error_stack=report.error_stack,
        )

    async def log_error(self, report: LogErrorReport) -> WorkflowError:
        """Lenient alias used from inside workflow definitions."""
        return await self._record_error(
            session_id=report.session_id,
            workflow_name=report.workflow_name or "unknown",
            node_name=report.node_name,
            error_message=report.error_message or "Unknown error",
        )

    async def _record_error(
        self,
        session_id: Optional[int],
        workflow_name: str,
        error_message: str,
        node_name: Optional[str] = None,
        error_stack: Optional[str] = None,
    ) -> WorkflowError:
        record = await self.ledger.record_error(
            workflow_name,
            error_message,
            session_id=session_id,
            node_name=node_name,
            error_stack=error_stack,
        )
        self.broadcaster.publish(session_id, "workflow-error", {
            "sessionId": session_id,
            "workflowName": workflow_name,
            "nodeName": node_name,
            "errorMessage": error_message,
            "timestamp": _timestamp(),
        })
        return record

    async def cost(self, report: CostReport) -> CostEntry:
        entry = await self.ledger.record_cost(
            report.provider,
            report.model,
            session_id=report.session_id,
            step_name=report.step_name,
            prompt_tokens=report.prompt_tokens,
            completion_tokens=report.completion_tokens,
            total_tokens=report.total_tokens,
            cost_usd=report.cost_usd,
            duration_ms=report.duration_ms,
        )
        self.broadcaster.publish(entry.session_id, "cost", {
            "sessionId": entry.session_id,
            "stepName": entry.step_name,
            "provider": entry.provider,
            "model": entry.model,
            "totalTokens": entry.tokens_total,
            "costUsd": entry.cost_usd,
        })
        return entry

    async def media(self, report: MediaRegistration) -> MediaFile:
        media = await self.ledger.register_media(
            report.file_key,
            report.file_name,
            session_id=report.session_id,
            file_type=report.file_type,
            mime_type=report.mime_type,
            file_size=report.file_size,
            source=report.source,
            metadata=report.metadata,
        )
        self.broadcaster.publish(media.session_id, "media", {
            "sessionId": media.session_id,
            "id": media.id,
            "fileKey": media.file_key,
            "fileName": media.file_name,
            "fileType": media.file_type,
        })
        return media

    # -----------------------------------------------------------------------
    # Stage-ready notifications (no ledger write)
    # -----------------------------------------------------------------------

    def content_ready(self, report: ContentReady) -> dict[str, Any]:
        return self._notify(None, "content-ready", report.model_dump())

    def video_ready(self, report: VideoReady) -> dict[str, Any]:
        return self._notify(report.session_id, "video-ready", report.model_dump())

    def card_ready(self, report: CardReady) -> dict[str, Any]:
        return self._notify(None, "card-ready", report.model_dump())

    def _notify(self, session_id: Optional[int], event: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload = {**fields, "timestamp": _timestamp()}
        delivered = self.broadcaster.publish(session_id, event, payload)
        logger.info(f"{event} for session {session_id} sent to {delivered} subscriber(s)")
        return payload
