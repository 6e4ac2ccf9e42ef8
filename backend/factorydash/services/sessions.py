"""Session lifecycle: the human-facing operations on the ledger.

Outbound calls to the workflow engine are never allowed to undo a committed
ledger write. A failed start trigger leaves the session in ``created`` for a
human to retry; a failed publish relay leaves the session where it was.
"""

import logging
from typing import Optional

from factorydash.db.models import PipelineSession
from factorydash.errors import ConflictError, UpstreamError
from factorydash.orchestrator.state import can_transition
from factorydash.services.fanout import Broadcaster
from factorydash.services.ledger import SessionLedger
from factorydash.services.workflow_client import OutboundResult, WorkflowEngineClient

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        ledger: SessionLedger,
        workflow_client: WorkflowEngineClient,
        broadcaster: Broadcaster,
    ):
        self.ledger = ledger
        self.workflow_client = workflow_client
        self.broadcaster = broadcaster

    async def create(
        self,
        product_name: str,
        marketplace: str,
        product_articles: Optional[list] = None,
        product_description: str = "",
        created_by: Optional[str] = None,
    ) -> tuple[PipelineSession, OutboundResult]:
        """Write the session row, then trigger the master pipeline.

        Returns:
            The committed session and the outcome of the start trigger
        """
        session = await self.ledger.create_session(
            product_name,
            marketplace,
            product_articles=product_articles,
            product_description=product_description,
            created_by=created_by,
        )

        trigger = await self.workflow_client.start_pipeline({
            "sessionId": session.id,
            "userLogin": created_by or "unknown",
            "productName": session.product_name,
            "productArticles": session.product_articles or [],
            "marketplace": session.marketplace,
            "productDescription": session.product_description,
        })
        if not trigger.ok:
            logger.warning(
                f"Pipeline trigger for session {session.id} failed ({trigger.outcome}): "
                f"{trigger.error}; session left in '{session.status}'"
            )

        self.broadcaster.publish(session.id, "session-created", {
            "sessionId": session.id,
            "productName": session.product_name,
            "marketplace": session.marketplace,
            "status": session.status,
        })
        return session, trigger

    async def approve(self, session_id: int) -> PipelineSession:
        row = await self.ledger.transition(session_id, "approved")
        self._publish_status(row, "session-approved")
        return row

    async def reject(self, session_id: int, reason: Optional[str] = None) -> PipelineSession:
        extra = {"error_message": reason} if reason else None
        row = await self.ledger.transition(session_id, "rejected", extra)
        self._publish_status(row, "session-rejected")
        return row

    async def cancel(self, session_id: int) -> PipelineSession:
        row = await self.ledger.cancel(session_id)
        self._publish_status(row, "session-cancelled")
        return row

    async def publish(
        self,
        session_id: int,
        channels: list[str],
        caption: Optional[str] = None,
        generate_caption: bool = False,
    ) -> tuple[PipelineSession, OutboundResult]:
        """Hand the session's content to the publisher, then mark it publishing.

        Raises:
            NotFoundError: No such session
            ConflictError: Session is not approved or awaiting review
            UpstreamError: Publisher did not accept the job; row untouched
        """
        session = await self.ledger.get_session(session_id)
        if not can_transition(session.status, "publishing"):
            raise ConflictError(
                f"Session {session_id} cannot be published from '{session.status}'"
            )

        result = await self.workflow_client.publish({
            "sessionId": session_id,
            "channels": channels,
            "caption": caption,
            "generateCaption": generate_caption,
        })
        if not result.ok:
            logger.warning(
                f"Publish relay for session {session_id} failed ({result.outcome}): {result.error}"
            )
            raise UpstreamError(f"Publisher did not accept the job: {result.error}")

        row = await self.ledger.transition(session_id, "publishing")
        self._publish_status(row, "session-publishing")
        return row, result

    def _publish_status(self, row: PipelineSession, event: str) -> None:
        self.broadcaster.publish(row.id, event, {"sessionId": row.id, "status": row.status})
