"""Resume gate: relays a human decision to the paused workflow run.

A session is AwaitingDecision while it has a ``resume_url`` and Free
otherwise. The gate only forwards the decision with one outbound call; it
never clears ``resume_url`` or changes status. The engine reports its new
state through a later session-update.

If the engine never reports back after a successful relay, the session stays
AwaitingDecision until a human approves, rejects or cancels it directly.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from factorydash.errors import ConflictError, UpstreamError, ValidationError
from factorydash.orchestrator.state import RESUME_ACTIONS
from factorydash.services.fanout import Broadcaster
from factorydash.services.ledger import SessionLedger
from factorydash.services.workflow_client import OutboundResult, WorkflowEngineClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    action: str
    idea_index: Optional[int] = None

    def validate(self) -> None:
        if self.action not in RESUME_ACTIONS:
            raise ValidationError(
                f"Invalid action '{self.action}'. Allowed: {', '.join(sorted(RESUME_ACTIONS))}"
            )
        if self.action == "select_idea" and (self.idea_index is None or self.idea_index < 0):
            raise ValidationError("select_idea requires a non-negative ideaIndex")


class ResumeGate:
    def __init__(
        self,
        ledger: SessionLedger,
        workflow_client: WorkflowEngineClient,
        broadcaster: Broadcaster,
    ):
        self.ledger = ledger
        self.workflow_client = workflow_client
        self.broadcaster = broadcaster

    async def submit(self, session_id: int, decision: Decision) -> OutboundResult:
        """Forward ``decision`` to the session's recorded wait address.

        Raises:
            ValidationError: Unknown action or missing idea index
            NotFoundError: No such session
            ConflictError: Session has no pending wait; nothing is sent
            UpstreamError: The relay failed; the session is left as it was
                and the same decision can be retried
        """
        decision.validate()
        session = await self.ledger.get_session(session_id)
        if not session.resume_url:
            raise ConflictError(f"Session {session_id} has no pending wait")

        result = await self.workflow_client.resume(
            session.resume_url, decision.action, decision.idea_index
        )
        if not result.ok:
            logger.warning(
                f"Resume relay for session {session_id} failed ({result.outcome}): {result.error}"
            )
            raise UpstreamError(f"Workflow engine did not accept the decision: {result.error}")

        logger.info(f"Relayed '{decision.action}' to session {session_id}")
        self.broadcaster.publish(session_id, "session-action", {
            "sessionId": session_id,
            "action": decision.action,
            "ideaIndex": decision.idea_index,
        })
        return result
