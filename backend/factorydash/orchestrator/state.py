"""State machine constants and transition rules for pipeline sessions and steps.

The workflow engine is the single writer of session status through its
callbacks; the rules here decide which of those reports (and which human
transitions) the ledger accepts, and which implicit fields a step callback
updates.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# Session statuses
SESSION_STATUSES = {
    "created": "Session row written, workflow engine triggered",
    "processing": "Workflow engine is executing steps",
    "ready_for_review": "Paused, waiting for a human decision",
    "approved": "Human approved the generated content",
    "publishing": "Publisher workflow is distributing the content",
    "published": "Content is live",
    "rejected": "Human rejected the generated content",
    "error": "Workflow engine reported a failure",
    "cancelled": "Cancelled by a human",
}

# Never left once entered, whatever the engine reports afterwards
TERMINAL_SESSION_STATUSES = {"published", "cancelled"}

# Human-driven transitions only legal from these source statuses
GATED_TRANSITIONS = {
    "approved": {"ready_for_review"},
    "rejected": {"ready_for_review"},
    "publishing": {"approved", "ready_for_review"},
}

# Step statuses
STEP_STATUSES = {"pending", "running", "completed", "failed", "skipped"}
TERMINAL_STEP_STATUSES = {"completed", "failed", "skipped"}
# Reports with these statuses move the session's current_step hint
ACTIVE_STEP_STATUSES = {"pending", "running"}

# Decisions the resume gate relays to a paused workflow run
RESUME_ACTIONS = {"approve", "reject", "select_idea"}


def is_session_status(status: Optional[str]) -> bool:
    return status in SESSION_STATUSES


def is_step_status(status: Optional[str]) -> bool:
    return status in STEP_STATUSES


def can_transition(current: str, target: str) -> bool:
    """Check a human-driven transition (approve/reject/publish/cancel).

    Args:
        current: Status currently stored on the session
        target: Requested status (must already be a valid session status)

    Returns:
        True if the ledger may apply the transition
    """
    if target == "cancelled":
        return can_cancel(current)
    if current in TERMINAL_SESSION_STATUSES:
        return False
    allowed_from = GATED_TRANSITIONS.get(target)
    if allowed_from is not None:
        return current in allowed_from
    return True


def can_cancel(current: str) -> bool:
    """Cancellation is legal from anything except a published session."""
    return current != "published"


def resume_url_after(status: str, reported: Optional[str]) -> Optional[str]:
    """Resume URL to store after a status change.

    A session-update carries the wait address only while the engine is
    paused; any report without one resolves the pending decision. Terminal
    sessions never keep a wait address.
    """
    if status in TERMINAL_SESSION_STATUSES:
        return None
    return reported or None


@dataclass(frozen=True)
class StepEffects:
    """Implicit field updates derived from one step callback."""

    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    mirror_current_step: bool


def step_effects(
    previous_status: Optional[str],
    new_status: str,
    started_at: Optional[datetime],
    completed_at: Optional[datetime],
    now: datetime,
) -> StepEffects:
    """Evaluate the timestamp and current_step rules for one step callback.

    Args:
        previous_status: Stored step status, None when the row is new
        new_status: Status after applying the callback
        started_at: Stored started_at (None for a new row)
        completed_at: Stored completed_at (None for a new row)
        now: Timestamp to stamp with

    Returns:
        StepEffects with the started_at/completed_at values to store and
        whether the session's current_step should point at this step.

    Examples:
        >>> step_effects(None, "running", None, None, t).started_at == t
        True
        >>> step_effects("completed", "completed", s, c, t).completed_at == c
        True
    """
    # started_at: first entry into running only
    if new_status == "running" and started_at is None:
        started_at = now

    # completed_at: entering a terminal status; replays keep the original stamp
    if new_status in TERMINAL_STEP_STATUSES:
        if previous_status != new_status or completed_at is None:
            completed_at = now

    return StepEffects(
        started_at=started_at,
        completed_at=completed_at,
        mirror_current_step=new_status in ACTIVE_STEP_STATUSES,
    )
