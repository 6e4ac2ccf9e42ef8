"""Tests for the session/step transition rules."""

from datetime import datetime, timedelta

import pytest

from factorydash.orchestrator.state import (
    SESSION_STATUSES,
    can_cancel,
    can_transition,
    is_session_status,
    is_step_status,
    resume_url_after,
    step_effects,
)

NOW = datetime(2026, 1, 1, 12, 0, 0)
EARLIER = NOW - timedelta(minutes=5)


def test_session_status_enum():
    assert set(SESSION_STATUSES) == {
        "created", "processing", "ready_for_review", "approved", "publishing",
        "published", "rejected", "error", "cancelled",
    }
    assert is_session_status("ready_for_review")
    assert not is_session_status("pipeline_running")
    assert not is_session_status(None)
    assert is_step_status("skipped")
    assert not is_step_status("done")


@pytest.mark.parametrize("current", sorted(SESSION_STATUSES))
def test_review_decisions_only_from_ready_for_review(current):
    expected = current == "ready_for_review"
    assert can_transition(current, "approved") is expected
    assert can_transition(current, "rejected") is expected


def test_publishing_from_approved_or_review():
    assert can_transition("approved", "publishing")
    assert can_transition("ready_for_review", "publishing")
    assert not can_transition("processing", "publishing")
    assert not can_transition("published", "publishing")


@pytest.mark.parametrize("current", sorted(SESSION_STATUSES))
def test_cancel_allowed_unless_published(current):
    assert can_cancel(current) is (current != "published")
    assert can_transition(current, "cancelled") is (current != "published")


def test_no_transition_out_of_terminal_statuses():
    assert not can_transition("published", "processing")
    assert not can_transition("cancelled", "error")


def test_resume_url_only_kept_while_not_terminal():
    url = "http://engine.test/webhook-waiting/abc"
    assert resume_url_after("ready_for_review", url) == url
    assert resume_url_after("processing", None) is None
    assert resume_url_after("processing", "") is None
    assert resume_url_after("cancelled", url) is None
    assert resume_url_after("published", url) is None


def test_started_at_set_on_first_running_only():
    first = step_effects(None, "running", None, None, NOW)
    assert first.started_at == NOW
    assert first.completed_at is None
    assert first.mirror_current_step

    replay = step_effects("running", "running", EARLIER, None, NOW)
    assert replay.started_at == EARLIER


def test_completed_at_set_on_terminal_transition():
    done = step_effects("running", "completed", EARLIER, None, NOW)
    assert done.completed_at == NOW
    assert done.started_at == EARLIER
    assert not done.mirror_current_step

    # Replaying the same terminal report keeps the original stamp
    replay = step_effects("completed", "completed", EARLIER, EARLIER, NOW)
    assert replay.completed_at == EARLIER

    failed = step_effects("completed", "failed", EARLIER, EARLIER, NOW)
    assert failed.completed_at == NOW


def test_pending_mirrors_current_step_without_timestamps():
    effects = step_effects(None, "pending", None, None, NOW)
    assert effects.mirror_current_step
    assert effects.started_at is None
    assert effects.completed_at is None
