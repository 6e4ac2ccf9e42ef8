"""Tests for room-scoped fan-out."""

from factorydash.auth import Identity
from factorydash.services.fanout import GLOBAL_ROOM, Broadcaster, session_room


def _drain(subscriber) -> list[dict]:
    messages = []
    while not subscriber.outbox.empty():
        messages.append(subscriber.outbox.get_nowait())
    return messages


def test_session_event_reaches_session_and_global_rooms_only():
    broadcaster = Broadcaster()
    watcher_s = broadcaster.connect(Identity("s-watcher"))
    watcher_t = broadcaster.connect(Identity("t-watcher"))
    dashboard = broadcaster.connect(Identity("dashboard"))
    broadcaster.join(watcher_s, session_room(7))
    broadcaster.join(watcher_t, session_room(8))
    broadcaster.join(dashboard, GLOBAL_ROOM)

    delivered = broadcaster.publish(7, "step-update", {"stepName": "tts", "status": "running"})

    assert delivered == 2
    assert _drain(watcher_s) == [{"event": "step-update", "data": {"stepName": "tts", "status": "running"}}]
    assert _drain(dashboard) == [
        {"event": "step-update", "data": {"sessionId": 7, "stepName": "tts", "status": "running"}}
    ]
    assert _drain(watcher_t) == []


def test_null_session_id_is_global_only():
    broadcaster = Broadcaster()
    watcher = broadcaster.connect(Identity("watcher"))
    dashboard = broadcaster.connect(Identity("dashboard"))
    broadcaster.join(watcher, session_room(None))
    broadcaster.join(dashboard, GLOBAL_ROOM)

    broadcaster.publish(None, "content-ready", {"idea_id": 3})

    assert _drain(watcher) == []
    assert _drain(dashboard) == [{"event": "content-ready", "data": {"sessionId": None, "idea_id": 3}}]


def test_publish_without_subscribers_is_a_noop():
    broadcaster = Broadcaster()
    assert broadcaster.publish(1, "session-update", {"status": "processing"}) == 0
    assert broadcaster.connection_count == 0


def test_full_outbox_drops_instead_of_blocking():
    broadcaster = Broadcaster(queue_size=2)
    slow = broadcaster.connect(Identity("slow"))
    broadcaster.join(slow, GLOBAL_ROOM)

    results = [broadcaster.publish(1, "cost", {"n": n}) for n in range(3)]

    assert results == [1, 1, 0]
    assert slow.dropped == 1
    assert [m["data"]["n"] for m in _drain(slow)] == [0, 1]


def test_leave_and_disconnect_remove_memberships():
    broadcaster = Broadcaster()
    sub = broadcaster.connect(Identity("carol"))
    broadcaster.join(sub, session_room(1))
    broadcaster.join(sub, GLOBAL_ROOM)

    broadcaster.leave(sub, session_room(1))
    assert broadcaster.members(session_room(1)) == set()
    assert sub.rooms == {GLOBAL_ROOM}

    broadcaster.disconnect(sub)
    assert broadcaster.members(GLOBAL_ROOM) == set()
    assert broadcaster.connection_count == 0
    assert broadcaster.publish(1, "session-update", {}) == 0
