"""Room-scoped push fan-out for ledger events.

Every connected client is a Subscriber with its own bounded outbox queue.
Publishing only enqueues (``put_nowait``) and never waits on a client. The
WebSocket endpoint drains each outbox on its own task.

Rooms:
    session-<id>  clients watching one session
    dashboard     clients watching everything; payloads carry ``sessionId``

Usage:
    broadcaster = Broadcaster()
    sub = broadcaster.connect(identity)
    broadcaster.join(sub, session_room(42))
    broadcaster.publish(42, "step-update", {"stepName": "tts", "status": "running"})
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Optional

from factorydash.auth import Identity

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "dashboard"


def session_room(session_id: Any) -> str:
    return f"session-{session_id}"


class Subscriber:
    """One authenticated push-channel connection."""

    def __init__(self, identity: Identity, queue_size: int = 256):
        self.identity = identity
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.rooms: set[str] = set()
        self.dropped = 0

    def deliver(self, message: dict) -> bool:
        """Enqueue a message without blocking. Returns False if dropped."""
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Push outbox full for {self.identity.login}, dropped '{message.get('event')}' "
                f"({self.dropped} dropped so far)"
            )
            return False
        return True

    def __repr__(self) -> str:
        return f"<Subscriber {self.identity.login} rooms={sorted(self.rooms)}>"


class Broadcaster:
    """Multicast registry of rooms to subscribers.

    Intended to be created once per app and passed explicitly to every
    component that publishes.
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._rooms: dict[str, set[Subscriber]] = defaultdict(set)
        self._subscribers: set[Subscriber] = set()

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    def connect(self, identity: Identity) -> Subscriber:
        subscriber = Subscriber(identity, queue_size=self.queue_size)
        self._subscribers.add(subscriber)
        logger.info(f"[WS] {identity.login} connected")
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        for room in list(subscriber.rooms):
            self.leave(subscriber, room)
        self._subscribers.discard(subscriber)
        logger.info(f"[WS] {subscriber.identity.login} disconnected")

    def join(self, subscriber: Subscriber, room: str) -> None:
        self._rooms[room].add(subscriber)
        subscriber.rooms.add(room)
        logger.info(f"[WS] {subscriber.identity.login} watching {room}")

    def leave(self, subscriber: Subscriber, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._rooms[room]
        subscriber.rooms.discard(room)

    def members(self, room: str) -> set[Subscriber]:
        return set(self._rooms.get(room, ()))

    def publish(self, session_id: Optional[Any], event: str, payload: dict) -> int:
        """Send ``event`` to the session room (if any) and the global room.

        A None session id means global only. The global copy always embeds
        ``sessionId``. Returns the number of messages enqueued; with nobody
        connected this is a no-op returning 0.
        """
        delivered = 0
        if session_id is not None:
            message = {"event": event, "data": payload}
            for subscriber in self.members(session_room(session_id)):
                delivered += subscriber.deliver(message)

        global_message = {"event": event, "data": {"sessionId": session_id, **payload}}
        for subscriber in self.members(GLOBAL_ROOM):
            delivered += subscriber.deliver(global_message)

        logger.debug(f"Published '{event}' for session {session_id} to {delivered} subscriber(s)")
        return delivered
