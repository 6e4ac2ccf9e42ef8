"""WebSocket push channel at ``/ws``.

The access token is verified before the handshake is accepted; without a
valid token the connection is refused with close code 1008 and no room can
be joined.

Client messages (JSON):
    {"action": "watch-session", "sessionId": 42}
    {"action": "unwatch-session", "sessionId": 42}
    {"action": "watch-all"}

Server messages (JSON):
    {"event": "joined" | "left", "room": "session-42"}
    {"event": "error", "error": "..."}
    {"event": "<ledger event>", "data": {...}}
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from factorydash.auth import extract_token, verify_token
from factorydash.errors import AuthenticationError
from factorydash.services.fanout import GLOBAL_ROOM, Broadcaster, Subscriber, session_room

logger = logging.getLogger(__name__)

router = APIRouter()


def _room_for(message: dict):
    action = message.get("action")
    if action == "watch-all":
        return GLOBAL_ROOM
    session_id = message.get("sessionId")
    if action in ("watch-session", "unwatch-session") and isinstance(session_id, int):
        return session_room(session_id)
    return None


async def _pump_outbox(websocket: WebSocket, subscriber: Subscriber):
    while True:
        message = await subscriber.outbox.get()
        await websocket.send_json(message)


async def _read_commands(websocket: WebSocket, broadcaster: Broadcaster, subscriber: Subscriber):
    while True:
        try:
            message = await websocket.receive_json()
        except ValueError:
            await subscriber.outbox.put({"event": "error", "error": "Messages must be JSON"})
            continue

        room = _room_for(message) if isinstance(message, dict) else None
        if room is None:
            await subscriber.outbox.put({"event": "error", "error": "Unknown action"})
            continue

        if message["action"] == "unwatch-session":
            broadcaster.leave(subscriber, room)
            await subscriber.outbox.put({"event": "left", "room": room})
        else:
            broadcaster.join(subscriber, room)
            await subscriber.outbox.put({"event": "joined", "room": room})


@router.websocket("/ws")
async def push_channel(websocket: WebSocket):
    settings = websocket.app.state.settings
    broadcaster: Broadcaster = websocket.app.state.broadcaster

    token = extract_token(
        websocket.headers.get("authorization"), websocket.cookies, websocket.query_params
    )
    try:
        if token is None:
            raise AuthenticationError("Authorization required")
        identity = verify_token(token, settings.auth)
    except AuthenticationError as e:
        logger.info(f"[WS] refused connection: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = broadcaster.connect(identity)
    writer = asyncio.create_task(_pump_outbox(websocket, subscriber))
    try:
        await _read_commands(websocket, broadcaster, subscriber)
    except WebSocketDisconnect:
        pass
    finally:
        writer.cancel()
        broadcaster.disconnect(subscriber)
