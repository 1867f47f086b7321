"""WebSocket endpoint for moment rooms.

Path: /ws/moments?user_id=anon_...

Frames in both directions are JSON ``{"event": ..., "data": {...}}``.

Client events:
    join {moment_id}            enter a moment's room
    leave                       leave the current room
    sendMessage {text, message_type}
    typing {is_typing}
    ping

Any failure is reported to this connection only as ``error {kind, message}``;
the socket stays open.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from kindred_moments.api.dependencies import USER_ID_COOKIE, resolve_user_id
from kindred_moments.domain.errors import MomentError, UnauthenticatedError, ValidationFailedError
from kindred_moments.services.connection import WebSocketConnection
from kindred_moments.services.presence_hub import PresenceHub

logger = logging.getLogger(__name__)

UNAUTHENTICATED_CLOSE_CODE = 4401


def create_moment_socket_router(hub: PresenceHub) -> APIRouter:
    """Factory that wires the room socket to a PresenceHub."""

    router = APIRouter()

    @router.websocket("/ws/moments")
    async def moment_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = WebSocketConnection(websocket)

        try:
            user_id = resolve_user_id(
                websocket.query_params.get("user_id") or websocket.cookies.get(USER_ID_COOKIE)
            )
        except UnauthenticatedError as exc:
            await connection.send("error", exc.to_dict())
            await websocket.close(code=UNAUTHENTICATED_CLOSE_CODE)
            return

        hub.connect(connection, user_id)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    event, data = _parse_frame(raw)
                    await _dispatch(hub, connection, event, data)
                except MomentError as exc:
                    logger.debug("Socket %s event rejected: %s", connection.connection_id, exc.message)
                    await hub.send_error(connection.connection_id, exc)
        except WebSocketDisconnect:
            logger.info("Socket %s disconnected", connection.connection_id)
        finally:
            await hub.disconnect(connection.connection_id)

    return router


def _parse_frame(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationFailedError("Frames must be JSON") from None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValidationFailedError("Frames must look like {\"event\": ..., \"data\": ...}")
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationFailedError("Event data must be an object")
    return frame["event"], data


async def _dispatch(hub: PresenceHub, connection: WebSocketConnection, event: str, data: dict[str, Any]) -> None:
    cid = connection.connection_id

    if event == "join":
        try:
            moment_id = UUID(str(data.get("moment_id")))
        except ValueError:
            raise ValidationFailedError("join requires a valid moment_id") from None
        await hub.join(cid, moment_id)

    elif event == "leave":
        await hub.leave(cid)

    elif event == "sendMessage":
        await hub.send_message(cid, data.get("text"), data.get("message_type", "text"))

    elif event == "typing":
        await hub.typing(cid, bool(data.get("is_typing", False)))

    elif event == "ping":
        await connection.send("pong", {})

    else:
        raise ValidationFailedError(f"Unknown event: {event!r}")
