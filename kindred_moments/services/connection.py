"""Transport-neutral connection handle used by the PresenceHub.

The hub only needs ``connection_id`` and ``send(event, payload)``.  The
WebSocket adapter frames every event as ``{"event": ..., "data": ...}``.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from fastapi import WebSocket

from kindred_moments.foundation.identifiers import new_id


class Connection(Protocol):
    connection_id: str

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        ...


class WebSocketConnection:
    """Wraps a FastAPI WebSocket as a hub Connection."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or str(new_id())
        self._websocket = websocket

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        await self._websocket.send_text(json.dumps({"event": event, "data": payload}, default=str))

    def __repr__(self) -> str:
        return f"WebSocketConnection(id={self.connection_id})"
