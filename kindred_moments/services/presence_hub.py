"""PresenceHub — room membership and real-time fan-out per moment.

Every connection has one explicit record ``{connection_id, user_id,
moment_id}`` owned by the hub.  Leave and disconnect clean-up is a single
lookup in that table.

Event conventions:
    - ``participantJoined`` goes out once per membership, whichever of a
      REST join or a room entry happens first, to everyone in the room
      except the triggering connection.  ``participantLeft`` goes out when
      that membership ends.  Read-only viewers of closed moments produce
      neither.
    - ``newMessage`` goes to everyone, sender included; the sender also
      gets ``messageSent``.
    - ``error`` only ever goes to the triggering connection.

Ordering: ``sequenced(moment_id)`` serialises accept-then-deliver per room,
so each connection sees a room's events in the order they were accepted.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncContextManager
from uuid import UUID

from kindred_moments.domain.chat import ChatMessage
from kindred_moments.domain.enums import MessageType
from kindred_moments.domain.errors import (
    InactiveError,
    MomentError,
    NotFoundError,
    NotParticipantError,
    UnauthenticatedError,
    ValidationFailedError,
)
from kindred_moments.domain.moment import MomentSummary
from kindred_moments.services.connection import Connection
from kindred_moments.store.chat_log import ChatLog
from kindred_moments.store.locking import KeyedLocks
from kindred_moments.store.moment_store import MomentStore, clean_text

logger = logging.getLogger(__name__)


class ConnectionRecord:
    """Binding of one live connection to an identity and (maybe) a room."""

    __slots__ = ("connection", "user_id", "moment_id")

    def __init__(self, connection: Connection, user_id: str | None) -> None:
        self.connection = connection
        self.user_id = user_id
        self.moment_id: UUID | None = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id


class PresenceHub:
    """Tracks which connection sits in which moment room and broadcasts to rooms.

    Args:
        store: Source of truth for moments and participants.
        chat_log: Where chat messages are persisted.
        max_chat_length: Maximum chat message length after trimming.
        history_limit: Messages sent as backfill after a join.
    """

    def __init__(
        self,
        store: MomentStore,
        chat_log: ChatLog,
        max_chat_length: int = 200,
        history_limit: int = 20,
    ) -> None:
        self._store = store
        self._chat = chat_log
        self._max_chat_length = max_chat_length
        self._history_limit = history_limit
        self._records: dict[str, ConnectionRecord] = {}
        self._rooms: dict[UUID, dict[str, ConnectionRecord]] = {}
        self._room_locks: KeyedLocks = KeyedLocks()
        self._announced: dict[UUID, set[str]] = {}

    # ── Connections ──────────────────────────────────────────────────────

    def connect(self, connection: Connection, user_id: str | None = None) -> ConnectionRecord:
        record = ConnectionRecord(connection, user_id)
        self._records[connection.connection_id] = record
        logger.info("Connection %s opened (%d total)", connection.connection_id, len(self._records))
        return record

    async def disconnect(self, connection_id: str) -> None:
        if connection_id not in self._records:
            return
        try:
            await self.leave(connection_id, notify_self=False)
        except MomentError as exc:
            logger.warning("Leave on disconnect of %s failed: %s", connection_id, exc.message)
        finally:
            self._records.pop(connection_id, None)
        logger.info("Connection %s closed (%d remaining)", connection_id, len(self._records))

    # ── Rooms ────────────────────────────────────────────────────────────

    def sequenced(self, moment_id: UUID) -> AsyncContextManager[Any]:
        """Per-room ordering lock for accept-and-deliver sections."""
        return self._room_locks.hold(moment_id)

    async def join(self, connection_id: str, moment_id: UUID, user_id: str | None = None) -> MomentSummary:
        """Bind a connection to a moment room.

        Participants may join open moments; anyone may view a closed
        (expired or archived) moment read-only.
        """
        record = self._require_record(connection_id)
        if user_id is not None:
            record.user_id = user_id
        if not record.user_id:
            raise UnauthenticatedError("Anonymous identity required")

        moment = self._store.require(moment_id)
        read_only = moment.is_closed
        if not read_only and not moment.is_participant(record.user_id):
            raise NotParticipantError("Access denied: join the moment before entering its room")

        if record.moment_id is not None and record.moment_id != moment_id:
            await self.leave(connection_id, notify_self=False)

        async with self.sequenced(moment_id):
            self._bind(record, moment_id)
            if not read_only:
                await self._store.touch_participant(moment_id, record.user_id)

            await self._send(record, "joined", {
                "moment_id": str(moment_id),
                "participant_count": moment.participant_count,
                "read_only": read_only,
            })
            await self._send(record, "chatHistory", {
                "moment_id": str(moment_id),
                "messages": [m.to_socket_dict() for m in self.chat_history(moment_id)],
            })
            if not read_only:
                await self.announce_joined(
                    moment_id, record.user_id, moment.participant_count, exclude=connection_id
                )

        logger.info("User %s entered room %s (read_only=%s)", record.user_id, moment_id, read_only)
        return moment.snapshot()

    async def leave(self, connection_id: str, notify_self: bool = True) -> bool:
        """Unbind a connection from its room.  Returns False if it was not in one.

        When this was the user's last connection in the room, the user
        also stops being a participant of the (still open) moment.
        """
        record = self._records.get(connection_id)
        if record is None or record.moment_id is None:
            return False

        moment_id = record.moment_id
        async with self.sequenced(moment_id):
            self._unbind(record)
            released, count = await self._release(moment_id, record.user_id)
            if notify_self:
                await self._send(record, "left", {"moment_id": str(moment_id)})
            if released:
                await self.announce_left(moment_id, record.user_id, count)
        logger.info("User %s left room %s", record.user_id, moment_id)
        return True

    def close_room(self, moment_id: UUID) -> int:
        """Unbind every connection from a room.  Returns how many were bound."""
        room = self._rooms.pop(moment_id, {})
        self._announced.pop(moment_id, None)
        for record in room.values():
            record.moment_id = None
        self._room_locks.discard(moment_id)
        return len(room)

    # ── Delivery ─────────────────────────────────────────────────────────

    async def broadcast(
        self,
        moment_id: UUID,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """Best-effort delivery to every connection in the room.

        Connections that fail to receive are dropped from the room.
        Returns how many connections the event reached.
        """
        room = self._rooms.get(moment_id)
        if not room:
            return 0

        targets = [r for cid, r in room.items() if cid != exclude]
        dead: list[ConnectionRecord] = []
        for record in targets:
            try:
                await record.connection.send(event, payload)
            except Exception as exc:
                logger.warning("Dropping connection %s from room %s: %s", record.connection_id, moment_id, exc)
                dead.append(record)

        for record in dead:
            self._unbind(record)
        return len(targets) - len(dead)

    async def announce_joined(
        self,
        moment_id: UUID,
        user_id: str,
        participant_count: int,
        exclude: str | None = None,
    ) -> bool:
        """Broadcast ``participantJoined`` unless this membership was already announced.

        Callers hold ``sequenced(moment_id)``.
        """
        announced = self._announced.setdefault(moment_id, set())
        if user_id in announced:
            return False
        announced.add(user_id)
        await self.broadcast(
            moment_id,
            "participantJoined",
            {"moment_id": str(moment_id), "user_id": user_id, "participant_count": participant_count},
            exclude=exclude,
        )
        return True

    async def announce_left(
        self,
        moment_id: UUID,
        user_id: str,
        participant_count: int,
        reason: str | None = None,
    ) -> None:
        """Broadcast ``participantLeft`` for an ended membership."""
        announced = self._announced.get(moment_id)
        if announced is not None:
            announced.discard(user_id)
            if not announced:
                del self._announced[moment_id]
        payload: dict[str, Any] = {
            "moment_id": str(moment_id),
            "user_id": user_id,
            "participant_count": participant_count,
        }
        if reason:
            payload["reason"] = reason
        await self.broadcast(moment_id, "participantLeft", payload)

    async def send_error(self, connection_id: str, error: MomentError) -> None:
        record = self._records.get(connection_id)
        if record is not None:
            await self._send(record, "error", error.to_dict())

    # ── Chat ─────────────────────────────────────────────────────────────

    def chat_history(self, moment_id: UUID, limit: int | None = None) -> list[ChatMessage]:
        return self._chat.history(moment_id, limit if limit is not None else self._history_limit)

    async def send_message(
        self,
        connection_id: str,
        text: str,
        message_type: MessageType | str = MessageType.TEXT,
    ) -> ChatMessage:
        record = self._require_record(connection_id)
        if record.moment_id is None:
            raise NotParticipantError("Must join a moment first")

        text = clean_text(text, self._max_chat_length, "Message")
        try:
            message_type = MessageType(message_type)
        except ValueError:
            raise ValidationFailedError(f"Invalid message type: {message_type!r}") from None
        if message_type == MessageType.SYSTEM:
            raise ValidationFailedError("System messages cannot be sent by participants")

        moment_id = record.moment_id
        moment = self._store.require(moment_id)
        async with self.sequenced(moment_id):
            async with self._store.locked(moment_id):
                if not moment.is_open():
                    raise InactiveError("Cannot send messages to an expired moment")
                if not moment.is_participant(record.user_id):
                    raise NotParticipantError("Must join the moment to send messages")
                moment.touch_participant(record.user_id)
                message = self._chat.append(moment_id, text, author_id=record.user_id, message_type=message_type)

            await self.broadcast(moment_id, "newMessage", message.to_socket_dict())
            await self._send(record, "messageSent", {"message_id": str(message.message_id)})

        logger.debug("Message %s sent in moment %s by %s", message.message_id, moment_id, record.user_id)
        return message

    async def typing(self, connection_id: str, is_typing: bool) -> bool:
        """Relay a typing indicator to the rest of the room.  Nothing is stored."""
        record = self._records.get(connection_id)
        if record is None or record.moment_id is None:
            return False
        await self.broadcast(
            record.moment_id,
            "userTyping",
            {"moment_id": str(record.moment_id), "user_id": record.user_id, "is_typing": bool(is_typing)},
            exclude=connection_id,
        )
        return True

    async def system_message(self, moment_id: UUID, text: str) -> ChatMessage:
        message = self._chat.append(moment_id, text, message_type=MessageType.SYSTEM)
        async with self.sequenced(moment_id):
            await self.broadcast(moment_id, "systemMessage", message.to_socket_dict())
        return message

    # ── Observability ────────────────────────────────────────────────────

    def room_size(self, moment_id: UUID) -> int:
        return len(self._rooms.get(moment_id, {}))

    def room_of(self, connection_id: str) -> UUID | None:
        record = self._records.get(connection_id)
        return record.moment_id if record else None

    @property
    def connection_count(self) -> int:
        return len(self._records)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    # ── Internals ────────────────────────────────────────────────────────

    def _require_record(self, connection_id: str) -> ConnectionRecord:
        record = self._records.get(connection_id)
        if record is None:
            raise NotFoundError(f"Connection {connection_id} is not registered")
        return record

    def _bind(self, record: ConnectionRecord, moment_id: UUID) -> None:
        record.moment_id = moment_id
        self._rooms.setdefault(moment_id, {})[record.connection_id] = record

    def _unbind(self, record: ConnectionRecord) -> None:
        moment_id = record.moment_id
        record.moment_id = None
        if moment_id is None:
            return
        room = self._rooms.get(moment_id)
        if room is not None:
            room.pop(record.connection_id, None)
            if not room:
                del self._rooms[moment_id]

    async def _release(self, moment_id: UUID, user_id: str | None) -> tuple[bool, int]:
        """Drop *user_id* as participant unless another of their connections remains.

        Returns whether the membership ended, and the participant count.
        """
        moment = self._store.get(moment_id)
        if moment is None:
            return False, 0
        still_here = any(r.user_id == user_id for r in self._rooms.get(moment_id, {}).values())
        removed = False
        if user_id and not still_here and moment.is_open():
            try:
                removed = await self._store.remove_participant(moment_id, user_id)
            except (InactiveError, NotFoundError) as exc:
                logger.debug("Participant release skipped for %s in %s: %s", user_id, moment_id, exc)
        return removed, moment.participant_count

    async def _send(self, record: ConnectionRecord, event: str, payload: dict[str, Any]) -> None:
        try:
            await record.connection.send(event, payload)
        except Exception as exc:
            logger.warning("Send of %s to %s failed: %s", event, record.connection_id, exc)
