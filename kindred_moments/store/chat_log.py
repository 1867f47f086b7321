"""ChatLog — per-moment storage for ephemeral chat messages.

Messages are appended in time order and all share the same TTL, so the
expired messages of a moment always form a prefix of its log.  Expiry is
strictly by each message's own ``expires_at``; the moment's state plays
no part except that a purged moment takes its remaining messages with it.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from uuid import UUID

from kindred_moments.domain.chat import MESSAGE_TTL, ChatMessage
from kindred_moments.domain.enums import MessageType
from kindred_moments.foundation.clock import utc_now

logger = logging.getLogger(__name__)


class ChatLog:
    def __init__(self, ttl: timedelta = MESSAGE_TTL) -> None:
        self._ttl = ttl
        self._logs: dict[UUID, deque[ChatMessage]] = {}

    def append(
        self,
        moment_id: UUID,
        text: str,
        author_id: str | None = None,
        message_type: MessageType = MessageType.TEXT,
    ) -> ChatMessage:
        message = ChatMessage.create(
            moment_id, text, author_id=author_id, message_type=message_type, ttl=self._ttl
        )
        self._logs.setdefault(moment_id, deque()).append(message)
        return message

    def history(self, moment_id: UUID, limit: int = 20, now: datetime | None = None) -> list[ChatMessage]:
        """The latest *limit* unexpired messages, oldest first."""
        if limit <= 0:
            return []
        now = now or utc_now()
        live = [m for m in self._logs.get(moment_id, ()) if not m.is_expired(now)]
        return live[-limit:]

    def purge_expired(self, now: datetime | None = None, limit: int | None = None) -> int:
        """Delete expired messages, at most *limit* of them.  Returns how many."""
        now = now or utc_now()
        removed = 0
        for moment_id in list(self._logs):
            log = self._logs[moment_id]
            while log and log[0].is_expired(now):
                if limit is not None and removed >= limit:
                    return removed
                log.popleft()
                removed += 1
            if not log:
                del self._logs[moment_id]
        if removed:
            logger.debug("Deleted %d expired chat message(s)", removed)
        return removed

    def purge_moment(self, moment_id: UUID) -> int:
        return len(self._logs.pop(moment_id, ()))

    def purge_orphans(self, live_ids: set[UUID]) -> int:
        orphaned = [mid for mid in self._logs if mid not in live_ids]
        return sum(self.purge_moment(mid) for mid in orphaned)

    def count(self, moment_id: UUID | None = None) -> int:
        if moment_id is not None:
            return len(self._logs.get(moment_id, ()))
        return sum(len(log) for log in self._logs.values())
