"""Ephemeral chat messages.

A ChatMessage carries its own expiry, independent of its moment's state.
It is deleted strictly by time (or when the moment is purged).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, Field

from kindred_moments.domain.enums import MessageType
from kindred_moments.foundation.clock import utc_now
from kindred_moments.foundation.identifiers import new_id

MESSAGE_TTL = timedelta(hours=24)


class ChatMessage(BaseModel):
    message_id: UUID
    moment_id: UUID
    author_id: str | None = Field(None, description="None for system messages")
    text: str
    message_type: MessageType = MessageType.TEXT
    created_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}

    @classmethod
    def create(
        cls,
        moment_id: UUID,
        text: str,
        author_id: str | None = None,
        message_type: MessageType = MessageType.TEXT,
        ttl: timedelta = MESSAGE_TTL,
    ) -> ChatMessage:
        now = utc_now()
        return cls(
            message_id=new_id(),
            moment_id=moment_id,
            author_id=author_id,
            text=text,
            message_type=message_type,
            created_at=now,
            expires_at=now + ttl,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_socket_dict(self) -> dict:
        return {
            "message_id": str(self.message_id),
            "moment_id": str(self.moment_id),
            "user_id": self.author_id,
            "text": self.text,
            "message_type": self.message_type.value,
            "created_at": self.created_at.isoformat(),
        }
