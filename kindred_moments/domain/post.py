"""Posts shared inside a moment, with per-user reactions."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from kindred_moments.domain.enums import MediaType, Mood, ReactionType
from kindred_moments.foundation.clock import utc_now
from kindred_moments.foundation.identifiers import new_id

_IMAGE_URL = re.compile(r"^https?://.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)


class MediaRef(BaseModel):
    """A single optional image attached to a post."""

    url: str
    media_type: MediaType = MediaType.PHOTO

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def url_must_be_image(cls, v: str) -> str:
        if not _IMAGE_URL.match(v):
            raise ValueError("media url must be an http(s) link to a jpg, png, gif or webp image")
        return v


class Post:
    """A post owned by a moment.

    Mutated (reactions, visibility) only under the owning moment's lock.
    """

    __slots__ = (
        "post_id",
        "moment_id",
        "author_id",
        "text",
        "mood",
        "media",
        "created_at",
        "is_visible",
        "_reactions",
    )

    def __init__(
        self,
        moment_id: UUID,
        author_id: str,
        text: str,
        mood: Mood | None = None,
        media: MediaRef | None = None,
    ) -> None:
        self.post_id: UUID = new_id()
        self.moment_id = moment_id
        self.author_id = author_id
        self.text = text
        self.mood = mood
        self.media: Optional[MediaRef] = media
        self.created_at: datetime = utc_now()
        self.is_visible: bool = True
        self._reactions: dict[str, ReactionType] = {}

    # ── Reactions ────────────────────────────────────────────────────────

    def react(self, user_id: str, reaction: ReactionType) -> ReactionType | None:
        """Set *user_id*'s reaction, replacing any earlier one.  Returns the old one."""
        previous = self._reactions.get(user_id)
        self._reactions[user_id] = reaction
        return previous

    def unreact(self, user_id: str) -> bool:
        return self._reactions.pop(user_id, None) is not None

    @property
    def reactions(self) -> dict[str, ReactionType]:
        return dict(self._reactions)

    @property
    def reaction_count(self) -> int:
        return len(self._reactions)

    def reaction_counts(self) -> dict[str, int]:
        counts = {r.value: 0 for r in ReactionType}
        for reaction in self._reactions.values():
            counts[reaction.value] += 1
        return counts

    # ── Summary ──────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        """Public view.  Author and reactor ids are not exposed."""
        return {
            "post_id": str(self.post_id),
            "moment_id": str(self.moment_id),
            "text": self.text,
            "mood": self.mood.value if self.mood else None,
            "media": self.media.model_dump(mode="json") if self.media else None,
            "reaction_count": self.reaction_count,
            "reactions": self.reaction_counts(),
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"Post(id={self.post_id!s}, moment={self.moment_id!s}, reactions={self.reaction_count})"
