"""Controlled enumerations for the kindred-moments domain.

Every categorical field in the domain MUST reference an enum defined here.
Free-form strings are not acceptable for classification fields.
"""

from __future__ import annotations

from enum import Enum


class Mood(str, Enum):
    """The closed set of moods a participant can vote for or tag a post with."""

    CALM = "calm"
    EXCITED = "excited"
    NOSTALGIC = "nostalgic"
    PEACEFUL = "peaceful"
    INSPIRED = "inspired"
    HAPPY = "happy"
    CONTEMPLATIVE = "contemplative"
    GRATEFUL = "grateful"
    ENERGETIC = "energetic"
    COZY = "cozy"

    @property
    def emoji(self) -> str:
        return _MOOD_EMOJI[self]


_MOOD_EMOJI = {
    Mood.CALM: "\U0001faf6",
    Mood.EXCITED: "\U0001f929",
    Mood.NOSTALGIC: "\U0001f4ad",
    Mood.PEACEFUL: "\U0001f60c",
    Mood.INSPIRED: "✨",
    Mood.HAPPY: "\U0001f60a",
    Mood.CONTEMPLATIVE: "\U0001f914",
    Mood.GRATEFUL: "\U0001f64f",
    Mood.ENERGETIC: "⚡",
    Mood.COZY: "☕",
}


class MomentState(str, Enum):
    """Stored lifecycle states.  Purged moments are removed, not flagged."""

    ACTIVE = "active"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class ReactionType(str, Enum):
    HEART = "heart"
    SMILE = "smile"
    THOUGHTFUL = "thoughtful"
    GRATEFUL = "grateful"


class MediaType(str, Enum):
    PHOTO = "photo"
    SKETCH = "sketch"


class MessageType(str, Enum):
    TEXT = "text"
    EMOJI = "emoji"
    SYSTEM = "system"
