"""Mood votes and the per-moment mood summary.

A MoodVote is one participant's current feeling about a moment.  The
MoodSummary is a pure, immutable fold over the votes of one moment.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from kindred_moments.domain.enums import Mood


class MoodVote(BaseModel):
    """A single (moment, user) vote.  Replaced wholesale on re-vote."""

    moment_id: UUID
    user_id: str
    mood: Mood
    intensity: int = Field(3, ge=1, le=5)
    created_at: datetime

    model_config = {"frozen": True}


class DominantMood(BaseModel):
    mood: Mood
    emoji: str
    count: int
    percentage: int = Field(..., ge=0, le=100)
    avg_intensity: float

    model_config = {"frozen": True}


class MoodSummary(BaseModel):
    """Aggregated mood distribution for one moment."""

    total_votes: int = 0
    counts: dict[Mood, int] = Field(default_factory=lambda: {m: 0 for m in Mood})
    percentages: dict[Mood, int] = Field(default_factory=lambda: {m: 0 for m in Mood})
    dominant: list[DominantMood] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def empty(cls) -> MoodSummary:
        return cls()
