"""Moment — a time- and location-scoped shared social space.

Lifecycle:  active → expired → archived → purged
    - active:   inside its 24h window, accepting joins, posts and votes
    - expired:  window elapsed; read-only, still queryable
    - archived: flagged for long-term read-only retention
    - purged:   removed from the store together with its dependents

A moment with no participants is still ACTIVE but not *live*; time alone
governs the hard transitions.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from kindred_moments.domain.enums import MomentState
from kindred_moments.domain.geo import GeoPoint
from kindred_moments.domain.mood import MoodSummary
from kindred_moments.foundation.clock import utc_now
from kindred_moments.foundation.identifiers import new_id

DEFAULT_WINDOW = timedelta(hours=24)

_STATE_ORDER = {
    MomentState.ACTIVE: 0,
    MomentState.EXPIRED: 1,
    MomentState.ARCHIVED: 2,
}


class Participant:
    """An anonymous identity embedded in a moment."""

    __slots__ = ("user_id", "joined_at", "last_active_at")

    def __init__(self, user_id: str, joined_at: datetime | None = None) -> None:
        now = joined_at or utc_now()
        self.user_id = user_id
        self.joined_at: datetime = now
        self.last_active_at: datetime = now

    def touch(self) -> None:
        self.last_active_at = utc_now()

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "joined_at": self.joined_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
        }


class MomentLocation(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None

    model_config = {"frozen": True}


class MomentSummary(BaseModel):
    """Immutable, serialisable view of a moment handed to collaborators."""

    moment_id: UUID
    location: MomentLocation
    state: MomentState
    is_live: bool = Field(..., description="False when nobody is currently a participant")
    participant_count: int
    peak_participants: int
    post_count: int
    created_at: datetime
    expires_at: datetime
    mood_summary: MoodSummary

    model_config = {"frozen": True}


class Moment:
    """A mutable moment record.

    Thread-safety note:
        Moment objects are mutated *only* while the caller holds that
        moment's lock in the MomentStore.  They are not themselves locked.
    """

    __slots__ = (
        "moment_id",
        "point",
        "name",
        "address",
        "created_at",
        "_expires_at",
        "post_count",
        "peak_participants",
        "mood_summary",
        "_state",
        "_participants",
    )

    def __init__(
        self,
        point: GeoPoint,
        name: str | None = None,
        address: str | None = None,
        window: timedelta = DEFAULT_WINDOW,
        moment_id: UUID | None = None,
    ) -> None:
        now = utc_now()
        self.moment_id: UUID = moment_id or new_id()
        self.point = point
        self.name = name
        self.address = address
        self.created_at: datetime = now
        self._expires_at: datetime = now + window
        self.post_count: int = 0
        self.peak_participants: int = 0
        self.mood_summary: MoodSummary = MoodSummary.empty()
        self._state = MomentState.ACTIVE
        self._participants: dict[str, Participant] = {}

    @property
    def expires_at(self) -> datetime:
        """End of the moment window.  Fixed at creation."""
        return self._expires_at

    # ── Participants ─────────────────────────────────────────────────────

    def add_participant(self, user_id: str) -> bool:
        """Add *user_id*; re-adding only refreshes presence.

        Returns True if the user was not already a participant.
        """
        existing = self._participants.get(user_id)
        if existing is not None:
            existing.touch()
            return False
        self._participants[user_id] = Participant(user_id)
        self.peak_participants = max(self.peak_participants, len(self._participants))
        return True

    def remove_participant(self, user_id: str) -> bool:
        return self._participants.pop(user_id, None) is not None

    def touch_participant(self, user_id: str) -> bool:
        participant = self._participants.get(user_id)
        if participant is None:
            return False
        participant.touch()
        return True

    def prune_idle(self, cutoff: datetime) -> list[str]:
        """Drop participants whose last activity is older than *cutoff*."""
        idle = [uid for uid, p in self._participants.items() if p.last_active_at < cutoff]
        for uid in idle:
            del self._participants[uid]
        return idle

    def is_participant(self, user_id: str) -> bool:
        return user_id in self._participants

    @property
    def participants(self) -> list[Participant]:
        """Read-only view of the participant set."""
        return list(self._participants.values())

    @property
    def participant_count(self) -> int:
        return len(self._participants)

    @property
    def is_live(self) -> bool:
        return bool(self._participants)

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def state(self) -> MomentState:
        return self._state

    def advance(self, target: MomentState) -> bool:
        """Move the stored state forward to *target*.

        Returns False if already there.  Moving backward raises ValueError.
        """
        if _STATE_ORDER[target] < _STATE_ORDER[self._state]:
            raise ValueError(f"moment {self.moment_id} cannot go from {self._state.value} to {target.value}")
        if target == self._state:
            return False
        self._state = target
        return True

    def is_window_over(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def is_open(self, now: datetime | None = None) -> bool:
        """True while the moment accepts joins, posts, votes and chat."""
        return self._state == MomentState.ACTIVE and not self.is_window_over(now)

    @property
    def is_closed(self) -> bool:
        """Expired or archived, whether or not a sweep has flipped it yet."""
        return not self.is_open()

    # ── Summary ──────────────────────────────────────────────────────────

    def snapshot(self) -> MomentSummary:
        state = self._state
        if state == MomentState.ACTIVE and self.is_window_over():
            state = MomentState.EXPIRED
        return MomentSummary(
            moment_id=self.moment_id,
            location=MomentLocation(
                latitude=self.point.latitude,
                longitude=self.point.longitude,
                name=self.name,
                address=self.address,
            ),
            state=state,
            is_live=self.is_live,
            participant_count=self.participant_count,
            peak_participants=self.peak_participants,
            post_count=self.post_count,
            created_at=self.created_at,
            expires_at=self.expires_at,
            mood_summary=self.mood_summary,
        )

    # ── Dunder ───────────────────────────────────────────────────────────

    def __repr__(self) -> str:
        return (
            f"Moment(id={self.moment_id!s}, "
            f"state={self._state.value}, "
            f"participants={self.participant_count}, "
            f"posts={self.post_count})"
        )
