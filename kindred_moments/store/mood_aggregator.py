"""MoodAggregator — per-moment mood votes and their live summary.

One vote per (moment, user): a new vote replaces the old one.  The summary
is recomputed synchronously on every vote or removal because the room
broadcast needs the fresh value immediately.

Percentages use largest-remainder apportionment over all moods: each is
the floor or ceiling of ``count / total * 100`` and they add up to exactly
100, so the dominant subset can never exceed 100.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from kindred_moments.domain.enums import Mood
from kindred_moments.domain.errors import (
    InactiveError,
    NotFoundError,
    NotParticipantError,
    ValidationFailedError,
)
from kindred_moments.domain.mood import DominantMood, MoodSummary, MoodVote
from kindred_moments.foundation.clock import utc_now
from kindred_moments.store.locking import read_with_retry
from kindred_moments.store.moment_store import MomentStore

logger = logging.getLogger(__name__)

DOMINANT_COUNT = 3

_MOOD_ORDER = {mood: index for index, mood in enumerate(Mood)}


def summarize(votes: list[MoodVote]) -> MoodSummary:
    """Pure fold of one moment's votes into a MoodSummary."""
    total = len(votes)
    if total == 0:
        return MoodSummary.empty()

    counts = {m: 0 for m in Mood}
    intensity_sums = {m: 0 for m in Mood}
    earliest: dict[Mood, datetime] = {}
    for vote in votes:
        counts[vote.mood] += 1
        intensity_sums[vote.mood] += vote.intensity
        first = earliest.get(vote.mood)
        if first is None or vote.created_at < first:
            earliest[vote.mood] = vote.created_at

    percentages = _apportion(counts, total)

    ranked = sorted(
        (m for m in Mood if counts[m] > 0),
        key=lambda m: (-counts[m], earliest[m], _MOOD_ORDER[m]),
    )
    dominant = [
        DominantMood(
            mood=m,
            emoji=m.emoji,
            count=counts[m],
            percentage=percentages[m],
            avg_intensity=round(intensity_sums[m] / counts[m], 1),
        )
        for m in ranked[:DOMINANT_COUNT]
    ]
    return MoodSummary(total_votes=total, counts=counts, percentages=percentages, dominant=dominant)


def _apportion(counts: dict[Mood, int], total: int) -> dict[Mood, int]:
    floors = {m: (c * 100) // total for m, c in counts.items()}
    leftover = 100 - sum(floors.values())
    by_remainder = sorted(
        (m for m, c in counts.items() if c > 0),
        key=lambda m: (-((counts[m] * 100) % total), _MOOD_ORDER[m]),
    )
    for mood in by_remainder[:leftover]:
        floors[mood] += 1
    return floors


class MoodAggregator:
    """Stores mood votes and caches one MoodSummary per moment.

    Vote mutations run under the moment's own lock in the MomentStore,
    so two users voting at once can never lose an update.
    """

    def __init__(self, store: MomentStore) -> None:
        self._store = store
        self._votes: dict[UUID, dict[str, MoodVote]] = {}
        self._summaries: dict[UUID, MoodSummary] = {}

    # ── Votes ────────────────────────────────────────────────────────────

    async def record_vote(
        self,
        moment_id: UUID,
        user_id: str,
        mood: Mood | str,
        intensity: int = 3,
    ) -> MoodSummary:
        """Upsert *user_id*'s vote and return the refreshed summary."""
        mood = _coerce_mood(mood)
        if isinstance(intensity, bool) or not isinstance(intensity, int) or not 1 <= intensity <= 5:
            raise ValidationFailedError("Mood intensity must be an integer between 1 and 5")

        moment = self._store.require(moment_id)
        async with self._store.locked(moment_id):
            if not moment.is_open():
                raise InactiveError("Cannot vote on moods for an expired moment")
            if not moment.is_participant(user_id):
                raise NotParticipantError("Must join the moment before voting on moods")

            votes = self._votes.setdefault(moment_id, {})
            replaced = user_id in votes
            votes[user_id] = MoodVote(
                moment_id=moment_id,
                user_id=user_id,
                mood=mood,
                intensity=intensity,
                created_at=utc_now(),
            )
            moment.touch_participant(user_id)
            summary = self._refresh(moment_id)
            moment.mood_summary = summary

        logger.debug(
            "%s mood vote %s/%d by %s in moment %s",
            "Replaced" if replaced else "Recorded",
            mood.value,
            intensity,
            user_id,
            moment_id,
        )
        return summary

    async def remove_vote(self, moment_id: UUID, user_id: str) -> MoodSummary:
        moment = self._store.require(moment_id)
        async with self._store.locked(moment_id):
            votes = self._votes.get(moment_id, {})
            if votes.pop(user_id, None) is None:
                raise NotFoundError("No mood vote found to remove")
            summary = self._refresh(moment_id)
            moment.mood_summary = summary
        return summary

    def user_vote(self, moment_id: UUID, user_id: str) -> MoodVote | None:
        return self._votes.get(moment_id, {}).get(user_id)

    # ── Summaries ────────────────────────────────────────────────────────

    async def summary(self, moment_id: UUID) -> MoodSummary:
        async def _read() -> MoodSummary:
            self._store.require(moment_id)
            async with self._store.locked(moment_id):
                cached = self._summaries.get(moment_id)
                return cached if cached is not None else MoodSummary.empty()

        return await read_with_retry(_read)

    def vote_count(self, moment_id: UUID) -> int:
        return len(self._votes.get(moment_id, {}))

    def trending(self, window: timedelta = timedelta(hours=24), limit: int = 10) -> list[dict]:
        """Mood popularity across every moment for votes cast within *window*."""
        since = utc_now() - window
        counts = {m: 0 for m in Mood}
        intensity_sums = {m: 0 for m in Mood}
        voters: dict[Mood, set[str]] = {m: set() for m in Mood}
        for votes in self._votes.values():
            for vote in votes.values():
                if vote.created_at < since:
                    continue
                counts[vote.mood] += 1
                intensity_sums[vote.mood] += vote.intensity
                voters[vote.mood].add(vote.user_id)

        ranked = sorted(
            (m for m in Mood if counts[m] > 0),
            key=lambda m: (-counts[m], _MOOD_ORDER[m]),
        )
        return [
            {
                "mood": m.value,
                "emoji": m.emoji,
                "count": counts[m],
                "avg_intensity": round(intensity_sums[m] / counts[m], 1),
                "unique_users": len(voters[m]),
            }
            for m in ranked[:limit]
        ]

    # ── Cleanup ──────────────────────────────────────────────────────────

    def purge_moment(self, moment_id: UUID) -> int:
        """Drop every vote of a purged moment.  Returns how many were dropped."""
        self._summaries.pop(moment_id, None)
        return len(self._votes.pop(moment_id, {}))

    def purge_orphans(self, live_ids: set[UUID]) -> int:
        orphaned = [mid for mid in self._votes if mid not in live_ids]
        return sum(self.purge_moment(mid) for mid in orphaned)

    # ── Internals ────────────────────────────────────────────────────────

    def _refresh(self, moment_id: UUID) -> MoodSummary:
        """Must be called while holding the moment's lock."""
        summary = summarize(list(self._votes.get(moment_id, {}).values()))
        self._summaries[moment_id] = summary
        return summary


def _coerce_mood(value: Mood | str) -> Mood:
    try:
        return Mood(value)
    except ValueError:
        raise ValidationFailedError(f"Invalid mood: {value!r}") from None
