"""MomentService — the operations behind the REST surface.

Each mutation is accepted by the store (or MoodAggregator) first and only
then announced to the moment's room.  Accept and announce share the
room's sequencing lock so that room events come out in acceptance order.
The moment lock is always taken inside the room lock, never the reverse.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from kindred_moments.domain.enums import Mood, ReactionType
from kindred_moments.domain.mood import MoodSummary, MoodVote
from kindred_moments.domain.moment import Moment, MomentSummary
from kindred_moments.domain.post import MediaRef, Post
from kindred_moments.services.presence_hub import PresenceHub
from kindred_moments.store.moment_store import MomentStore
from kindred_moments.store.mood_aggregator import MoodAggregator

logger = logging.getLogger(__name__)


class MomentService:
    def __init__(
        self,
        store: MomentStore,
        moods: MoodAggregator,
        hub: PresenceHub,
        discovery_radius_m: float = 5000.0,
    ) -> None:
        self._store = store
        self._moods = moods
        self._hub = hub
        self._discovery_radius_m = discovery_radius_m

    # ── Moments ──────────────────────────────────────────────────────────

    async def create_or_join_moment(
        self,
        latitude: float,
        longitude: float,
        user_id: str,
        name: str | None = None,
        address: str | None = None,
    ) -> tuple[MomentSummary, bool]:
        moment, created, added = await self._store.create_or_join(latitude, longitude, user_id, name, address)
        if added:
            await self._announce_join(moment, user_id)
        return moment.snapshot(), created

    async def get_moment(self, moment_id: UUID) -> MomentSummary:
        return await self._store.snapshot(moment_id)

    async def join_moment(self, moment_id: UUID, user_id: str) -> MomentSummary:
        moment = self._store.require(moment_id)
        if await self._store.add_participant(moment_id, user_id):
            await self._announce_join(moment, user_id)
        return moment.snapshot()

    async def leave_moment(self, moment_id: UUID, user_id: str) -> MomentSummary:
        moment = self._store.require(moment_id)
        async with self._hub.sequenced(moment_id):
            removed = await self._store.remove_participant(moment_id, user_id)
            if removed:
                await self._hub.announce_left(moment_id, user_id, moment.participant_count)
        return moment.snapshot()

    def nearby_moments(
        self,
        latitude: float,
        longitude: float,
        radius_m: float | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Open moments around a point, closest first, with their distance."""
        radius = radius_m if radius_m is not None else self._discovery_radius_m
        results = []
        for moment, distance in self._store.nearby(latitude, longitude, radius, limit=limit):
            entry = moment.snapshot().model_dump(mode="json")
            entry["distance_m"] = round(distance, 1)
            results.append(entry)
        return results

    def archived_moments(
        self,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_m: float = 1000.0,
        limit: int = 20,
        offset: int = 0,
    ) -> list[MomentSummary]:
        moments = self._store.closed(latitude, longitude, radius_m=radius_m, limit=limit, offset=offset)
        return [m.snapshot() for m in moments]

    # ── Posts ────────────────────────────────────────────────────────────

    async def add_post(
        self,
        moment_id: UUID,
        user_id: str,
        text: str,
        mood: Mood | str | None = None,
        media: MediaRef | dict | None = None,
    ) -> Post:
        async with self._hub.sequenced(moment_id):
            post = await self._store.add_post(moment_id, user_id, text, mood=mood, media=media)
            await self._hub.broadcast(moment_id, "newPost", post.to_dict())
        return post

    def get_post(self, post_id: UUID) -> Post:
        return self._store.get_post(post_id)

    def list_posts(self, moment_id: UUID, limit: int = 50, offset: int = 0) -> list[Post]:
        return self._store.list_posts(moment_id, limit=limit, offset=offset)

    async def delete_post(self, post_id: UUID, user_id: str) -> Post:
        moment_id = self._store.get_post(post_id).moment_id
        async with self._hub.sequenced(moment_id):
            post = await self._store.delete_post(post_id, user_id)
            await self._hub.broadcast(moment_id, "postDeleted", {
                "moment_id": str(moment_id),
                "post_id": str(post_id),
            })
        return post

    async def react_to_post(self, post_id: UUID, user_id: str, reaction: ReactionType | str) -> Post:
        moment_id = self._store.get_post(post_id).moment_id
        async with self._hub.sequenced(moment_id):
            post = await self._store.react(post_id, user_id, reaction)
            await self._hub.broadcast(moment_id, "postReaction", {
                "moment_id": str(moment_id),
                "post_id": str(post_id),
                "user_id": user_id,
                "reaction": post.reactions[user_id].value,
                "reaction_counts": post.reaction_counts(),
            })
        return post

    async def remove_reaction(self, post_id: UUID, user_id: str) -> Post:
        moment_id = self._store.get_post(post_id).moment_id
        async with self._hub.sequenced(moment_id):
            post = await self._store.unreact(post_id, user_id)
            await self._hub.broadcast(moment_id, "postReactionRemoved", {
                "moment_id": str(moment_id),
                "post_id": str(post_id),
                "user_id": user_id,
                "reaction_counts": post.reaction_counts(),
            })
        return post

    # ── Moods ────────────────────────────────────────────────────────────

    async def vote_mood(
        self,
        moment_id: UUID,
        user_id: str,
        mood: Mood | str,
        intensity: int = 3,
    ) -> MoodSummary:
        async with self._hub.sequenced(moment_id):
            summary = await self._moods.record_vote(moment_id, user_id, mood, intensity)
            await self._broadcast_mood(moment_id, summary)
        return summary

    async def remove_mood_vote(self, moment_id: UUID, user_id: str) -> MoodSummary:
        async with self._hub.sequenced(moment_id):
            summary = await self._moods.remove_vote(moment_id, user_id)
            await self._broadcast_mood(moment_id, summary)
        return summary

    async def mood_summary(self, moment_id: UUID) -> MoodSummary:
        return await self._moods.summary(moment_id)

    def user_vote(self, moment_id: UUID, user_id: str) -> MoodVote | None:
        self._store.require(moment_id)
        return self._moods.user_vote(moment_id, user_id)

    def trending_moods(self, hours: int = 24, limit: int = 10) -> list[dict]:
        return self._moods.trending(window=timedelta(hours=hours), limit=limit)

    # ── Internals ────────────────────────────────────────────────────────

    async def _announce_join(self, moment: Moment, user_id: str) -> None:
        async with self._hub.sequenced(moment.moment_id):
            await self._hub.announce_joined(moment.moment_id, user_id, moment.participant_count)

    async def _broadcast_mood(self, moment_id: UUID, summary: MoodSummary) -> None:
        await self._hub.broadcast(moment_id, "moodUpdated", {
            "moment_id": str(moment_id),
            "mood_summary": summary.model_dump(mode="json"),
        })
        logger.debug("Mood summary of %s now has %d vote(s)", moment_id, summary.total_votes)
