"""In-memory Moment and Post store with async-safe, per-moment locking.

Design notes:
    - Moment creation is serialised per geocell neighbourhood, so two
      near-simultaneous requests at the same spot can never both create a
      moment.  The GeoIndex additionally refuses a second open moment
      inside the join radius; that conflict is resolved by joining the
      winner.
    - Every read-modify-write on a moment (participants, posts, reactions,
      votes) happens under that moment's own lock.
    - Lock waits are bounded; a timeout surfaces as UnavailableError.
    - The store never decides *when* time has passed.  The ExpiryScheduler
      calls the lifecycle helpers at the bottom of this class.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from typing import AsyncContextManager
from uuid import UUID

from pydantic import ValidationError

from kindred_moments.domain.enums import MomentState, Mood, ReactionType
from kindred_moments.domain.errors import (
    ConflictError,
    InactiveError,
    NotFoundError,
    NotParticipantError,
    ValidationFailedError,
)
from kindred_moments.domain.geo import GeoPoint, neighbourhood
from kindred_moments.domain.moment import DEFAULT_WINDOW, Moment, MomentSummary
from kindred_moments.domain.post import MediaRef, Post
from kindred_moments.store.geo_index import GeoIndex
from kindred_moments.store.locking import KeyedLocks, read_with_retry

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
MAX_ADDRESS_LENGTH = 300


class StoreStats:
    """Counts across the store, for the health endpoint."""

    __slots__ = (
        "total_moments",
        "active_moments",
        "live_moments",
        "expired_moments",
        "archived_moments",
        "participants",
        "visible_posts",
        "hidden_posts",
    )

    def __init__(self) -> None:
        self.total_moments = 0
        self.active_moments = 0
        self.live_moments = 0
        self.expired_moments = 0
        self.archived_moments = 0
        self.participants = 0
        self.visible_posts = 0
        self.hidden_posts = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


def clean_text(text: object, max_length: int, what: str) -> str:
    """Trim *text* and enforce 1..max_length characters."""
    if not isinstance(text, str):
        raise ValidationFailedError(f"{what} must be a string")
    cleaned = text.strip()
    if not cleaned:
        raise ValidationFailedError(f"{what} cannot be empty")
    if len(cleaned) > max_length:
        raise ValidationFailedError(f"{what} is too long (max {max_length} characters)")
    return cleaned


class MomentStore:
    """Async-safe, in-memory store for Moments and their Posts.

    Args:
        geo_index: Spatial index used for join matching and discovery.
        window: Lifetime of a moment from creation to expiry.
        join_radius_m: Two requests closer than this share one moment.
        max_post_length: Maximum post text length after trimming.
        timeout: Seconds to wait for a lock before giving up.
    """

    def __init__(
        self,
        geo_index: GeoIndex | None = None,
        window: timedelta = DEFAULT_WINDOW,
        join_radius_m: float = 50.0,
        max_post_length: int = 300,
        timeout: float | None = 2.0,
    ) -> None:
        if join_radius_m <= 0:
            raise ValueError("join_radius_m must be positive")

        self._geo = geo_index if geo_index is not None else GeoIndex()
        self._window = window
        self._join_radius_m = join_radius_m
        self._max_post_length = max_post_length
        self._timeout = timeout
        self._moments: dict[UUID, Moment] = {}
        self._posts: dict[UUID, Post] = {}
        self._posts_by_moment: dict[UUID, list[UUID]] = {}
        self._cell_locks: KeyedLocks = KeyedLocks()
        self._moment_locks: KeyedLocks = KeyedLocks()

    @property
    def geo_index(self) -> GeoIndex:
        return self._geo

    @property
    def join_radius_m(self) -> float:
        return self._join_radius_m

    # ── Access ───────────────────────────────────────────────────────────

    def get(self, moment_id: UUID) -> Moment | None:
        return self._moments.get(moment_id)

    def require(self, moment_id: UUID) -> Moment:
        moment = self._moments.get(moment_id)
        if moment is None:
            raise NotFoundError(f"Moment {moment_id} not found")
        return moment

    def locked(self, moment_id: UUID) -> AsyncContextManager[None]:
        """Hold the moment's identity lock (bounded by the store timeout)."""
        return self._moment_locks.hold(moment_id, self._timeout, f"moment {moment_id}")

    async def snapshot(self, moment_id: UUID) -> MomentSummary:
        """Consistent summary of one moment, read under its lock."""

        async def _read() -> MomentSummary:
            moment = self.require(moment_id)
            async with self.locked(moment_id):
                return moment.snapshot()

        return await read_with_retry(_read)

    # ── Creation / membership ────────────────────────────────────────────

    async def create_or_join(
        self,
        lat: float,
        lon: float,
        user_id: str,
        name: str | None = None,
        address: str | None = None,
    ) -> tuple[Moment, bool, bool]:
        """Join the open moment within the join radius, or create one.

        Returns ``(moment, created, added)``; *added* is False when the user
        was already a participant of the joined moment.
        """
        point = _point(lat, lon)
        name = _optional_text(name, MAX_NAME_LENGTH, "Location name")
        address = _optional_text(address, MAX_ADDRESS_LENGTH, "Address")

        cells = neighbourhood(self._geo.geocell(point.latitude, point.longitude))
        async with AsyncExitStack() as stack:
            for cell in cells:
                await stack.enter_async_context(
                    self._cell_locks.hold(cell, self._timeout, f"geocell {cell}")
                )

            for _attempt in range(2):
                existing = self._geo.find_nearby(point.latitude, point.longitude, self._join_radius_m)
                if existing is not None:
                    async with self.locked(existing.moment_id):
                        if existing.is_open():
                            added = existing.add_participant(user_id)
                            logger.info(
                                "User %s joined moment %s (%d participants)",
                                user_id,
                                existing.moment_id,
                                existing.participant_count,
                            )
                            return existing, False, added
                    # Expired between lookup and lock; look again.
                    continue

                moment = Moment(point, name=name, address=address, window=self._window)
                moment.add_participant(user_id)
                try:
                    self._geo.add(moment, exclusive_radius_m=self._join_radius_m)
                except ConflictError as exc:
                    logger.warning("Creation conflict at (%.6f, %.6f): %s", lat, lon, exc)
                    continue

                self._moments[moment.moment_id] = moment
                self._posts_by_moment[moment.moment_id] = []
                logger.info(
                    "Created moment %s at (%.6f, %.6f) for %s",
                    moment.moment_id,
                    point.latitude,
                    point.longitude,
                    user_id,
                )
                return moment, True, True

        raise ConflictError("Could not settle on a moment for this location, please retry")

    async def add_participant(self, moment_id: UUID, user_id: str) -> bool:
        """Add *user_id* to an open moment.  Returns True if newly added."""
        moment = self.require(moment_id)
        async with self.locked(moment_id):
            if not moment.is_open():
                raise InactiveError("Cannot join an expired moment")
            return moment.add_participant(user_id)

    async def remove_participant(self, moment_id: UUID, user_id: str) -> bool:
        """Remove *user_id*.  Returns False (no error) if already absent."""
        moment = self.require(moment_id)
        async with self.locked(moment_id):
            if not moment.is_open():
                raise InactiveError("Cannot leave an expired moment")
            removed = moment.remove_participant(user_id)
            if removed and not moment.is_live:
                logger.info("Moment %s has no participants left", moment_id)
            return removed

    async def touch_participant(self, moment_id: UUID, user_id: str) -> bool:
        moment = self.require(moment_id)
        async with self.locked(moment_id):
            return moment.touch_participant(user_id)

    # ── Posts ────────────────────────────────────────────────────────────

    async def add_post(
        self,
        moment_id: UUID,
        author_id: str,
        text: str,
        mood: Mood | str | None = None,
        media: MediaRef | dict | None = None,
    ) -> Post:
        text = clean_text(text, self._max_post_length, "Post text")
        mood = _mood(mood) if mood is not None else None
        media = _media(media) if media is not None else None

        moment = self.require(moment_id)
        async with self.locked(moment_id):
            if not moment.is_open():
                raise InactiveError("Cannot post to an expired moment")
            if not moment.is_participant(author_id):
                raise NotParticipantError("Must join the moment before posting")

            post = Post(moment_id, author_id, text, mood=mood, media=media)
            self._posts[post.post_id] = post
            self._posts_by_moment.setdefault(moment_id, []).append(post.post_id)
            moment.post_count += 1
            moment.touch_participant(author_id)
            logger.debug("Post %s added to moment %s", post.post_id, moment_id)
            return post

    def get_post(self, post_id: UUID) -> Post:
        post = self._posts.get(post_id)
        if post is None or not post.is_visible:
            raise NotFoundError(f"Post {post_id} not found")
        return post

    def list_posts(self, moment_id: UUID, limit: int = 50, offset: int = 0) -> list[Post]:
        """Visible posts of a moment, newest first."""
        self.require(moment_id)
        ids = self._posts_by_moment.get(moment_id, [])
        visible = [self._posts[pid] for pid in reversed(ids) if self._posts[pid].is_visible]
        return visible[offset : offset + limit]

    async def delete_post(self, post_id: UUID, user_id: str) -> Post:
        """Soft-delete (hide) a post.  Only its author may do this."""
        post = self.get_post(post_id)
        moment = self.require(post.moment_id)
        async with self.locked(moment.moment_id):
            if post.author_id != user_id:
                raise NotParticipantError("Only the author can delete this post")
            if post.is_visible:
                post.is_visible = False
                moment.post_count = max(0, moment.post_count - 1)
            return post

    async def react(self, post_id: UUID, user_id: str, reaction: ReactionType | str) -> Post:
        """Set the user's single reaction on a post, replacing any earlier one."""
        reaction = _reaction(reaction)
        post = self.get_post(post_id)
        moment = self.require(post.moment_id)
        async with self.locked(moment.moment_id):
            if not moment.is_open():
                raise InactiveError("Cannot react to posts in an expired moment")
            if not moment.is_participant(user_id):
                raise NotParticipantError("Must be a participant to react to posts")
            post.react(user_id, reaction)
            moment.touch_participant(user_id)
            return post

    async def unreact(self, post_id: UUID, user_id: str) -> Post:
        post = self.get_post(post_id)
        async with self.locked(post.moment_id):
            post.unreact(user_id)
            return post

    # ── Discovery ────────────────────────────────────────────────────────

    def nearby(self, lat: float, lon: float, radius_m: float, limit: int = 20) -> list[tuple[Moment, float]]:
        """Open moments around a point, closest first."""
        point = _point(lat, lon)
        return self._geo.nearby(point.latitude, point.longitude, radius_m, limit=limit)

    def closed(
        self,
        lat: float | None = None,
        lon: float | None = None,
        radius_m: float = 1000.0,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Moment]:
        """Expired and archived moments for read-only browsing.

        With coordinates: closest first within *radius_m*.  Without: most
        recently ended first.
        """
        if lat is not None and lon is not None:
            point = _point(lat, lon)
            found = [
                m for m, _ in self._geo.nearby(point.latitude, point.longitude, radius_m, include_closed=True)
            ]
        else:
            found = sorted(
                (m for m in self._moments.values() if m.is_closed),
                key=lambda m: m.expires_at,
                reverse=True,
            )
        return found[offset : offset + limit]

    # ── Lifecycle (driven by the ExpiryScheduler) ────────────────────────

    async def expire_due(self, now: datetime, limit: int) -> list[Moment]:
        """Flip ACTIVE moments whose window has ended to EXPIRED."""
        due = [
            m for m in self._moments.values()
            if m.state == MomentState.ACTIVE and m.is_window_over(now)
        ][:limit]
        flipped: list[Moment] = []
        for moment in due:
            async with self.locked(moment.moment_id):
                if moment.advance(MomentState.EXPIRED):
                    flipped.append(moment)
        if flipped:
            logger.info("Expired %d moment(s)", len(flipped))
        return flipped

    async def archive_due(self, now: datetime, after: timedelta, limit: int) -> list[Moment]:
        """Flip EXPIRED moments to ARCHIVED once *after* has passed since expiry."""
        due = [
            m for m in self._moments.values()
            if m.state == MomentState.EXPIRED and now >= m.expires_at + after
        ][:limit]
        flipped: list[Moment] = []
        for moment in due:
            async with self.locked(moment.moment_id):
                if moment.advance(MomentState.ARCHIVED):
                    flipped.append(moment)
        if flipped:
            logger.info("Archived %d moment(s)", len(flipped))
        return flipped

    def purge_candidates(self, now: datetime, retention: timedelta, limit: int) -> list[Moment]:
        """Closed moments whose retention window has passed."""
        return [
            m for m in self._moments.values()
            if m.state != MomentState.ACTIVE and now >= m.expires_at + retention
        ][:limit]

    async def purge(self, moment_id: UUID) -> int:
        """Hard-delete a moment and its posts.  Returns posts deleted.

        Purging an unknown (already purged) moment is a no-op returning 0.
        """
        if moment_id not in self._moments:
            return 0
        async with self.locked(moment_id):
            moment = self._moments.pop(moment_id, None)
            if moment is None:
                return 0
            self._geo.remove(moment_id)
            post_ids = self._posts_by_moment.pop(moment_id, [])
            for pid in post_ids:
                self._posts.pop(pid, None)
        self._moment_locks.discard(moment_id)
        logger.info("Purged moment %s with %d post(s)", moment_id, len(post_ids))
        return len(post_ids)

    async def prune_inactive(
        self, now: datetime, idle_after: timedelta, limit: int
    ) -> list[tuple[Moment, list[str]]]:
        """Drop idle participants from ACTIVE moments.

        Only moments that actually have an idle participant are visited, so
        repeated calls always make progress.
        """
        cutoff = now - idle_after
        due = [
            m for m in self._moments.values()
            if m.state == MomentState.ACTIVE
            and any(p.last_active_at < cutoff for p in m.participants)
        ][:limit]
        pruned: list[tuple[Moment, list[str]]] = []
        for moment in due:
            async with self.locked(moment.moment_id):
                removed = moment.prune_idle(cutoff)
            if removed:
                pruned.append((moment, removed))
                if not moment.is_live:
                    logger.info("Moment %s went quiet after pruning idle participants", moment.moment_id)
        return pruned

    def moment_ids(self) -> set[UUID]:
        return set(self._moments)

    def compact_locks(self) -> int:
        return self._cell_locks.compact() + self._moment_locks.compact()

    # ── Observability ────────────────────────────────────────────────────

    def stats(self) -> StoreStats:
        stats = StoreStats()
        for moment in self._moments.values():
            stats.total_moments += 1
            stats.participants += moment.participant_count
            if moment.state == MomentState.ARCHIVED:
                stats.archived_moments += 1
            elif moment.is_closed:
                stats.expired_moments += 1
            else:
                stats.active_moments += 1
                if moment.is_live:
                    stats.live_moments += 1
        for post in self._posts.values():
            if post.is_visible:
                stats.visible_posts += 1
            else:
                stats.hidden_posts += 1
        return stats

    def __len__(self) -> int:
        return len(self._moments)


# ── Boundary coercion ────────────────────────────────────────────────────────


def _point(lat: float, lon: float) -> GeoPoint:
    try:
        return GeoPoint(latitude=lat, longitude=lon)
    except ValidationError as exc:
        raise ValidationFailedError("Latitude must be within ±90 and longitude within ±180") from exc


def _optional_text(value: str | None, max_length: int, what: str) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > max_length:
        raise ValidationFailedError(f"{what} must be at most {max_length} characters")
    return cleaned or None


def _mood(value: Mood | str) -> Mood:
    try:
        return Mood(value)
    except ValueError:
        raise ValidationFailedError(f"Invalid mood: {value!r}") from None


def _reaction(value: ReactionType | str) -> ReactionType:
    try:
        return ReactionType(value)
    except ValueError:
        raise ValidationFailedError(f"Invalid reaction type: {value!r}") from None


def _media(value: MediaRef | dict) -> MediaRef:
    if isinstance(value, MediaRef):
        return value
    try:
        return MediaRef.model_validate(value)
    except ValidationError as exc:
        raise ValidationFailedError("Invalid media reference") from exc
