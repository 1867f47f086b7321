"""ExpiryScheduler — the single owner of time-driven state changes.

One sweep runs these steps in order, each idempotent:

    1. Expire: ACTIVE moments whose window has ended become EXPIRED;
       their rooms get a system message and ``momentExpired``.
    2. Archive: EXPIRED moments become ARCHIVED ``archive_after`` later.
    3. Purge: closed moments past ``expires_at + retention`` are hard
       deleted with their posts, votes and chat.  Rooms get
       ``momentPurged`` and are then closed.
    4. Chat: messages past their own ``expires_at`` are deleted.
    5. Prune: participants idle longer than ``inactivity`` are removed
       from ACTIVE moments; rooms get ``participantLeft``.

Each step works in batches of ``batch_size`` and yields to the event loop
between batches.  A sweep stops after ``max_batches`` per step; whatever
is left is picked up by the next sweep.  A failed sweep is logged and the
next one runs as scheduled.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from kindred_moments.domain.moment import Moment
from kindred_moments.foundation.clock import utc_now
from kindred_moments.services.presence_hub import PresenceHub
from kindred_moments.store.chat_log import ChatLog
from kindred_moments.store.moment_store import MomentStore
from kindred_moments.store.mood_aggregator import MoodAggregator

logger = logging.getLogger(__name__)

EXPIRED_NOTICE = "This moment has ended. It stays readable for a while."


class SweepReport:
    """What one sweep changed."""

    __slots__ = (
        "expired",
        "archived",
        "purged",
        "posts_deleted",
        "votes_deleted",
        "messages_deleted",
        "participants_pruned",
        "orphans_deleted",
        "locks_compacted",
    )

    def __init__(self) -> None:
        self.expired = 0
        self.archived = 0
        self.purged = 0
        self.posts_deleted = 0
        self.votes_deleted = 0
        self.messages_deleted = 0
        self.participants_pruned = 0
        self.orphans_deleted = 0
        self.locks_compacted = 0

    @property
    def changed(self) -> bool:
        return any(getattr(self, name) for name in self.__slots__)

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={getattr(self, name)}" for name in self.__slots__)
        return f"SweepReport({fields})"


class ExpiryScheduler:
    """Runs periodic sweeps over the store, mood votes and chat log.

    Args:
        store: Moments and posts.
        moods: Mood votes, purged together with their moment.
        hub: Room fan-out for lifecycle notifications.
        chat_log: Chat messages, expired by their own TTL.
        archive_after: Time between expiry and archival.
        retention: Time after expiry until a moment is hard deleted.
        inactivity: Idle time after which a participant is dropped.
        batch_size: Items handled per batch within a step.
        max_batches: Batches per step in a single sweep.
        sweep_interval: Period of the regular sweep.
        deep_interval: Period of the deep cleanup.
    """

    def __init__(
        self,
        store: MomentStore,
        moods: MoodAggregator,
        hub: PresenceHub,
        chat_log: ChatLog,
        archive_after: timedelta = timedelta(hours=6),
        retention: timedelta = timedelta(days=7),
        inactivity: timedelta = timedelta(minutes=30),
        batch_size: int = 500,
        max_batches: int = 20,
        sweep_interval: timedelta = timedelta(hours=1),
        deep_interval: timedelta = timedelta(hours=24),
    ) -> None:
        if batch_size <= 0 or max_batches <= 0:
            raise ValueError("batch_size and max_batches must be positive")
        self._store = store
        self._moods = moods
        self._hub = hub
        self._chat = chat_log
        self._archive_after = archive_after
        self._retention = retention
        self._inactivity = inactivity
        self._batch_size = batch_size
        self._max_batches = max_batches
        self._sweep_interval = sweep_interval
        self._deep_interval = deep_interval
        self._tasks: list[asyncio.Task] = []
        self._sweep_lock = asyncio.Lock()
        self.last_report: SweepReport | None = None
        self.last_sweep_at: datetime | None = None

    # ── Sweeps ───────────────────────────────────────────────────────────

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """One bounded pass over every lifecycle step."""
        async with self._sweep_lock:
            report = await self._run(now or utc_now(), self._max_batches)
        self._record(report, "Sweep")
        return report

    async def deep_cleanup(self, now: datetime | None = None) -> SweepReport:
        """Unbounded pass that also drops orphaned votes and chat and idle locks."""
        async with self._sweep_lock:
            report = await self._run(now or utc_now(), max_batches=None)
            live = self._store.moment_ids()
            report.orphans_deleted = self._moods.purge_orphans(live) + self._chat.purge_orphans(live)
            report.locks_compacted = self._store.compact_locks()
        self._record(report, "Deep cleanup")
        return report

    async def _run(self, now: datetime, max_batches: int | None) -> SweepReport:
        report = SweepReport()

        async for batch in self._batches(lambda: self._store.expire_due(now, self._batch_size), max_batches):
            report.expired += len(batch)
            for moment in batch:
                await self._notify_expired(moment)

        async for batch in self._batches(
            lambda: self._store.archive_due(now, self._archive_after, self._batch_size), max_batches
        ):
            report.archived += len(batch)

        async for batch in self._batches(self._purge_batch(now, report), max_batches):
            report.purged += len(batch)

        for _ in self._limit(max_batches):
            removed = self._chat.purge_expired(now, limit=self._batch_size)
            report.messages_deleted += removed
            if removed < self._batch_size:
                break
            await asyncio.sleep(0)

        async for batch in self._batches(
            lambda: self._store.prune_inactive(now, self._inactivity, self._batch_size), max_batches
        ):
            for moment, user_ids in batch:
                report.participants_pruned += len(user_ids)
                await self._notify_pruned(moment, user_ids)

        return report

    def _purge_batch(self, now: datetime, report: SweepReport):
        async def _purge() -> list[Moment]:
            due = self._store.purge_candidates(now, self._retention, self._batch_size)
            for moment in due:
                mid = moment.moment_id
                async with self._hub.sequenced(mid):
                    await self._hub.broadcast(mid, "momentPurged", {"moment_id": str(mid)})
                self._hub.close_room(mid)
                report.posts_deleted += await self._store.purge(mid)
                report.votes_deleted += self._moods.purge_moment(mid)
                report.messages_deleted += self._chat.purge_moment(mid)
            return due

        return _purge

    async def _batches(self, step, max_batches: int | None):
        """Call *step* until it returns a short batch or the cap is reached."""
        for _ in self._limit(max_batches):
            batch = await step()
            if batch:
                yield batch
            if len(batch) < self._batch_size:
                return
            await asyncio.sleep(0)

    @staticmethod
    def _limit(max_batches: int | None):
        count = 0
        while max_batches is None or count < max_batches:
            yield count
            count += 1

    # ── Notifications ────────────────────────────────────────────────────

    async def _notify_expired(self, moment: Moment) -> None:
        mid = moment.moment_id
        if self._hub.room_size(mid) == 0:
            return
        await self._hub.system_message(mid, EXPIRED_NOTICE)
        async with self._hub.sequenced(mid):
            await self._hub.broadcast(mid, "momentExpired", {
                "moment_id": str(mid),
                "expires_at": moment.expires_at.isoformat(),
                "peak_participants": moment.peak_participants,
            })

    async def _notify_pruned(self, moment: Moment, user_ids: list[str]) -> None:
        mid = moment.moment_id
        async with self._hub.sequenced(mid):
            for user_id in user_ids:
                await self._hub.announce_left(mid, user_id, moment.participant_count, reason="inactive")

    # ── Background tasks ─────────────────────────────────────────────────

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop(self.sweep, self._sweep_interval), name="expiry-sweep"),
            asyncio.create_task(self._loop(self.deep_cleanup, self._deep_interval), name="deep-cleanup"),
        ]
        logger.info(
            "Expiry scheduler started (sweep every %s, deep cleanup every %s)",
            self._sweep_interval,
            self._deep_interval,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Expiry scheduler stopped")

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _loop(self, job, interval: timedelta) -> None:
        while True:
            await asyncio.sleep(interval.total_seconds())
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("%s failed; retrying next interval", job.__name__, exc_info=True)

    def _record(self, report: SweepReport, label: str) -> None:
        self.last_report = report
        self.last_sweep_at = utc_now()
        if report.changed:
            logger.info("%s finished: %s", label, report.to_dict())
        else:
            logger.debug("%s finished with nothing to do", label)
