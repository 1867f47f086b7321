"""Keyed asyncio locks with bounded acquisition.

The store serialises work per geocell (moment creation) and per moment
(every read-modify-write).  Waiting longer than the configured timeout is
reported as UnavailableError instead of blocking a connection forever.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Generic, Hashable, TypeVar

from kindred_moments.domain.errors import UnavailableError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class KeyedLocks(Generic[K]):
    """Lazily created asyncio.Lock per key.

    Every holder and waiter is counted while inside ``hold``.  A lock is only
    dropped when its count is zero; a released lock whose woken waiter has not
    resumed yet still counts as in use.
    """

    def __init__(self) -> None:
        self._locks: dict[K, asyncio.Lock] = {}
        self._users: dict[K, int] = {}

    @asynccontextmanager
    async def hold(self, key: K, timeout: float | None = None, what: str | None = None) -> AsyncIterator[None]:
        """Hold the lock for *key*, bounded by *timeout* seconds when given."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with bounded(lock, timeout, what or f"lock {key!r}"):
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]

    def in_use(self, key: K) -> bool:
        return key in self._users

    def discard(self, key: K) -> None:
        if key not in self._users:
            self._locks.pop(key, None)

    def compact(self) -> int:
        """Drop every lock nobody holds or waits for.  Returns how many were dropped."""
        idle = [k for k in self._locks if k not in self._users]
        for key in idle:
            del self._locks[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._locks)


@asynccontextmanager
async def bounded(lock: asyncio.Lock, timeout: float | None, what: str) -> AsyncIterator[None]:
    """Hold *lock*, giving up with UnavailableError after *timeout* seconds."""
    try:
        if timeout is None:
            await lock.acquire()
        else:
            await asyncio.wait_for(lock.acquire(), timeout)
    except asyncio.TimeoutError:
        raise UnavailableError(f"Timed out waiting for {what}") from None
    try:
        yield
    finally:
        lock.release()


async def read_with_retry(read: Callable[[], Awaitable[T]]) -> T:
    """Run an idempotent read, retrying once if the store is unavailable."""
    try:
        return await read()
    except UnavailableError as exc:
        logger.warning("Store read unavailable, retrying once: %s", exc)
        return await read()
