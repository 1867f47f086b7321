"""Shared fixtures: a controllable clock and recording connections."""

from __future__ import annotations

from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest

from kindred_moments.foundation.identifiers import new_anonymous_id

T0 = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)

# Every module that reads the clock through ``utc_now``.
_CLOCK_USERS = (
    "kindred_moments.domain.moment",
    "kindred_moments.domain.post",
    "kindred_moments.domain.chat",
    "kindred_moments.store.mood_aggregator",
    "kindred_moments.store.chat_log",
    "kindred_moments.core.expiry_scheduler",
)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when


class FakeConnection:
    """Records every event the hub sends to it."""

    def __init__(self, connection_id: str, fail: bool = False) -> None:
        self.connection_id = connection_id
        self.fail = fail
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def last(self, event: str) -> dict[str, Any]:
        for name, payload in reversed(self.events):
            if name == event:
                return payload
        raise AssertionError(f"{self.connection_id} never received {event!r}; got {self.names()}")

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def clock():
    fake = FakeClock()
    with ExitStack() as stack:
        for module in _CLOCK_USERS:
            stack.enter_context(patch(f"{module}.utc_now", side_effect=lambda: fake.now))
        yield fake


@pytest.fixture
def alice() -> str:
    return new_anonymous_id()


@pytest.fixture
def bob() -> str:
    return new_anonymous_id()


@pytest.fixture
def carol() -> str:
    return new_anonymous_id()
