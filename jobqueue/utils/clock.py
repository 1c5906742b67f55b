"""Time sources.

Everything that reads "now" or sleeps (the scheduler, the eligibility query,
the lock manager and the worker loop) takes a clock argument instead of
calling ``datetime.now()`` directly, so tests can freeze and advance time
without patching globals.

Usage:
    clock = FrozenClock(datetime(2026, 3, 29, 12, 0, tzinfo=timezone.utc))
    await clock.sleep(5)        # returns immediately, clock.now() moved 5 s
    clock.advance(hours=1)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current instant as an aware UTC datetime."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time and real sleeping."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FrozenClock:
    """A clock that only moves when told to.

    ``sleep()`` advances the frozen instant instead of blocking.
    """

    def __init__(self, frozen_at: datetime | None = None) -> None:
        if frozen_at is None:
            frozen_at = datetime.now(timezone.utc)
        elif frozen_at.tzinfo is None:
            frozen_at = frozen_at.replace(tzinfo=timezone.utc)
        self._now = frozen_at.astimezone(timezone.utc)
        self.slept: list[float] = []

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self._now = when.astimezone(timezone.utc)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by *delta* (or ``timedelta(**kwargs)``)."""
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self._now += timedelta(seconds=seconds)
        # Still yield to the event loop so cancellation can land.
        await asyncio.sleep(0)


system_clock = SystemClock()
