"""Clock abstractions used by the transition scheduler.

The scheduler never calls ``time`` or ``asyncio.sleep`` directly; it asks a
clock for the current instant and for a coroutine that completes once a given
instant has been reached. ``SteppedClock`` advances only when told to, which
makes timer behaviour deterministic in tests and simulations.
"""
from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from .schedule import now_ms


@runtime_checkable
class Clock(Protocol):
    """Protocol implemented by clock providers."""

    def now_ms(self) -> int:
        """Return the current instant in epoch milliseconds."""

    async def sleep_until(self, instant_ms: int) -> None:
        """Return once ``now_ms()`` has reached ``instant_ms`` (or later)."""


class SystemClock:
    """Wall clock backed by ``time.time`` and ``asyncio.sleep``.

    ``asyncio.sleep`` may return a little early or late. Callers must re-check
    ``now_ms()`` after waking.
    """

    def now_ms(self) -> int:
        return now_ms()

    async def sleep_until(self, instant_ms: int) -> None:
        delay_ms = instant_ms - self.now_ms()
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)


class SteppedClock:
    """Deterministic clock used for tests.

    Time advances only when :meth:`advance` or :meth:`set` is called. Pending
    sleepers whose instant has been reached are released on every step.
    """

    def __init__(self, start_ms: int = 0):
        self._current = start_ms
        self._sleepers: list[tuple[int, asyncio.Future]] = []

    def now_ms(self) -> int:
        return self._current

    async def sleep_until(self, instant_ms: int) -> None:
        if instant_ms <= self._current:
            # still yield so callers behave like a real sleep
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        entry = (instant_ms, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    def advance(self, delta_ms: int) -> int:
        """Advance the clock by ``delta_ms`` (must be non-negative)."""
        if delta_ms < 0:
            raise ValueError("delta_ms must be non-negative")
        return self.set(self._current + delta_ms)

    def set(self, instant_ms: int) -> int:
        """Jump to ``instant_ms``. The clock never moves backwards."""
        if instant_ms < self._current:
            raise ValueError("SteppedClock cannot move backwards")
        self._current = instant_ms
        for wake_at, future in list(self._sleepers):
            if wake_at <= instant_ms and not future.done():
                future.set_result(None)
        return self._current

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())
