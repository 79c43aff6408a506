"""Viewer driver.

State machine consumed by a display surface. A driver starts from the
timeline resolved at subscription time (so a late joiner shows the right
asset immediately) and then follows transition events and timeline-change
notifications from the scheduler.

States: EMPTY, SHOWING(entry).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator

from loguru import logger

from .models import ScheduleEntry
from .resolver import Resolution
from .types import TimelineChange, TransitionEvent

if TYPE_CHECKING:
    from .service import SchedulerService

logger = logger.bind(module="scheduler.viewer")


class ViewerStateKind(str, Enum):
    """What the display surface is doing."""
    EMPTY = "empty"
    SHOWING = "showing"


@dataclass(frozen=True)
class ViewerState:
    """Current display state."""
    kind: ViewerStateKind
    entry: ScheduleEntry | None = None
    instant_ms: int = 0

    @classmethod
    def for_entry(cls, entry: ScheduleEntry | None, instant_ms: int) -> ViewerState:
        if entry is None:
            return cls(kind=ViewerStateKind.EMPTY, instant_ms=instant_ms)
        return cls(kind=ViewerStateKind.SHOWING, entry=entry, instant_ms=instant_ms)

    @property
    def entry_id(self) -> str | None:
        return self.entry.id if self.entry else None

    @property
    def asset_ref(self) -> str | None:
        return self.entry.asset_ref if self.entry else None

    def shows_same(self, other: ViewerState) -> bool:
        """True if both states put the same entry and asset on screen."""
        return self.entry_id == other.entry_id and self.asset_ref == other.asset_ref

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.kind.value,
            "entry": self.entry.to_dict() if self.entry else None,
            "instant_ms": self.instant_ms,
        }


class ViewerDriver:
    """Follows the active entry of one timeline for one display surface.

    Usage::

        async with service.subscribe() as viewer:
            show(viewer.state)
            async for state in viewer:
                show(state)
    """

    def __init__(
        self,
        service: SchedulerService,
        queue: asyncio.Queue,
        initial: Resolution,
    ):
        self._service = service
        self._queue = queue
        self.state = ViewerState.for_entry(initial.active, initial.instant_ms)
        self.closed = False
        self.transitions = 0

    def apply(self, event: TransitionEvent) -> bool:
        """Apply a transition event.

        Stale (earlier than the current state) and repeated events are
        ignored.

        Returns:
            True if the displayed state changed
        """
        if event.instant_ms < self.state.instant_ms:
            logger.debug(f"Ignoring stale transition at {event.instant_ms}")
            return False
        return self._set(ViewerState.for_entry(event.active, event.instant_ms))

    async def refresh(self) -> bool:
        """Re-query the timeline (manual refresh).

        Idempotent: an unchanged active entry leaves the state untouched and
        reports no change.
        """
        resolution = await self._service.list_schedules(0)
        return self._set(ViewerState.for_entry(resolution.active, resolution.instant_ms))

    def _set(self, new_state: ViewerState) -> bool:
        if self.state.shows_same(new_state):
            return False
        old = self.state
        self.state = new_state
        self.transitions += 1
        logger.debug(
            f"Viewer {old.kind.value}({old.entry_id}) -> {new_state.kind.value}({new_state.entry_id})"
        )
        return True

    def _touches_display(self, change: TimelineChange) -> bool:
        # Moves of other entries reach us as transition events; only edits of
        # the shown entry (or bulk reloads) need a re-query.
        return change.is_bulk or (
            self.state.entry_id is not None and change.entry_id == self.state.entry_id
        )

    async def next_state(self, timeout: float | None = None) -> ViewerState | None:
        """Wait for the next change of the displayed state.

        Args:
            timeout: Seconds to wait before raising ``asyncio.TimeoutError``

        Returns:
            The new state, or None once the stream has been closed
        """
        while not self.closed:
            if timeout is None:
                message = await self._queue.get()
            else:
                message = await asyncio.wait_for(self._queue.get(), timeout)

            if message is None:
                self.closed = True
                return None

            if isinstance(message, TransitionEvent):
                changed = self.apply(message)
            elif self._touches_display(message):
                changed = await self.refresh()
            else:
                changed = False

            if changed:
                return self.state
        return None

    async def __aiter__(self) -> AsyncIterator[ViewerState]:
        while True:
            state = await self.next_state()
            if state is None:
                return
            yield state

    def close(self) -> None:
        """Stop receiving events."""
        if not self.closed:
            self._service.broadcaster.unsubscribe(self._queue)
            self.closed = True

    async def __aenter__(self) -> ViewerDriver:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
