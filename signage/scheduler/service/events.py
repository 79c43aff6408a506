"""Event system for the scheduler.

Two channels:
- EventEmitter: synchronous lifecycle events (entry created, timer fired...)
  for logging, persistence hooks and tests.
- TransitionBroadcaster: per-viewer queues carrying transition events and
  timeline-change notifications. Queues are unbounded, so a slow viewer never
  blocks the scheduler; delivery is at-least-once and viewers treat repeated
  identical events as no-ops.
"""
import asyncio
import time
from typing import Any, Callable, Union

from loguru import logger

from ..types import SchedulerEvent, TimelineChange, TransitionEvent

logger = logger.bind(module="scheduler.events")


# Type alias for event handlers
EventHandler = Callable[[SchedulerEvent], None]

ViewerMessage = Union[TransitionEvent, TimelineChange]


class EventEmitter:
    """Event emitter for scheduler events."""

    def __init__(self):
        self._handlers: list[EventHandler] = []

    def add_handler(self, handler: EventHandler) -> None:
        """Add an event handler."""
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        """Remove an event handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: SchedulerEvent) -> None:
        """Emit an event to all handlers."""
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error: {e}")


def emit_entry_event(
    emitter: EventEmitter,
    event_type: str,
    entry_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    """Emit an entry-related event.

    Args:
        emitter: Event emitter instance
        event_type: Type of event (e.g., "schedule.created")
        entry_id: ID of the schedule entry ("" for scheduler-wide events)
        payload: Additional event payload
    """
    event = SchedulerEvent(
        type=event_type,
        entry_id=entry_id,
        timestamp_ms=int(time.time() * 1000),
        payload=payload or {},
    )
    emitter.emit(event)


class TransitionBroadcaster:
    """Fan-out of viewer messages to every subscriber queue."""

    def __init__(self):
        self._queues: list[asyncio.Queue] = []
        self.published = 0

    def subscribe(self) -> asyncio.Queue:
        """Create a queue that receives every message published from now on."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        logger.debug(f"Viewer subscribed ({len(self._queues)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
            logger.debug(f"Viewer unsubscribed ({len(self._queues)} left)")

    def publish(self, message: ViewerMessage) -> None:
        """Deliver ``message`` to every subscriber without waiting."""
        self.published += 1
        for queue in list(self._queues):
            queue.put_nowait(message)

    def close(self) -> None:
        """Wake every subscriber with the end-of-stream marker (None)."""
        for queue in self._queues:
            queue.put_nowait(None)
        self._queues.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)


# Event type constants
class EventTypes:
    """Constants for event types."""

    # Scheduler lifecycle
    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"

    # Entry lifecycle
    SCHEDULE_CREATED = "schedule.created"
    SCHEDULE_UPDATED = "schedule.updated"
    SCHEDULE_DELETED = "schedule.deleted"

    # Timer
    TIMER_ARMED = "timer.armed"
    TIMER_FIRED = "timer.fired"
    TIMER_ARM_FAILED = "timer.arm_failed"

    # Viewers
    TRANSITION = "transition"
