"""Core type definitions for the scheduling engine.

This module defines:
- Timeline change notifications emitted by the store
- Transition events published to viewers
- Lifecycle events and status snapshots
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import ScheduleEntry


# ============== Timeline Changes ==============

class ChangeKind(str, Enum):
    """Kind of store mutation."""
    INSERTED = "inserted"
    REPLACED = "replaced"
    REMOVED = "removed"
    LOADED = "loaded"     # Bulk load from persistence
    CLEARED = "cleared"


@dataclass(frozen=True)
class TimelineChange:
    """Notification emitted by the store after every mutation.

    ``old_at_ms``/``new_at_ms`` bound the instant range touched by the change
    so listeners can decide whether anything near-term moved. Both are None
    for bulk operations, which always force a recomputation.
    """
    kind: ChangeKind
    entry_id: str | None = None
    old_at_ms: int | None = None
    new_at_ms: int | None = None
    entry: ScheduleEntry | None = None

    @property
    def is_bulk(self) -> bool:
        return self.kind in (ChangeKind.LOADED, ChangeKind.CLEARED)

    @property
    def earliest_at_ms(self) -> int | None:
        instants = [t for t in (self.old_at_ms, self.new_at_ms) if t is not None]
        return min(instants) if instants else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entry_id": self.entry_id,
            "old_at_ms": self.old_at_ms,
            "new_at_ms": self.new_at_ms,
        }


# ============== Transition Events ==============

@dataclass(frozen=True)
class TransitionEvent:
    """The active entry changed at ``instant_ms``.

    ``active`` is None when the timeline has nothing in effect (empty state).
    """
    instant_ms: int
    active: ScheduleEntry | None
    previous_id: str | None = None

    @property
    def active_id(self) -> str | None:
        return self.active.id if self.active else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instant_ms": self.instant_ms,
            "active": self.active.to_dict() if self.active else None,
            "previous_id": self.previous_id,
        }


# ============== Lifecycle Events ==============

@dataclass
class SchedulerEvent:
    """Event emitted by the scheduler."""
    type: str
    entry_id: str
    timestamp_ms: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "entry_id": self.entry_id,
            "timestamp_ms": self.timestamp_ms,
            "payload": self.payload,
        }


# ============== Status ==============

@dataclass
class SchedulerStatus:
    """Status of the scheduler service."""
    running: bool
    entries_total: int
    active_id: str | None = None
    armed_at_ms: int | None = None
    subscribers: int = 0
    rearm_pending: bool = False
    published: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "entries_total": self.entries_total,
            "active_id": self.active_id,
            "armed_at_ms": self.armed_at_ms,
            "subscribers": self.subscribers,
            "rearm_pending": self.rearm_pending,
            "published": self.published,
        }
