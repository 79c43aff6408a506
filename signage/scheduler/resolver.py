"""Resolution engine.

Answers "which entry is active at T, and what comes next" straight from the
store. Nothing here is cached: for a fixed store snapshot and instant the
result is always the same.
"""
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .models import ScheduleEntry

if TYPE_CHECKING:
    from .service.store import ScheduleStore


@dataclass(frozen=True)
class Resolution:
    """Active entry and future window at ``instant_ms``."""
    instant_ms: int
    active: ScheduleEntry | None = None
    future: list[ScheduleEntry] = field(default_factory=list)

    @property
    def active_id(self) -> str | None:
        return self.active.id if self.active else None

    @property
    def is_empty(self) -> bool:
        return self.active is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instant_ms": self.instant_ms,
            "active": self.active.to_dict() if self.active else None,
            "future": [e.to_dict() for e in self.future],
        }


def resolve(store: "ScheduleStore", instant_ms: int, max_future_items: int = 0) -> Resolution:
    """Resolve the timeline at ``instant_ms``.

    Args:
        store: Schedule store to read from
        instant_ms: Instant to resolve, epoch milliseconds
        max_future_items: Upper bound on the future window (>= 0)

    Returns:
        Resolution with the active entry (or None) and up to
        ``max_future_items`` entries scheduled strictly after ``instant_ms``
    """
    if max_future_items < 0:
        raise ValueError("max_future_items must be non-negative")
    active, future = store.window(instant_ms, max_future_items)
    return Resolution(instant_ms=instant_ms, active=active, future=future)
