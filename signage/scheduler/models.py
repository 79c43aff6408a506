"""Data models for schedule entries."""
from dataclasses import dataclass, field, replace
from typing import Any
import uuid

from .schedule import now_ms

SortKey = tuple[int, int, str]


def new_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ScheduleEntry:
    """A single assignment of an asset to an instant.

    Entries are ordered by ``(scheduled_at_ms, created_at_ms, id)``. The
    ordering is part of the persisted contract: two stores loaded from the
    same rows always agree on which entry is active.
    """
    scheduled_at_ms: int
    asset_ref: str
    id: str = field(default_factory=new_entry_id)
    created_at_ms: int = field(default_factory=now_ms)
    updated_at_ms: int | None = None

    @property
    def sort_key(self) -> SortKey:
        return (self.scheduled_at_ms, self.created_at_ms, self.id)

    def with_changes(
        self,
        scheduled_at_ms: int,
        asset_ref: str,
        updated_at_ms: int | None = None,
    ) -> "ScheduleEntry":
        """Return a copy with new time/asset; id and created_at_ms are kept."""
        return replace(
            self,
            scheduled_at_ms=scheduled_at_ms,
            asset_ref=asset_ref,
            updated_at_ms=updated_at_ms if updated_at_ms is not None else now_ms(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "scheduled_at_ms": self.scheduled_at_ms,
            "asset_ref": self.asset_ref,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleEntry":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            scheduled_at_ms=int(data["scheduled_at_ms"]),
            asset_ref=data["asset_ref"],
            created_at_ms=int(data["created_at_ms"]),
            updated_at_ms=data.get("updated_at_ms"),
        )
