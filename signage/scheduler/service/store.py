"""In-memory schedule store.

Holds every live entry of a timeline in two structures that are always updated
together under one lock:

- ``_entries``: id -> entry, for existence checks before any ordering work
- ``_index``: sorted list of ``(scheduled_at_ms, created_at_ms, id)`` keys,
  searched with ``bisect``

Every mutation notifies registered listeners with a ``TimelineChange``.
"""
import math
import threading
from bisect import bisect_left, bisect_right, insort
from typing import Callable, Iterable

from loguru import logger

from ..errors import DuplicateId, NotFound, ResolutionInconsistency
from ..models import ScheduleEntry, SortKey
from ..types import ChangeKind, TimelineChange

logger = logger.bind(module="scheduler.store")

ChangeListener = Callable[[TimelineChange], None]


def _upper_bound(instant_ms: int) -> tuple[int, float]:
    """Key that sorts after every key scheduled at or before ``instant_ms``."""
    return (instant_ms, math.inf)


class ScheduleStore:
    """Ordered collection of schedule entries, keyed by id and indexed by time.

    Reads take the same reentrant lock as writes, so a reader never observes
    an entry that is in the map but not yet in the index (or vice versa).
    """

    def __init__(self):
        self._entries: dict[str, ScheduleEntry] = {}
        self._index: list[SortKey] = []
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []

    # ============== Listeners ==============

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a timeline-change listener."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        """Unregister a timeline-change listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, change: TimelineChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except ResolutionInconsistency:
                raise
            except Exception as e:
                logger.error(f"Timeline listener error: {e}")

    # ============== Mutations ==============

    def insert(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Add a new entry.

        Raises:
            DuplicateId: if an entry with the same id is already stored
        """
        with self._lock:
            if entry.id in self._entries:
                raise DuplicateId(entry.id)
            insort(self._index, entry.sort_key)
            self._entries[entry.id] = entry

        self._notify(TimelineChange(
            kind=ChangeKind.INSERTED,
            entry_id=entry.id,
            new_at_ms=entry.scheduled_at_ms,
            entry=entry,
        ))
        return entry

    def replace(
        self,
        entry_id: str,
        scheduled_at_ms: int,
        asset_ref: str,
        updated_at_ms: int | None = None,
    ) -> ScheduleEntry:
        """Replace time and asset of an entry, keeping id and created_at_ms.

        Raises:
            NotFound: if no entry has ``entry_id``
        """
        with self._lock:
            old = self._entries.get(entry_id)
            if old is None:
                raise NotFound(entry_id)
            new = old.with_changes(scheduled_at_ms, asset_ref, updated_at_ms)
            self._unindex(old)
            insort(self._index, new.sort_key)
            self._entries[entry_id] = new

        self._notify(TimelineChange(
            kind=ChangeKind.REPLACED,
            entry_id=entry_id,
            old_at_ms=old.scheduled_at_ms,
            new_at_ms=new.scheduled_at_ms,
            entry=new,
        ))
        return new

    def remove(self, entry_id: str) -> ScheduleEntry:
        """Delete an entry.

        Raises:
            NotFound: if no entry has ``entry_id``
        """
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise NotFound(entry_id)
            self._unindex(entry)
            del self._entries[entry_id]

        self._notify(TimelineChange(
            kind=ChangeKind.REMOVED,
            entry_id=entry_id,
            old_at_ms=entry.scheduled_at_ms,
            entry=entry,
        ))
        return entry

    def load(self, entries: Iterable[ScheduleEntry]) -> int:
        """Bulk load entries (e.g. rows read back from persistence).

        The batch is applied atomically: a duplicate id anywhere in it leaves
        the store untouched.
        """
        batch: dict[str, ScheduleEntry] = {}
        for entry in entries:
            if entry.id in batch or entry.id in self._entries:
                raise DuplicateId(entry.id)
            batch[entry.id] = entry

        if not batch:
            return 0

        with self._lock:
            for entry_id in batch:
                if entry_id in self._entries:
                    raise DuplicateId(entry_id)
            self._entries.update(batch)
            self._index = sorted(self._index + [e.sort_key for e in batch.values()])

        logger.info(f"Loaded {len(batch)} entries into the timeline")
        self._notify(TimelineChange(kind=ChangeKind.LOADED))
        return len(batch)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
            self._index.clear()
        self._notify(TimelineChange(kind=ChangeKind.CLEARED))

    def rebuild_index(self) -> None:
        """Rebuild the time index from the id map, which is authoritative."""
        with self._lock:
            self._index = sorted(e.sort_key for e in self._entries.values())
        logger.warning(f"Rebuilt time index for {len(self._index)} entries")
        self._notify(TimelineChange(kind=ChangeKind.LOADED))

    def _unindex(self, entry: ScheduleEntry) -> None:
        key = entry.sort_key
        i = bisect_left(self._index, key)
        if i >= len(self._index) or self._index[i] != key:
            raise ResolutionInconsistency(
                f"Entry {entry.id} is stored but missing from the time index"
            )
        del self._index[i]

    # ============== Queries ==============

    def get(self, entry_id: str) -> ScheduleEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> list[ScheduleEntry]:
        """All entries in timeline order."""
        with self._lock:
            return [self._lookup(key) for key in self._index]

    def entry_active_at(self, instant_ms: int) -> ScheduleEntry | None:
        """Entry in effect at ``instant_ms``, or None.

        The latest ``scheduled_at_ms <= instant_ms`` wins; among entries
        sharing that instant the first in tie-break order (earliest
        created_at_ms, then id) is active.
        """
        with self._lock:
            return self._active_at(instant_ms)

    def upcoming_after(self, instant_ms: int, limit: int) -> list[ScheduleEntry]:
        """Up to ``limit`` entries scheduled strictly after ``instant_ms``, ascending."""
        if limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            return self._upcoming(instant_ms, limit)

    def next_instant_after(self, instant_ms: int) -> int | None:
        """Smallest ``scheduled_at_ms`` strictly greater than ``instant_ms``."""
        with self._lock:
            start = bisect_right(self._index, _upper_bound(instant_ms))
            if start < len(self._index):
                return self._index[start][0]
            return None

    def window(
        self,
        instant_ms: int,
        limit: int,
    ) -> tuple[ScheduleEntry | None, list[ScheduleEntry]]:
        """Active entry and future window read from one consistent snapshot."""
        if limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            return self._active_at(instant_ms), self._upcoming(instant_ms, limit)

    def check_consistency(self) -> None:
        """Verify that the id map and the time index describe the same entries.

        Raises:
            ResolutionInconsistency: on any disagreement
        """
        with self._lock:
            if len(self._index) != len(self._entries):
                raise ResolutionInconsistency(
                    f"Index holds {len(self._index)} keys for {len(self._entries)} entries"
                )
            for key in self._index:
                self._lookup(key)
            if any(a > b for a, b in zip(self._index, self._index[1:])):
                raise ResolutionInconsistency("Time index is out of order")

    def _active_at(self, instant_ms: int) -> ScheduleEntry | None:
        last = bisect_right(self._index, _upper_bound(instant_ms)) - 1
        if last < 0:
            return None
        scheduled_at_ms = self._index[last][0]
        # (t,) sorts before every (t, created_at_ms, id)
        first = bisect_left(self._index, (scheduled_at_ms,))
        return self._lookup(self._index[first])

    def _upcoming(self, instant_ms: int, limit: int) -> list[ScheduleEntry]:
        start = bisect_right(self._index, _upper_bound(instant_ms))
        return [self._lookup(key) for key in self._index[start:start + limit]]

    def _lookup(self, key: SortKey) -> ScheduleEntry:
        entry = self._entries.get(key[2])
        if entry is None or entry.sort_key != key:
            raise ResolutionInconsistency(
                f"Time index key {key} has no matching entry"
            )
        return entry
