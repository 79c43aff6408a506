"""Tests for the ordered schedule store."""

import pytest

from signage.scheduler import ChangeKind, DuplicateId, NotFound, ResolutionInconsistency, ScheduleStore

from .conftest import make_entry


class TestMutations:
    """insert / replace / remove keep map and index in step."""

    def test_insert_and_get(self, store: ScheduleStore) -> None:
        entry = store.insert(make_entry(10, entry_id="x"))
        assert store.get("x") is entry
        assert "x" in store
        assert len(store) == 1

    def test_insert_duplicate_id(self, store: ScheduleStore) -> None:
        store.insert(make_entry(10, entry_id="x"))
        with pytest.raises(DuplicateId):
            store.insert(make_entry(20, entry_id="x"))
        assert len(store) == 1
        assert store.get("x").scheduled_at_ms == 10

    def test_replace_keeps_identity(self, store: ScheduleStore) -> None:
        store.insert(make_entry(10, "a", created_at_ms=7, entry_id="x"))
        updated = store.replace("x", 30, "b", updated_at_ms=99)
        assert updated.id == "x"
        assert updated.created_at_ms == 7
        assert updated.scheduled_at_ms == 30
        assert updated.asset_ref == "b"
        assert updated.updated_at_ms == 99
        assert store.entries() == [updated]

    def test_replace_missing(self, store: ScheduleStore) -> None:
        with pytest.raises(NotFound):
            store.replace("nope", 10, "a")

    def test_remove(self, store: ScheduleStore) -> None:
        store.insert(make_entry(10, entry_id="x"))
        removed = store.remove("x")
        assert removed.id == "x"
        assert len(store) == 0
        assert store.entry_active_at(100) is None

    def test_remove_missing(self, store: ScheduleStore) -> None:
        with pytest.raises(NotFound):
            store.remove("nope")

    def test_load_is_atomic(self, store: ScheduleStore) -> None:
        store.insert(make_entry(10, entry_id="x"))
        with pytest.raises(DuplicateId):
            store.load([make_entry(20, entry_id="y"), make_entry(30, entry_id="x")])
        assert len(store) == 1
        assert "y" not in store

    def test_load_sorts(self, store: ScheduleStore) -> None:
        count = store.load([
            make_entry(30, entry_id="c"),
            make_entry(10, entry_id="a"),
            make_entry(20, entry_id="b"),
        ])
        assert count == 3
        assert [e.id for e in store.entries()] == ["a", "b", "c"]
        store.check_consistency()

    def test_clear(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        store.clear()
        assert len(store) == 0
        assert store.entries() == []


class TestQueries:
    """Active entry, future window and next wake instant."""

    def test_active_is_latest_at_or_before(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        assert store.entry_active_at(9) is None
        assert store.entry_active_at(10).id == "a"
        assert store.entry_active_at(19).id == "a"
        assert store.entry_active_at(20).id == "b"
        assert store.entry_active_at(10_000).id == "b"

    def test_tie_break_first_created_wins(self, store: ScheduleStore) -> None:
        store.load([
            make_entry(10, created_at_ms=200, entry_id="late"),
            make_entry(10, created_at_ms=100, entry_id="early"),
        ])
        assert store.entry_active_at(10).id == "early"
        assert store.entry_active_at(15).id == "early"

    def test_tie_break_by_id(self, store: ScheduleStore) -> None:
        store.load([
            make_entry(10, created_at_ms=100, entry_id="b"),
            make_entry(10, created_at_ms=100, entry_id="a"),
        ])
        assert store.entry_active_at(10).id == "a"

    def test_upcoming_strictly_after(self, store: ScheduleStore) -> None:
        store.load([
            make_entry(10, entry_id="a"),
            make_entry(20, entry_id="b"),
            make_entry(30, entry_id="c"),
            make_entry(40, entry_id="d"),
        ])
        assert [e.id for e in store.upcoming_after(20, 10)] == ["c", "d"]
        assert [e.id for e in store.upcoming_after(5, 2)] == ["a", "b"]
        assert store.upcoming_after(5, 0) == []
        assert store.upcoming_after(40, 5) == []

    def test_upcoming_rejects_negative_limit(self, store: ScheduleStore) -> None:
        with pytest.raises(ValueError):
            store.upcoming_after(0, -1)

    def test_next_instant_after(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(10, entry_id="b"), make_entry(20, entry_id="c")])
        assert store.next_instant_after(0) == 10
        assert store.next_instant_after(10) == 20
        assert store.next_instant_after(20) is None

    def test_window_is_consistent(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        active, future = store.window(15, 5)
        assert active.id == "a"
        assert [e.id for e in future] == ["b"]


class TestListeners:
    """Every mutation is reported to listeners."""

    def test_change_kinds(self, store: ScheduleStore) -> None:
        seen = []
        store.add_listener(seen.append)

        store.insert(make_entry(10, entry_id="x"))
        store.replace("x", 20, "b")
        store.remove("x")
        store.load([make_entry(5, entry_id="y")])
        store.clear()

        assert [c.kind for c in seen] == [
            ChangeKind.INSERTED,
            ChangeKind.REPLACED,
            ChangeKind.REMOVED,
            ChangeKind.LOADED,
            ChangeKind.CLEARED,
        ]
        assert seen[1].old_at_ms == 10
        assert seen[1].new_at_ms == 20
        assert seen[1].earliest_at_ms == 10

    def test_listener_errors_are_contained(self, store: ScheduleStore) -> None:
        def broken(change):
            raise RuntimeError("boom")

        store.add_listener(broken)
        store.insert(make_entry(10, entry_id="x"))
        assert "x" in store

    def test_remove_listener(self, store: ScheduleStore) -> None:
        seen = []
        store.add_listener(seen.append)
        store.remove_listener(seen.append)
        store.insert(make_entry(10, entry_id="x"))
        assert seen == []


class TestConsistency:
    """Index corruption is detected and recoverable."""

    def test_missing_index_key(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        store._index.pop()
        with pytest.raises(ResolutionInconsistency):
            store.check_consistency()
        with pytest.raises(ResolutionInconsistency):
            store.remove("b")

    def test_dangling_index_key(self, store: ScheduleStore) -> None:
        store.insert(make_entry(10, entry_id="a"))
        store._index.append((20, 0, "ghost"))
        with pytest.raises(ResolutionInconsistency):
            store.entry_active_at(30)

    def test_rebuild_index(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        store._index.clear()
        store.rebuild_index()
        store.check_consistency()
        assert store.entry_active_at(25).id == "b"
