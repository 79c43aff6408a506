"""Tests for timeline resolution."""

import random

import pytest

from signage.scheduler import Resolution, ScheduleStore, resolve

from .conftest import make_entry


def brute_force_active(entries, instant_ms):
    eligible = [e for e in entries if e.scheduled_at_ms <= instant_ms]
    if not eligible:
        return None
    latest = max(e.scheduled_at_ms for e in eligible)
    return min((e for e in eligible if e.scheduled_at_ms == latest), key=lambda e: e.sort_key)


class TestActiveAndFuture:
    """Reference scenarios for active entry and future window."""

    def test_two_entries(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, "X", entry_id="x"), make_entry(20, "Y", entry_id="y")])

        r = resolve(store, 15, max_future_items=5)
        assert r.active.asset_ref == "X"
        assert [e.asset_ref for e in r.future] == ["Y"]

        r = resolve(store, 25, max_future_items=5)
        assert r.active.asset_ref == "Y"
        assert r.future == []

    def test_same_instant_earliest_created_wins(self, store: ScheduleStore) -> None:
        store.load([
            make_entry(10, "first", created_at_ms=100, entry_id="e1"),
            make_entry(10, "second", created_at_ms=200, entry_id="e2"),
        ])
        assert resolve(store, 10).active.created_at_ms == 100

    def test_create_then_delete(self, store: ScheduleStore) -> None:
        entry = store.insert(make_entry(5, "A"))
        store.remove(entry.id)
        r = resolve(store, 5)
        assert r.active is None
        assert r.is_empty

    def test_empty_store(self, store: ScheduleStore) -> None:
        r = resolve(store, 123, max_future_items=3)
        assert r == Resolution(instant_ms=123, active=None, future=[])

    def test_entry_exactly_at_instant_is_active_not_future(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        r = resolve(store, 20, max_future_items=5)
        assert r.active_id == "b"
        assert r.future == []

    def test_window_is_bounded(self, store: ScheduleStore) -> None:
        store.load([make_entry(t, entry_id=f"e{t}") for t in range(10, 110, 10)])
        r = resolve(store, 0, max_future_items=3)
        assert r.active is None
        assert [e.id for e in r.future] == ["e10", "e20", "e30"]

    def test_negative_window_rejected(self, store: ScheduleStore) -> None:
        with pytest.raises(ValueError):
            resolve(store, 0, max_future_items=-1)


class TestProperties:
    """Resolution agrees with a brute-force reading of the timeline."""

    def test_matches_brute_force(self, store: ScheduleStore) -> None:
        rng = random.Random(42)
        entries = [
            make_entry(rng.randint(0, 50), created_at_ms=rng.randint(0, 5), entry_id=f"e{i:03d}")
            for i in range(200)
        ]
        store.load(entries)

        for instant in range(-1, 55):
            r = resolve(store, instant, max_future_items=4)
            expected = brute_force_active(entries, instant)
            assert r.active == expected

            assert all(e.scheduled_at_ms > instant for e in r.future)
            assert [e.sort_key for e in r.future] == sorted(e.sort_key for e in r.future)
            later = sorted(e.sort_key for e in entries if e.scheduled_at_ms > instant)
            assert [e.sort_key for e in r.future] == later[:4]

    def test_resolution_is_repeatable(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, entry_id="a"), make_entry(20, entry_id="b")])
        assert resolve(store, 15, 5) == resolve(store, 15, 5)

    def test_insertion_order_does_not_matter(self) -> None:
        entries = [
            make_entry(10, created_at_ms=3, entry_id="a"),
            make_entry(10, created_at_ms=1, entry_id="b"),
            make_entry(5, created_at_ms=2, entry_id="c"),
        ]
        forward = ScheduleStore()
        backward = ScheduleStore()
        for e in entries:
            forward.insert(e)
        for e in reversed(entries):
            backward.insert(e)

        for instant in (4, 5, 9, 10, 11):
            assert resolve(forward, instant, 3) == resolve(backward, instant, 3)

    def test_to_dict(self, store: ScheduleStore) -> None:
        store.load([make_entry(10, "X", entry_id="x"), make_entry(20, "Y", entry_id="y")])
        data = resolve(store, 15, 1).to_dict()
        assert data["instant_ms"] == 15
        assert data["active"]["id"] == "x"
        assert [e["id"] for e in data["future"]] == ["y"]
