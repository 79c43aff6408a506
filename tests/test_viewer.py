"""Tests for the viewer driver state machine."""

import asyncio

import pytest

from signage.scheduler import SchedulerService, SteppedClock, TransitionEvent, ViewerState, ViewerStateKind

from .conftest import START_MS, make_entry, settle


class TestSubscription:
    """A viewer starts from the timeline resolved at subscription time."""

    async def test_late_join_shows_active_entry(self, service: SchedulerService) -> None:
        entry = await service.create(START_MS - 10, "a")
        viewer = service.subscribe()
        assert viewer.state.kind == ViewerStateKind.SHOWING
        assert viewer.state.entry_id == entry.id
        assert viewer.state.asset_ref == "a"

    async def test_empty_timeline(self, service: SchedulerService) -> None:
        viewer = service.subscribe()
        assert viewer.state == ViewerState(kind=ViewerStateKind.EMPTY, instant_ms=START_MS)
        assert viewer.state.to_dict()["entry"] is None

    async def test_context_manager_unsubscribes(self, service: SchedulerService) -> None:
        async with service.subscribe():
            assert service.broadcaster.subscriber_count == 1
        assert service.broadcaster.subscriber_count == 0


class TestRefresh:
    """Manual refresh re-queries the timeline."""

    async def test_refresh_is_idempotent(self, service: SchedulerService) -> None:
        await service.create(START_MS - 10, "a")
        viewer = service.subscribe()
        assert await viewer.refresh() is False
        assert await viewer.refresh() is False
        assert viewer.transitions == 0

    async def test_refresh_catches_up(self, service: SchedulerService, clock: SteppedClock) -> None:
        entry = await service.create(START_MS + 10, "a")
        viewer = service.subscribe()
        service.state.timer_task.cancel()
        await settle()

        clock.advance(10)
        assert await viewer.refresh() is True
        assert viewer.state.entry_id == entry.id


class TestEvents:
    """Transition events and timeline changes drive the state."""

    async def test_duplicate_event_is_noop(self, service: SchedulerService) -> None:
        viewer = service.subscribe()
        entry = make_entry(START_MS, entry_id="x")
        event = TransitionEvent(instant_ms=START_MS + 1, active=entry)
        assert viewer.apply(event) is True
        assert viewer.apply(event) is False
        assert viewer.transitions == 1

    async def test_stale_event_ignored(self, service: SchedulerService) -> None:
        viewer = service.subscribe()
        newer = TransitionEvent(instant_ms=START_MS + 20, active=make_entry(START_MS, entry_id="new"))
        older = TransitionEvent(instant_ms=START_MS + 10, active=make_entry(START_MS, entry_id="old"))
        viewer.apply(newer)
        assert viewer.apply(older) is False
        assert viewer.state.entry_id == "new"

    async def test_asset_change_of_shown_entry(self, service: SchedulerService) -> None:
        entry = await service.create(START_MS - 10, "a")
        viewer = service.subscribe()

        await service.update(entry.id, entry.scheduled_at_ms, "b")

        state = await viewer.next_state(timeout=1)
        assert state.entry_id == entry.id
        assert state.asset_ref == "b"

    async def test_unrelated_change_ignored(self, service: SchedulerService, clock: SteppedClock) -> None:
        shown = await service.create(START_MS - 10, "a")
        viewer = service.subscribe()

        await service.create(START_MS + 50, "b")
        with pytest.raises(asyncio.TimeoutError):
            await viewer.next_state(timeout=0.05)
        assert viewer.state.entry_id == shown.id
        assert viewer.transitions == 0

    async def test_delete_of_shown_entry_empties(self, service: SchedulerService) -> None:
        entry = await service.create(START_MS - 10, "a")
        viewer = service.subscribe()

        await service.delete(entry.id)
        state = await viewer.next_state(timeout=1)
        assert state.kind == ViewerStateKind.EMPTY

    async def test_iteration_ends_on_stop(
        self, catalog, clock: SteppedClock, policy
    ) -> None:
        svc = SchedulerService(assets=catalog, clock=clock, policy=policy)
        await svc.start()
        first = await svc.create(START_MS + 10, "a")
        second = await svc.create(START_MS + 20, "b")
        viewer = svc.subscribe()
        seen = []

        async def watch():
            async for state in viewer:
                seen.append(state.entry_id)

        watcher = asyncio.create_task(watch())
        clock.advance(10)
        await settle()
        clock.advance(10)
        await settle()
        await svc.stop()
        await asyncio.wait_for(watcher, timeout=1)

        assert seen == [first.id, second.id]
