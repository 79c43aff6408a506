"""Shared fixtures for scheduler tests."""

import asyncio
from typing import AsyncIterator

import pytest

from signage.scheduler import (
    SchedulerService,
    ScheduleEntry,
    ScheduleStore,
    SteppedClock,
    TimerPolicy,
    TransitionEvent,
)
from signage.services.asset_service import AssetMetadata, InMemoryAssetCatalog

START_MS = 1_000_000


async def settle(rounds: int = 10) -> None:
    """Let woken tasks run to their next await."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def transitions(queue: asyncio.Queue) -> list[TransitionEvent]:
    return [m for m in drain(queue) if isinstance(m, TransitionEvent)]


def make_entry(
    scheduled_at_ms: int,
    asset_ref: str = "a",
    created_at_ms: int = 0,
    entry_id: str | None = None,
) -> ScheduleEntry:
    if entry_id is None:
        return ScheduleEntry(scheduled_at_ms=scheduled_at_ms, asset_ref=asset_ref, created_at_ms=created_at_ms)
    return ScheduleEntry(
        id=entry_id,
        scheduled_at_ms=scheduled_at_ms,
        asset_ref=asset_ref,
        created_at_ms=created_at_ms,
    )


@pytest.fixture
def store() -> ScheduleStore:
    return ScheduleStore()


@pytest.fixture
def catalog() -> InMemoryAssetCatalog:
    return InMemoryAssetCatalog([
        AssetMetadata(id="a", title="Asset A", created_at_ms=1),
        AssetMetadata(id="b", title="Asset B", created_at_ms=2),
        AssetMetadata(id="c", title="Asset C", created_at_ms=3),
    ])


@pytest.fixture
def clock() -> SteppedClock:
    return SteppedClock(start_ms=START_MS)


@pytest.fixture
def policy() -> TimerPolicy:
    return TimerPolicy(
        safety_net_interval_ms=60_000,
        retry_attempts=3,
        retry_base_delay=0.001,
        retry_max_delay=0.01,
    )


@pytest.fixture
async def service(
    catalog: InMemoryAssetCatalog,
    clock: SteppedClock,
    policy: TimerPolicy,
) -> AsyncIterator[SchedulerService]:
    svc = SchedulerService(assets=catalog, clock=clock, policy=policy)
    await svc.start()
    await settle()
    yield svc
    await svc.stop()
