"""Main Scheduler Service class.

This is the unified entry point for one display timeline:
- Mutations (create / update / delete) serialized through one lock
- Resolution queries (active entry + future window)
- Live viewer subscriptions
- Optional SQLite persistence with JSON export
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from ..clock import Clock, SystemClock
from ..errors import ResolutionInconsistency, ValidationError
from ..models import ScheduleEntry
from ..resolver import Resolution, resolve
from ..types import SchedulerStatus, TimelineChange
from ..viewer import ViewerDriver
from .state import SchedulerServiceDeps, SchedulerServiceState, TaskFactory, TimerPolicy
from .store import ScheduleStore
from .repository import ScheduleRepository
from .events import EventEmitter, TransitionBroadcaster, emit_entry_event, EventTypes
from . import ops
from . import timer

if TYPE_CHECKING:
    from ...services.asset_service import AssetCatalog

logger = logger.bind(module="scheduler.service")


class SchedulerService:
    """Scheduler service for one timeline of display assignments.

    All store mutations and timer re-arming happen under ``state.lock``;
    asset validation happens before the lock is taken. Reads only take the
    store's own lock and never wait on writers' validation.
    """

    def __init__(
        self,
        assets: AssetCatalog | None = None,
        db_path: str | Path | None = None,
        json_path: str | Path | None = None,
        clock: Clock | None = None,
        timezone: str = "UTC",
        max_future_items: int = 5,
        policy: TimerPolicy | None = None,
        task_factory: TaskFactory | None = None,
        auto_export_json: bool = False,
    ):
        """Initialize scheduler service.

        Args:
            assets: Asset catalog used to validate asset references
            db_path: Path to SQLite database for persistence (None = memory only)
            json_path: Path to JSON file for human-readable export
            clock: Clock driving the timer (defaults to the system clock)
            timezone: Timezone for naive datetimes in mutation input
            max_future_items: Default future window size for list queries
            policy: Timer retry and safety-net tuning
            task_factory: Spawns the wake-up timer task
            auto_export_json: Whether to export to JSON after every change
        """
        if assets is None:
            from ...services.asset_service import InMemoryAssetCatalog
            assets = InMemoryAssetCatalog()
        self.assets = assets
        self.store = ScheduleStore()
        self.events = EventEmitter()
        self.broadcaster = TransitionBroadcaster()
        self.deps = SchedulerServiceDeps(
            assets=self.assets,
            clock=clock or SystemClock(),
            task_factory=task_factory,
        )
        self.state = SchedulerServiceState()
        self.policy = policy or TimerPolicy()
        self.repository = ScheduleRepository(db_path, json_path) if db_path else None
        self.timezone = timezone
        self.max_future_items = max_future_items
        self.auto_export_json = auto_export_json
        self._last_created_at_ms = 0

        self.store.add_listener(self._on_timeline_change)

    def _on_timeline_change(self, change: TimelineChange) -> None:
        timer.on_timeline_change(self, change)

    # ============== Lifecycle ==============

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.state.running:
            logger.warning("Scheduler already running")
            return

        persisted: list[ScheduleEntry] = []
        if self.repository:
            await self.repository.initialize()
            if len(self.store) == 0:
                persisted = await self.repository.load_all()

        async with self.state.lock:
            self.state.fault = None
            if persisted:
                self.store.load(persisted)
            self.store.check_consistency()
            self.state.running = True
            timer.reconcile(self)
            self.state.safety_task = asyncio.create_task(timer.safety_net_loop(self))

        if self.state.rearm_pending:
            await timer.rearm_with_backoff(self)

        emit_entry_event(self.events, EventTypes.SCHEDULER_STARTED, "")
        logger.info(f"Scheduler service started with {len(self.store)} entries")

    async def stop(self) -> None:
        """Stop the scheduler service, cancelling timers and closing viewers."""
        if not self.state.running and self.state.safety_task is None:
            return

        self.state.running = False
        await timer.cancel_tasks(self)
        self.broadcaster.close()

        if self.repository:
            if self.auto_export_json:
                await self.repository.export_to_json(self.timezone)
            await self.repository.close()

        self.state.reset()

        emit_entry_event(self.events, EventTypes.SCHEDULER_STOPPED, "")
        logger.info("Scheduler service stopped")

    async def restart(self) -> None:
        """Restart the timeline, rebuilding the time index from the id map.

        This is the recovery path after a ResolutionInconsistency.
        """
        logger.warning("Restarting timeline")
        await self.stop()
        self.store.rebuild_index()
        await self.start()

    def _ensure_healthy(self) -> None:
        if self.state.fault is not None:
            raise self.state.fault

    async def status(self) -> SchedulerStatus:
        """Get scheduler status."""
        return ops.get_status(self.store, self.state, self.broadcaster)

    # ============== Mutations ==============

    def _next_created_at(self) -> int:
        # Strictly increasing so creation order always breaks ties
        created_at_ms = max(self.deps.clock.now_ms(), self._last_created_at_ms + 1)
        self._last_created_at_ms = created_at_ms
        return created_at_ms

    async def create(self, scheduled_at: Any, asset_ref: Any) -> ScheduleEntry:
        """Create a schedule entry.

        Args:
            scheduled_at: Epoch ms, ISO-8601 string or datetime
            asset_ref: Id of an asset known to the asset catalog

        Returns:
            Created entry

        Raises:
            ValidationError: listing every invalid field
        """
        self._ensure_healthy()
        scheduled_at_ms, ref = await ops.validate_schedule_input(
            self.assets, scheduled_at, asset_ref, self.timezone
        )

        async with self.state.lock:
            entry = ops.build_entry(scheduled_at_ms, ref, self._next_created_at())
            await self._persist(entry)
            try:
                ops.create_entry(self.store, self.events, entry)
            except ResolutionInconsistency:
                raise
            except Exception:
                if self.repository:
                    await self.repository.delete(entry.id)
                raise

        await self._after_mutation()
        return entry

    async def update(self, entry_id: str, scheduled_at: Any, asset_ref: Any) -> ScheduleEntry:
        """Replace time and asset of an entry.

        Raises:
            ValidationError: listing every invalid field
            NotFound: if the entry does not exist
        """
        self._ensure_healthy()
        entry_id = ops.validate_entry_id(entry_id)
        scheduled_at_ms, ref = await ops.validate_schedule_input(
            self.assets, scheduled_at, asset_ref, self.timezone
        )

        async with self.state.lock:
            previous, updated = ops.build_update(
                self.store, entry_id, scheduled_at_ms, ref, self.deps.clock.now_ms()
            )
            await self._persist(updated)
            try:
                updated = ops.update_entry(self.store, self.events, previous, updated)
            except ResolutionInconsistency:
                raise
            except Exception:
                if self.repository:
                    await self.repository.save(previous)
                raise

        await self._after_mutation()
        return updated

    async def delete(self, entry_id: str) -> ScheduleEntry:
        """Delete an entry.

        Returns:
            The removed entry

        Raises:
            NotFound: if the entry does not exist
        """
        self._ensure_healthy()
        entry_id = ops.validate_entry_id(entry_id)

        async with self.state.lock:
            entry = ops.get_entry(self.store, entry_id)
            if self.repository:
                try:
                    await self.repository.delete(entry_id)
                except Exception as e:
                    logger.error(f"Failed to delete schedule {entry_id} from storage: {e}")
                    raise
            try:
                ops.delete_entry(self.store, self.events, entry_id)
            except ResolutionInconsistency:
                raise
            except Exception:
                if self.repository:
                    await self.repository.save(entry)
                raise

        await self._after_mutation()
        return entry

    async def _persist(self, entry: ScheduleEntry) -> None:
        # Storage is written before the timeline is touched
        if not self.repository:
            return
        try:
            await self.repository.save(entry)
        except Exception as e:
            logger.error(f"Failed to persist schedule {entry.id}: {e}")
            raise

    async def _after_mutation(self) -> None:
        if self.state.rearm_pending and self.state.running:
            await timer.rearm_with_backoff(self)
        if self.repository and self.auto_export_json:
            await self.repository.export_to_json(self.timezone)

    # ============== Queries ==============

    async def get(self, entry_id: str) -> ScheduleEntry | None:
        """Get an entry by ID."""
        return self.store.get(entry_id)

    async def list_all(self) -> list[ScheduleEntry]:
        """All entries in timeline order."""
        return self.store.entries()

    async def list_schedules(self, max_future_items: int | None = None) -> Resolution:
        """Active entry and up to ``max_future_items`` upcoming entries, at now.

        Every poll re-resolves from the clock. If the result disagrees with
        what viewers were last told (e.g. a wake-up was missed), the timeline
        is reconciled so viewers catch up too.

        Raises:
            ValidationError: if ``max_future_items`` is negative
        """
        self._ensure_healthy()
        if max_future_items is None:
            max_future_items = self.max_future_items
        if isinstance(max_future_items, bool) or not isinstance(max_future_items, int) or max_future_items < 0:
            raise ValidationError({"max_future_items": "must be a non-negative integer"})

        resolution = resolve(self.store, timer.current_instant(self), max_future_items)
        if self.state.running and resolution.active_id != self.state.last_published_id:
            async with self.state.lock:
                if self.state.running:
                    timer.reconcile(self)
        return resolution

    def resolve_at(self, instant_ms: int, max_future_items: int = 0) -> Resolution:
        """Resolve an arbitrary instant (previews; never publishes)."""
        return resolve(self.store, instant_ms, max_future_items)

    def subscribe(self) -> ViewerDriver:
        """Attach a viewer.

        The queue is registered before the initial resolution, with no await
        in between, so the viewer misses nothing and sees nothing stale.
        """
        self._ensure_healthy()
        queue = self.broadcaster.subscribe()
        initial = resolve(self.store, timer.current_instant(self))
        return ViewerDriver(self, queue, initial)

    # ============== Event Handling ==============

    def on_event(self, handler: Callable[[Any], None]) -> None:
        """Register an event handler.

        Args:
            handler: Function to call when events are emitted
        """
        self.events.add_handler(handler)

    def off_event(self, handler: Callable[[Any], None]) -> None:
        """Unregister an event handler.

        Args:
            handler: Handler to remove
        """
        self.events.remove_handler(handler)

    # ============== JSON Export ==============

    async def export_to_json(self) -> Path | None:
        """Export all entries to the JSON file.

        Returns:
            Path to the exported JSON file, or None without persistence
        """
        if not self.repository:
            return None
        await self.repository.export_to_json(self.timezone)
        return self.repository.json_path

    async def import_from_json(self, json_path: str | Path | None = None) -> int:
        """Import entries from a JSON export into storage and the timeline.

        Entries whose id is already live are skipped. The whole file is rejected if it
        repeats an id.

        Returns:
            Number of entries added to the timeline

        Raises:
            DuplicateId: if the file lists the same id twice
        """
        if not self.repository:
            raise RuntimeError("Persistence is not configured")

        imported = await self.repository.import_from_json(json_path)
        async with self.state.lock:
            fresh = [e for e in imported if e.id not in self.store]
            if not fresh:
                return 0
            await self.repository.save_many(fresh)
            try:
                count = self.store.load(fresh)
            except ResolutionInconsistency:
                raise
            except Exception:
                for entry in fresh:
                    await self.repository.delete(entry.id)
                raise
        await self._after_mutation()
        return count
