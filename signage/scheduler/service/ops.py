"""Core operations for the scheduler service.

Contains the mutation logic for schedule entries. Validation is async (it may
wait on the asset catalog) and runs before the timeline lock is taken; the
apply functions are synchronous and run under the lock.
"""
from typing import TYPE_CHECKING, Any

from loguru import logger

from ..errors import NotFound, ValidationError
from ..models import ScheduleEntry, new_entry_id
from ..schedule import parse_scheduled_at
from ..types import SchedulerStatus
from .events import EventEmitter, TransitionBroadcaster, emit_entry_event, EventTypes
from .store import ScheduleStore
from .state import SchedulerServiceState

if TYPE_CHECKING:
    from ...services.asset_service import AssetCatalog

logger = logger.bind(module="scheduler.ops")


async def validate_schedule_input(
    assets: "AssetCatalog",
    scheduled_at: Any,
    asset_ref: Any,
    tz_name: str = "UTC",
) -> tuple[int, str]:
    """Validate and normalize create/update input.

    Every violated field is reported, not just the first one.

    Args:
        assets: Asset catalog used to check that ``asset_ref`` exists
        scheduled_at: Epoch ms, ISO-8601 string or datetime
        asset_ref: Opaque asset id
        tz_name: Timezone for naive datetimes

    Returns:
        Tuple of (scheduled_at_ms, asset_ref)

    Raises:
        ValidationError: listing every invalid field
    """
    errors: dict[str, str] = {}

    scheduled_at_ms = 0
    try:
        scheduled_at_ms = parse_scheduled_at(scheduled_at, tz_name)
    except ValueError as e:
        errors["scheduled_at"] = str(e)

    ref = asset_ref.strip() if isinstance(asset_ref, str) else asset_ref
    if ref is None or ref == "":
        errors["asset_ref"] = "is required"
    elif not isinstance(ref, str):
        errors["asset_ref"] = "must be a string"
    elif not await assets.exists(ref):
        errors["asset_ref"] = f"asset '{ref}' does not exist"

    if errors:
        logger.debug(f"Rejected schedule input: {errors}")
        raise ValidationError(errors)

    return scheduled_at_ms, ref


def validate_entry_id(entry_id: Any) -> str:
    """Reject empty ids before they reach the store."""
    if not isinstance(entry_id, str) or not entry_id.strip():
        raise ValidationError({"id": "is required"})
    return entry_id.strip()


def build_entry(scheduled_at_ms: int, asset_ref: str, created_at_ms: int) -> ScheduleEntry:
    """Build a new schedule entry without touching the timeline."""
    return ScheduleEntry(
        id=new_entry_id(),
        scheduled_at_ms=scheduled_at_ms,
        asset_ref=asset_ref,
        created_at_ms=created_at_ms,
        updated_at_ms=created_at_ms,
    )


def create_entry(store: ScheduleStore, events: EventEmitter, entry: ScheduleEntry) -> ScheduleEntry:
    """Add a built entry to the timeline.

    Args:
        store: Schedule store
        events: Event emitter
        entry: Entry from ``build_entry``

    Returns:
        Created entry
    """
    store.insert(entry)

    emit_entry_event(events, EventTypes.SCHEDULE_CREATED, entry.id, entry.to_dict())
    logger.info(f"Created schedule {entry.id} at {entry.scheduled_at_ms} -> {entry.asset_ref}")
    return entry


def get_entry(store: ScheduleStore, entry_id: str) -> ScheduleEntry:
    """Look up a live entry.

    Raises:
        NotFound: if the entry does not exist
    """
    entry = store.get(entry_id)
    if entry is None:
        raise NotFound(entry_id)
    return entry


def build_update(
    store: ScheduleStore,
    entry_id: str,
    scheduled_at_ms: int,
    asset_ref: str,
    updated_at_ms: int,
) -> tuple[ScheduleEntry, ScheduleEntry]:
    """Compute the replacement of an entry without applying it.

    Returns:
        Tuple of (previous entry, updated entry)

    Raises:
        NotFound: if the entry does not exist
    """
    previous = get_entry(store, entry_id)
    return previous, previous.with_changes(scheduled_at_ms, asset_ref, updated_at_ms)


def update_entry(
    store: ScheduleStore,
    events: EventEmitter,
    previous: ScheduleEntry,
    updated: ScheduleEntry,
) -> ScheduleEntry:
    """Apply a replacement computed by ``build_update``."""
    applied = store.replace(updated.id, updated.scheduled_at_ms, updated.asset_ref, updated.updated_at_ms)

    emit_entry_event(
        events,
        EventTypes.SCHEDULE_UPDATED,
        applied.id,
        {"previous": previous.to_dict(), "entry": applied.to_dict()},
    )
    logger.info(f"Updated schedule {applied.id}: at {applied.scheduled_at_ms} -> {applied.asset_ref}")
    return applied


def delete_entry(
    store: ScheduleStore,
    events: EventEmitter,
    entry_id: str,
) -> ScheduleEntry:
    """Remove a schedule entry.

    Returns:
        The removed entry

    Raises:
        NotFound: if the entry does not exist
    """
    entry = store.remove(entry_id)

    emit_entry_event(events, EventTypes.SCHEDULE_DELETED, entry_id, entry.to_dict())
    logger.info(f"Deleted schedule {entry_id}")
    return entry


def get_status(
    store: ScheduleStore,
    state: SchedulerServiceState,
    broadcaster: TransitionBroadcaster,
) -> SchedulerStatus:
    """Get scheduler status."""
    return SchedulerStatus(
        running=state.running,
        entries_total=len(store),
        active_id=state.last_published_id,
        armed_at_ms=state.armed_at_ms,
        subscribers=broadcaster.subscriber_count,
        rearm_pending=state.rearm_pending,
        published=broadcaster.published,
    )
