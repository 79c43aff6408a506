"""Display timeline demo.

This example demonstrates:
- Registering assets and scheduling them a few seconds apart
- A viewer following live transitions
- Rescheduling an upcoming entry before it starts (the timer re-arms)
- Listing the active entry and the upcoming window
- JSON export for human-readable schedule viewing
"""
import asyncio
import tempfile
from pathlib import Path

from loguru import logger
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from signage.scheduler import SchedulerService, ViewerDriver, instant_to_human, now_ms
from signage.services.asset_service import AssetMetadata, InMemoryAssetCatalog


async def follow(viewer: ViewerDriver, label: str) -> None:
    """Log every state change seen by a viewer."""
    logger.info(f"[{label}] initial: {viewer.state.kind.value} {viewer.state.asset_ref}")
    async for state in viewer:
        logger.info(f"[{label}] now showing: {state.kind.value} {state.asset_ref}")


async def main():
    """Run a short timeline with live viewers."""

    logger.info("=" * 60)
    logger.info("Signage Demo: live transitions")
    logger.info("=" * 60)

    catalog = InMemoryAssetCatalog()
    for asset_id, title, color in [
        ("welcome", "Welcome slide", "#1e88e5"),
        ("menu", "Lunch menu", "#43a047"),
        ("promo", "Afternoon promo", "#e53935"),
    ]:
        await catalog.register(AssetMetadata(id=asset_id, title=title, background_color=color))

    data_dir = Path(tempfile.mkdtemp(prefix="signage_demo_"))
    service = SchedulerService(
        assets=catalog,
        db_path=data_dir / "schedules.db",
        json_path=data_dir / "schedules.json",
    )
    await service.start()

    start = now_ms()
    await service.create(start - 1000, "welcome")
    menu = await service.create(start + 2000, "menu")
    await service.create(start + 4000, "promo")

    viewer = service.subscribe()
    follow_task = asyncio.create_task(follow(viewer, "lobby"))

    # ============== Listing ==============
    current = await service.list_schedules()
    logger.info(f"Active: {current.active.asset_ref if current.active else None}")
    for entry in current.future:
        logger.info(f"  upcoming {entry.asset_ref} at {instant_to_human(entry.scheduled_at_ms)}")

    # ============== Reschedule ==============
    await asyncio.sleep(1)
    logger.info("Moving the lunch menu one second later")
    await service.update(menu.id, menu.scheduled_at_ms + 1000, "menu")

    # ============== Late joiner ==============
    await asyncio.sleep(2.5)
    late = service.subscribe()
    late_task = asyncio.create_task(follow(late, "late joiner"))

    await asyncio.sleep(2)

    path = await service.export_to_json()
    logger.info(f"Schedules exported to {path}")

    status = await service.status()
    logger.info(f"Status: {status.to_dict()}")

    await service.stop()
    await asyncio.gather(follow_task, late_task)
    logger.info("Demo finished")


if __name__ == "__main__":
    asyncio.run(main())
