"""State management for the scheduler service.

Contains dependency injection and runtime state management.
"""
import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from ..clock import Clock, SystemClock

if TYPE_CHECKING:
    from ...services.asset_service import AssetCatalog

TaskFactory = Callable[[Coroutine[Any, Any, None]], asyncio.Task]


@dataclass
class SchedulerServiceDeps:
    """Dependencies for the scheduler service.

    This allows for dependency injection of external services.
    """
    assets: "AssetCatalog | None" = None
    clock: Clock = field(default_factory=SystemClock)
    # Spawns the wake-up timer task; defaults to asyncio.create_task
    task_factory: TaskFactory | None = None


@dataclass
class TimerPolicy:
    """Tuning of the transition scheduler."""
    safety_net_interval_ms: int = 30_000
    retry_attempts: int = 5
    retry_base_delay: float = 0.5
    retry_max_delay: float = 30.0

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)


@dataclass
class SchedulerServiceState:
    """Runtime state of the scheduler service."""
    running: bool = False

    # The single outstanding wake-up timer and the instant it is bound to
    timer_task: asyncio.Task | None = None
    armed_at_ms: int | None = None
    safety_task: asyncio.Task | None = None

    # Last active id pushed to viewers, and the instant it was resolved at
    last_published_id: str | None = None
    last_resolved_at_ms: int = 0

    rearm_pending: bool = False
    arm_failures: int = 0
    fault: Exception | None = None

    # Single-writer lock for the timeline
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def reset(self) -> None:
        """Reset state to initial values."""
        self.running = False
        self.timer_task = None
        self.armed_at_ms = None
        self.safety_task = None
        self.last_published_id = None
        self.rearm_pending = False
        self.arm_failures = 0
