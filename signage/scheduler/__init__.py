"""Scheduler module for timed display assignments.

This module provides the temporal resolution and live-transition engine:
- Ordered schedule store with O(log n) active-entry lookup
- Mutation operations with full-field validation
- Single-timer transition scheduler with safety-net re-resolution
- Viewer driver state machine for display surfaces
- SQLite persistence with JSON export
"""
# Core types
from .types import (
    ChangeKind,
    TimelineChange,
    TransitionEvent,
    SchedulerEvent,
    SchedulerStatus,
)

# Errors
from .errors import (
    SchedulerError,
    ValidationError,
    NotFound,
    DuplicateId,
    TimerArmFailure,
    ResolutionInconsistency,
)

# Models
from .models import ScheduleEntry

# Instant utilities
from .schedule import (
    now_ms,
    parse_scheduled_at,
    instant_to_human,
    instant_to_iso,
)

# Clocks
from .clock import Clock, SystemClock, SteppedClock

# Resolution
from .resolver import Resolution, resolve

# Viewer
from .viewer import ViewerDriver, ViewerState, ViewerStateKind

# Service
from .service import SchedulerService, ScheduleStore, TimerPolicy

__all__ = [
    # Core types
    "ChangeKind",
    "TimelineChange",
    "TransitionEvent",
    "SchedulerEvent",
    "SchedulerStatus",
    # Errors
    "SchedulerError",
    "ValidationError",
    "NotFound",
    "DuplicateId",
    "TimerArmFailure",
    "ResolutionInconsistency",
    # Models
    "ScheduleEntry",
    # Instant utilities
    "now_ms",
    "parse_scheduled_at",
    "instant_to_human",
    "instant_to_iso",
    # Clocks
    "Clock",
    "SystemClock",
    "SteppedClock",
    # Resolution
    "Resolution",
    "resolve",
    # Viewer
    "ViewerDriver",
    "ViewerState",
    "ViewerStateKind",
    # Service
    "SchedulerService",
    "ScheduleStore",
    "TimerPolicy",
]
