"""Scheduler service package.

This package contains the core scheduler service components:
- state.py: State management and dependencies
- store.py: In-memory ordered schedule store
- repository.py: SQLite persistence layer and JSON export
- ops.py: Mutation operations (create, update, delete)
- timer.py: Wake-up timer and safety net
- events.py: Event system and viewer broadcast
"""
from .service import SchedulerService
from .state import TimerPolicy
from .store import ScheduleStore

__all__ = ["SchedulerService", "ScheduleStore", "TimerPolicy"]
