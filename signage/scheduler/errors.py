"""Error taxonomy for the scheduling engine.

Recoverable errors (ValidationError, NotFound, DuplicateId) are returned to the
immediate caller. TimerArmFailure is retried by the timer module.
ResolutionInconsistency means the store's index and id map disagree and the
timeline has to be restarted.
"""
from typing import Any


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ValidationError(SchedulerError):
    """Malformed or missing input.

    ``errors`` maps every offending field to a message so callers can report
    all problems at once.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(f"{k}: {v}" for k, v in self.errors.items())
        super().__init__(f"Invalid schedule input ({fields})")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "validation_error",
            "fields": self.errors,
            "message": [f"{k}: {v}" for k, v in self.errors.items()],
        }


class NotFound(SchedulerError):
    """A referenced schedule entry (or asset) does not exist."""

    def __init__(self, entry_id: str, kind: str = "schedule"):
        self.entry_id = entry_id
        self.kind = kind
        super().__init__(f"{kind.capitalize()} {entry_id} not found")


class DuplicateId(SchedulerError):
    """An insert collided with a live entry id."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Schedule {entry_id} already exists")


class TimerArmFailure(SchedulerError):
    """The wake-up timer could not be armed."""

    def __init__(self, wake_at_ms: int, reason: str = ""):
        self.wake_at_ms = wake_at_ms
        self.reason = reason
        super().__init__(f"Failed to arm timer for {wake_at_ms}: {reason}")


class ResolutionInconsistency(SchedulerError):
    """The time index and the id map of the store disagree."""
