"""Instant utilities.

Everything inside the engine is expressed as UTC epoch milliseconds. These
helpers convert user input into that form and back into display strings.
"""
import time
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def _zone(tz_name: str | None):
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


# One day inside the datetime limits so any display zone can still render the instant
MIN_INSTANT_MS = int(datetime(1, 1, 2, tzinfo=timezone.utc).timestamp() * 1000)
MAX_INSTANT_MS = int(datetime(9999, 12, 30, tzinfo=timezone.utc).timestamp() * 1000)


def _in_range(instant_ms: int) -> int:
    if not MIN_INSTANT_MS <= instant_ms <= MAX_INSTANT_MS:
        raise ValueError("out of range")
    return instant_ms


def parse_scheduled_at(value: Any, tz_name: str = "UTC") -> int:
    """Parse a user supplied instant into epoch milliseconds.

    Accepts epoch milliseconds (int/float or digit strings), ISO-8601 strings
    and ``datetime`` objects. Naive datetimes are interpreted in ``tz_name``.

    Raises:
        ValueError: if the value is missing, not parseable or outside
            the years 1 to 9999
    """
    if value is None or value == "":
        raise ValueError("is required")

    if isinstance(value, bool):
        raise ValueError("must be a timestamp or ISO-8601 datetime")

    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError("must be a finite timestamp")
        return _in_range(int(value))

    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return _in_range(int(text))
        # fromisoformat on older interpreters rejects the "Z" suffix
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"cannot parse datetime '{value}'") from None

    if isinstance(value, datetime):
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            value = value.replace(tzinfo=_zone(tz_name))
        try:
            return _in_range(int(value.timestamp() * 1000))
        except OverflowError:
            raise ValueError("out of range") from None

    raise ValueError("must be a timestamp or ISO-8601 datetime")


def instant_to_datetime(instant_ms: int, tz_name: str = "UTC") -> datetime:
    return datetime.fromtimestamp(instant_ms / 1000, tz=_zone(tz_name))


def instant_to_iso(instant_ms: int) -> str:
    return instant_to_datetime(instant_ms).isoformat()


def instant_to_human(instant_ms: int, tz_name: str = "UTC", short: bool = False) -> str:
    """Render an instant for display.

    Long form: ``Mon, Jan 5, 2026 9:30 AM UTC``; short form: ``Mon, Jan 5 09:30``.
    """
    dt = instant_to_datetime(instant_ms, tz_name)
    if short:
        return f"{dt:%a, %b} {dt.day} {dt:%H:%M}"
    hour = dt.hour % 12 or 12
    return f"{dt:%a, %b} {dt.day}, {dt.year} {hour}:{dt:%M %p %Z}".rstrip()
