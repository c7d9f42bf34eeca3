from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Normalize a provider timestamp to an aware UTC datetime.

    Numbers (and numeric strings) are epoch milliseconds; other strings are ISO-8601.
    Anything unparseable, and epoch zero itself, is reported as unknown (None).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return from_epoch_millis(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return from_epoch_millis(int(text))
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def from_epoch_millis(millis: int | float) -> datetime | None:
    if millis <= 0:
        return None
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def from_mtime(seconds: float) -> datetime | None:
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def latest(*values: datetime | None) -> datetime | None:
    known = [value for value in values if value is not None]
    return max(known) if known else None


def sort_value(value: datetime | None) -> datetime:
    """Sort key that places unknown timestamps before every known one."""
    return value if value is not None else _EPOCH
