"""Timestamp parsing for backend and realtime payloads.

Payloads carry ISO-8601 strings (with or without a trailing Z) or epoch
numbers in seconds or milliseconds. Everything is normalized to aware
UTC datetimes so values from different channels compare safely.
"""
from datetime import datetime, timezone
from typing import Any, Optional

# Epoch values above this are milliseconds (year 2001 in ms, year 33658 in s)
_EPOCH_MS_THRESHOLD = 1e12


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a payload timestamp into an aware UTC datetime.

    Returns None for missing or unparseable values rather than raising;
    a missing time is a normal condition for realtime payloads.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parse_timestamp(parsed)
    return None


def bucket(value: Optional[datetime], seconds: float) -> Optional[int]:
    """Floor a timestamp to a bucket index used for dedup keys."""
    if value is None:
        return None
    if seconds <= 0:
        return int(value.timestamp() * 1_000_000)
    return int(value.timestamp() // seconds)
