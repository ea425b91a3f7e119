"""
Timezone utilities for bar timestamps.

All bar timestamps are stored as UTC. Clock-time conditions ("10:30") and
calendar-day grouping (VWAP reset, previous day high/low) work on the UTC
clock, so this module is the single conversion point.
"""

from datetime import datetime, timezone

_UTC = timezone.utc


def ensure_utc(ts: datetime) -> datetime:
    """Convert a tz-aware timestamp to UTC.

    The CSV loader calls this on every parsed timestamp, so a naive
    value here means a loader skipped normalisation.

    Raises:
        ValueError: If ts carries no tzinfo.
    """
    if ts.tzinfo is None:
        raise ValueError(f"Bar timestamp {ts.isoformat()} is naive; expected tz-aware")
    return ts.astimezone(_UTC)


def as_utc(ts: datetime) -> datetime:
    """Like ensure_utc, but treats naive datetimes as UTC wall-clock time."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=_UTC)
    return ts.astimezone(_UTC)


def minutes_since_midnight(ts: datetime) -> int:
    """Minutes elapsed since 00:00 on the timestamp's own clock."""
    return ts.hour * 60 + ts.minute

