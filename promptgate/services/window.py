from __future__ import annotations

from datetime import datetime, timedelta, timezone

from promptgate.core.config import RATE_LIMIT_WINDOW_MINUTES


WINDOW_KEY_FORMAT = "%Y-%m-%dT%H:%M"


def _to_utc(now: datetime) -> datetime:
    # Treat naive timestamps as UTC so bucket keys never depend on host timezone.
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def window_start(now: datetime, window_minutes: int = RATE_LIMIT_WINDOW_MINUTES) -> datetime:
    # Floor the timestamp to the start of its fixed-width bucket.
    utc_now = _to_utc(now)
    minute = (utc_now.minute // window_minutes) * window_minutes
    return utc_now.replace(minute=minute, second=0, microsecond=0)


def window_key(now: datetime, window_minutes: int = RATE_LIMIT_WINDOW_MINUTES) -> str:
    """Map a timestamp to its bucket key, e.g. 14:37:22Z -> "YYYY-MM-DDT14:30"."""
    return window_start(now, window_minutes).strftime(WINDOW_KEY_FORMAT)


def parse_window_key(key: str) -> datetime:
    return datetime.strptime(key, WINDOW_KEY_FORMAT).replace(tzinfo=timezone.utc)


def seconds_until_window_end(
    key: str,
    now: datetime,
    window_minutes: int = RATE_LIMIT_WINDOW_MINUTES,
) -> int:
    # Used for Retry-After hints; never returns less than one second.
    end = parse_window_key(key) + timedelta(minutes=window_minutes)
    remaining = (end - _to_utc(now)).total_seconds()
    return max(1, int(remaining + 0.999))
