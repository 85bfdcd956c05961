"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def day_key(moment: datetime) -> str:
    """Usage-counter key for the UTC day containing ``moment``."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def month_key(moment: datetime) -> str:
    """Usage-counter key for the UTC month containing ``moment``."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def next_day_start(moment: datetime) -> datetime:
    """Midnight UTC following ``moment``."""
    current = moment.astimezone(timezone.utc)
    start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return start + timedelta(days=1)


def next_month_start(moment: datetime) -> datetime:
    """First instant of the UTC month following ``moment``."""
    current = moment.astimezone(timezone.utc)
    if current.month == 12:
        return datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)
