from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], date]


def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Calendar date in UTC; the default clock for period closing."""
    return now_utc().date()


def fixed_clock(day: date) -> Clock:
    """Clock that always answers `day` (tests, backfills)."""
    return lambda: day
