"""Timezone helpers shared by the ledger, dashboard and scheduler."""
from datetime import datetime, date, timezone, timedelta
from typing import Optional

import pytz

from perpsim.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def reporting_tz():
    return pytz.timezone(settings.REPORTING_TIMEZONE)


def reporting_day(now: Optional[datetime] = None) -> date:
    """Calendar day of `now` in the reporting timezone."""
    now = as_utc(now) or utcnow()
    return now.astimezone(reporting_tz()).date()


def reporting_day_start(now: Optional[datetime] = None) -> datetime:
    """Midnight of the current reporting day, expressed in UTC."""
    tz = reporting_tz()
    day = reporting_day(now)
    local_midnight = tz.localize(datetime(day.year, day.month, day.day))
    return local_midnight.astimezone(timezone.utc)


def millis(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)
