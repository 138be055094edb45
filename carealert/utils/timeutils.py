from datetime import datetime, timezone, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from carealert.config import settings

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC value.
    Naive values (as returned by some drivers) are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def start_of_day(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> datetime:
    """Local midnight of the day containing `now`, returned in UTC"""
    tz = ZoneInfo(tz_name or settings.ALERT_TIMEZONE)
    local_now = ensure_utc(now or utc_now()).astimezone(tz)
    local_midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight.astimezone(timezone.utc)

def minutes_ago(minutes: float, now: Optional[datetime] = None) -> datetime:
    return ensure_utc(now or utc_now()) - timedelta(minutes=minutes)

def local_date(value: datetime, tz_name: Optional[str] = None) -> str:
    """ISO calendar date of `value` in the alerting timezone"""
    tz = ZoneInfo(tz_name or settings.ALERT_TIMEZONE)
    return ensure_utc(value).astimezone(tz).date().isoformat()
