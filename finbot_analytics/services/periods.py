"""Calendar bucket arithmetic shared by the cohort builder and retention calculator.

All functions operate on tz-aware datetimes already converted to the
analytics timezone; arithmetic is wall-clock in that zone.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
from finbot_analytics.schemas.cohort import Bucket

WINDOW_PREFIX = {
    Bucket.DAILY: "D",
    Bucket.WEEKLY: "W",
    Bucket.MONTHLY: "M",
}

ORIGIN_WINDOW = "W0"


def to_zone(ts: datetime, tz: ZoneInfo) -> datetime:
    """Convert a driver timestamp into `tz`; naive values are read as UTC"""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz)


def period_start(ts: datetime, bucket: Bucket) -> datetime:
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if bucket is Bucket.DAILY:
        return day
    if bucket is Bucket.WEEKLY:
        # ISO weeks start on Monday
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def _add_months(ts: datetime, months: int) -> datetime:
    month_index = ts.month - 1 + months
    year = ts.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month
    next_month = datetime(year + month // 12, month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return ts.replace(year=year, month=month, day=min(ts.day, last_day))


def add_periods(ts: datetime, periods: int, bucket: Bucket) -> datetime:
    if bucket is Bucket.DAILY:
        return ts + timedelta(days=periods)
    if bucket is Bucket.WEEKLY:
        return ts + timedelta(weeks=periods)
    return _add_months(ts, periods)


def cohort_key(start: datetime, bucket: Bucket) -> str:
    """Canonical label: 2025-01-15 / 2025-W03 / 2025-01"""
    if bucket is Bucket.DAILY:
        return start.strftime("%Y-%m-%d")
    if bucket is Bucket.WEEKLY:
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return start.strftime("%Y-%m")


def window_label(window: int, bucket: Bucket) -> str:
    """
    Label of the window `window` periods after the cohort period.

    The cohort's own period is always "W0", whatever the bucket, so every
    matrix shares the same origin column. Later windows carry the bucket
    prefix: D1, W1, M1, ...
    """
    if window == 0:
        return ORIGIN_WINDOW
    return f"{WINDOW_PREFIX[bucket]}{window}"
