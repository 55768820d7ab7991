"""
Business-day boundaries.

Timestamps are stored as naive UTC; reports, liquidations and settlement
periods are expressed in local calendar dates of BUSINESS_TIMEZONE.
"""
import calendar
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from orderflow.core.config import settings
from orderflow.core.exceptions import ValidationException


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.BUSINESS_TIMEZONE)


def business_today() -> date:
    return datetime.now(business_tz()).date()


def _local_midnight_utc(day: date) -> datetime:
    local = datetime.combine(day, time.min, tzinfo=business_tz())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def period_bounds_utc(start: date, end: date) -> tuple[datetime, datetime]:
    """Half-open naive-UTC range [start 00:00 local, (end + 1) 00:00 local)"""
    if start > end:
        raise ValidationException("period_start must not be after period_end", field="period_start")
    return _local_midnight_utc(start), _local_midnight_utc(end + timedelta(days=1))


def day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    return period_bounds_utc(day, day)


def month_bounds(month: str) -> tuple[date, date]:
    """'YYYY-MM' -> (first day, last day)"""
    try:
        year_s, month_s = month.split("-")
        year, month_n = int(year_s), int(month_s)
        first = date(year, month_n, 1)
    except ValueError:
        raise ValidationException("month must be formatted YYYY-MM", field="month")
    last = date(year, month_n, calendar.monthrange(year, month_n)[1])
    return first, last
