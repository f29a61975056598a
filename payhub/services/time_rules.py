"""
Time rules and validation service.
Handles payroll months, activity ranges, and UTC/local calendar-day conversion.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

import pytz

from ..config import settings
from ..errors import InvalidMonth, ValidationError


MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
DAYS_RANGE_RE = re.compile(r"^(\d{1,4})d$")


@dataclass(frozen=True)
class MonthPeriod:
    key: str
    year: int
    month: int

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def contains(self, day: date) -> bool:
        return self.first_day <= day <= self.last_day


def parse_month(month) -> MonthPeriod:
    """
    Parse a YYYY-MM payroll month.

    Raises:
        InvalidMonth: when the value is not a string in YYYY-MM form
    """
    if not isinstance(month, str):
        raise InvalidMonth(month)
    match = MONTH_RE.match(month.strip())
    if not match:
        raise InvalidMonth(month)
    return MonthPeriod(key=month.strip(), year=int(match.group(1)), month=int(match.group(2)))


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (timezone-aware or naive)
        timezone_str: Timezone string (e.g., "Asia/Riyadh")

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str)
    return ensure_utc(utc_datetime).astimezone(tz)


def local_day(dt: datetime, timezone_str: Optional[str] = None) -> date:
    """Calendar day of an instant in the payroll timezone."""
    return utc_to_local(dt, timezone_str or settings.payroll_tz).date()


def local_midnight_utc(day: date, timezone_str: str) -> datetime:
    tz = pytz.timezone(timezone_str)
    local_dt = tz.localize(datetime.combine(day, time.min))
    return local_dt.astimezone(pytz.UTC)


def month_bounds_utc(period: MonthPeriod, timezone_str: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC bounds of a payroll month."""
    tz_name = timezone_str or settings.payroll_tz
    start = local_midnight_utc(period.first_day, tz_name)
    end = local_midnight_utc(period.last_day + timedelta(days=1), tz_name)
    return start, end


def parse_range(
    value: Optional[str],
    now: Optional[datetime] = None,
    timezone_str: Optional[str] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Parse a dashboard range into half-open UTC bounds.

    Accepted forms: "" or "all" (unbounded), "today", "<N>d" (the last N days
    including today), "YYYY-MM", and "YYYY-MM-DD,YYYY-MM-DD" (inclusive days).
    """
    if value is None or value.strip() in ("", "all"):
        return None, None

    tz_name = timezone_str or settings.payroll_tz
    raw = value.strip()
    now_utc = ensure_utc(now or datetime.now(pytz.UTC))
    today = utc_to_local(now_utc, tz_name).date()
    tomorrow = local_midnight_utc(today + timedelta(days=1), tz_name)

    if raw == "today":
        return local_midnight_utc(today, tz_name), tomorrow

    match = DAYS_RANGE_RE.match(raw)
    if match:
        days = int(match.group(1))
        if days < 1:
            raise ValidationError(f"Invalid range '{value}'")
        return local_midnight_utc(today - timedelta(days=days - 1), tz_name), tomorrow

    if MONTH_RE.match(raw):
        return month_bounds_utc(parse_month(raw), tz_name)

    if "," in raw:
        start_str, end_str = [p.strip() for p in raw.split(",", 1)]
        try:
            start_day = date.fromisoformat(start_str)
            end_day = date.fromisoformat(end_str)
        except ValueError:
            raise ValidationError(f"Invalid range '{value}'. Use YYYY-MM-DD,YYYY-MM-DD")
        if end_day < start_day:
            raise ValidationError(f"Invalid range '{value}': end before start")
        return (
            local_midnight_utc(start_day, tz_name),
            local_midnight_utc(end_day + timedelta(days=1), tz_name),
        )

    raise ValidationError(f"Invalid range '{value}'")
