"""Calendar helpers for business-day semantics.

Every function receives the instant and timezone explicitly; nothing here reads a clock.
"""
from __future__ import annotations

import datetime as dt
import math
import re
from typing import Iterator, Optional, Tuple

UTC = dt.timezone.utc
ONE_DAY = dt.timedelta(days=1)
END_OF_DAY = dt.time(23, 59, 59, 999999)
EPOCH_DAY = dt.date(1970, 1, 1)

_HHMM_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_local(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    return ensure_utc(value).astimezone(tz)


def local_day(value: dt.datetime, tz: dt.tzinfo) -> dt.date:
    return to_local(value, tz).date()


def local_midnight(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=tz)


def day_bounds(day: dt.date, tz: dt.tzinfo) -> Tuple[dt.datetime, dt.datetime]:
    start = local_midnight(day, tz).astimezone(UTC)
    end = local_midnight(day + ONE_DAY, tz).astimezone(UTC)
    return start, end


def week_start(day: dt.date) -> dt.date:
    """Sunday on or before ``day``."""
    return day - dt.timedelta(days=js_weekday(day))


def month_start(day: dt.date) -> dt.date:
    return day.replace(day=1)


def next_month_start(day: dt.date) -> dt.date:
    if day.month == 12:
        return dt.date(day.year + 1, 1, 1)
    return dt.date(day.year, day.month + 1, 1)


def js_weekday(day: dt.date) -> int:
    """Weekday number with Sunday = 0 ... Saturday = 6."""
    return (day.weekday() + 1) % 7


def epoch_week_index(day: dt.date) -> int:
    return (day - EPOCH_DAY).days // 7


def month_index(day: dt.date) -> int:
    return day.year * 12 + (day.month - 1)


def parse_hhmm(value: Optional[str]) -> Optional[dt.time]:
    if not value:
        return None
    match = _HHMM_RE.match(str(value))
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return dt.time(hour, minute)


def deadline_instant(day: Optional[dt.date], time_text: Optional[str], tz: dt.tzinfo) -> Optional[dt.datetime]:
    """Absolute UTC instant for a local date plus optional "HH:MM"; end of day when no time is set."""
    if day is None:
        return None
    if time_text:
        parsed = parse_hhmm(time_text)
        if parsed is None:
            return None
    else:
        parsed = END_OF_DAY
    return dt.datetime.combine(day, parsed, tzinfo=tz).astimezone(UTC)


def iter_days(start_day: dt.date, end_day: dt.date) -> Iterator[dt.date]:
    current = start_day
    while current <= end_day:
        yield current
        current += ONE_DAY


def period_bounds(period: str, now: dt.datetime, tz: dt.tzinfo) -> Tuple[dt.date, dt.date]:
    today = local_day(now, tz)
    if period == "weekly":
        return week_start(today), today
    # daily reporting still covers the running month
    return month_start(today), today


def days_elapsed(start_day: dt.date, now: dt.datetime, tz: dt.tzinfo) -> int:
    delta = ensure_utc(now) - local_midnight(start_day, tz)
    return max(0, math.ceil(delta.total_seconds() / ONE_DAY.total_seconds()))


def months_between(start_day: Optional[dt.date], today: dt.date) -> int:
    if start_day is None:
        return 0
    return max(0, (today - start_day).days // 30)