from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Union

from .periods import (
    ONE_DAY,
    ensure_utc,
    epoch_week_index,
    js_weekday,
    local_day,
    month_index,
    month_start,
    next_month_start,
    week_start,
)

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "monthly")


def _int_list(values: Any, low: int, high: int) -> List[int]:
    if not isinstance(values, (list, tuple)):
        return []
    result: List[int] = []
    for value in values:
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if low <= number <= high and number not in result:
            result.append(number)
    return result


def _read(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


@dataclass(frozen=True)
class RecurringPattern:
    frequency: str
    interval: int
    days_of_week: List[int] = field(default_factory=list)
    day_of_month: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> Optional["RecurringPattern"]:
        if not raw:
            return None
        frequency = _read(raw, "frequency")
        try:
            interval = int(_read(raw, "interval"))
        except (TypeError, ValueError):
            return None
        if frequency not in FREQUENCIES or interval < 1:
            return None
        day_of_month = _read(raw, "day_of_month", "dayOfMonth")
        try:
            day_of_month = int(day_of_month) if day_of_month is not None else None
        except (TypeError, ValueError):
            day_of_month = None
        return cls(
            frequency=frequency,
            interval=interval,
            days_of_week=_int_list(_read(raw, "days_of_week", "daysOfWeek"), 0, 6),
            day_of_month=day_of_month,
        )


@dataclass(frozen=True)
class CustomRecurrence:
    type: str
    days_of_week: List[int] = field(default_factory=list)
    days_of_month: List[int] = field(default_factory=list)
    recurring: bool = True

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> Optional["CustomRecurrence"]:
        if not raw:
            return None
        kind = _read(raw, "type")
        if kind not in ("daysOfWeek", "daysOfMonth"):
            return None
        return cls(
            type=kind,
            days_of_week=_int_list(_read(raw, "days_of_week", "daysOfWeek"), 0, 6),
            days_of_month=_int_list(_read(raw, "days_of_month", "daysOfMonth"), 1, 31),
            recurring=bool(_read(raw, "recurring")),
        )

    @property
    def selected_days(self) -> List[int]:
        return self.days_of_week if self.type == "daysOfWeek" else self.days_of_month


RecurrenceConfig = Union[RecurringPattern, CustomRecurrence, None]


@dataclass(frozen=True)
class ResetCheck:
    should_reset: bool
    reason: str
    next_reset_date: Optional[dt.date] = None


def config_for(kind: str, recurring_pattern: Optional[Mapping[str, Any]], custom_recurrence: Optional[Mapping[str, Any]]) -> RecurrenceConfig:
    if kind == "recurring":
        return RecurringPattern.from_raw(recurring_pattern)
    if kind == "custom":
        return CustomRecurrence.from_raw(custom_recurrence)
    return None


def should_reset(
    kind: str,
    last_completed_at: Optional[dt.datetime],
    config: RecurrenceConfig,
    now: dt.datetime,
    tz: dt.tzinfo,
) -> ResetCheck:
    """Decide whether a completed task is due for reset at ``now``."""
    if last_completed_at is None:
        return ResetCheck(False, "Task has never been completed")
    if kind == "one-time":
        return ResetCheck(False, "One-time tasks do not reset")

    today = local_day(now, tz)
    last_day = local_day(last_completed_at, tz)

    if kind == "daily":
        if today > last_day:
            return ResetCheck(True, "New day since last completion", today)
        return ResetCheck(False, "Already completed today", today + ONE_DAY)

    if kind == "weekly":
        current_week = week_start(today)
        if current_week > week_start(last_day):
            return ResetCheck(True, "New week since last completion", current_week)
        return ResetCheck(False, "Already completed this week", current_week + dt.timedelta(days=7))

    if kind == "monthly":
        current_month = month_start(today)
        if current_month > month_start(last_day):
            return ResetCheck(True, "New month since last completion", current_month)
        return ResetCheck(False, "Already completed this month", next_month_start(today))

    if kind == "recurring":
        if not isinstance(config, RecurringPattern):
            logger.debug("Skipping reset, invalid recurring pattern: %r", config)
            return ResetCheck(False, "Invalid recurring pattern")
        return _check_recurring(config, last_completed_at, now, today, last_day)

    if kind == "custom":
        if not isinstance(config, CustomRecurrence) or not config.selected_days:
            logger.debug("Skipping reset, invalid custom recurrence: %r", config)
            return ResetCheck(False, "Invalid custom recurrence")
        return _check_custom(config, today, last_day)

    return ResetCheck(False, f"Unknown task kind: {kind}")


def _check_recurring(
    pattern: RecurringPattern,
    last_completed_at: dt.datetime,
    now: dt.datetime,
    today: dt.date,
    last_day: dt.date,
) -> ResetCheck:
    elapsed = ensure_utc(now) - ensure_utc(last_completed_at)
    days_since = elapsed // ONE_DAY

    if pattern.frequency == "daily":
        if days_since >= pattern.interval:
            return ResetCheck(True, f"{days_since} days since last completion", today)
        return ResetCheck(False, "Interval not reached", last_day + dt.timedelta(days=pattern.interval))

    if pattern.frequency == "weekly":
        weeks_since = days_since // 7
        if weeks_since < pattern.interval:
            return ResetCheck(False, "Interval not reached", last_day + dt.timedelta(weeks=pattern.interval))
        if pattern.days_of_week and js_weekday(today) not in pattern.days_of_week:
            return ResetCheck(False, "Not a scheduled weekday")
        return ResetCheck(True, f"{weeks_since} weeks since last completion", today)

    months_since = month_index(today) - month_index(last_day)
    if months_since < pattern.interval:
        return ResetCheck(False, "Interval not reached")
    if pattern.day_of_month and today.day < pattern.day_of_month:
        return ResetCheck(False, "Scheduled day of month not reached")
    return ResetCheck(True, f"{months_since} months since last completion", today)


def _check_custom(config: CustomRecurrence, today: dt.date, last_day: dt.date) -> ResetCheck:
    if today <= last_day:
        return ResetCheck(False, "Already handled today")

    if config.type == "daysOfWeek":
        if js_weekday(today) not in config.days_of_week:
            return ResetCheck(False, "Not a scheduled weekday")
        if config.recurring or epoch_week_index(today) > epoch_week_index(last_day):
            return ResetCheck(True, "Scheduled weekday reached", today)
        return ResetCheck(False, "Already matched this week")

    if today.day not in config.days_of_month:
        return ResetCheck(False, "Not a scheduled day of month")
    return ResetCheck(True, "Scheduled day of month reached", today)
