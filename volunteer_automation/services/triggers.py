"""
Trigger evaluation: when does a workflow fire?

Time triggers compute their next fire instant with croniter, re-derived after
every firing because month lengths and weekday arithmetic are not fixed
intervals. Event triggers match on event name plus strict field equality.
Condition triggers are polled; a non-zero row count means fire.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timezone, tzinfo
from typing import Any

from croniter import croniter
from sqlalchemy.orm import Session

from volunteer_automation.config import settings
from volunteer_automation.schemas.workflow import (
    ConditionTrigger,
    EventTrigger,
    TimeTrigger,
    TimeTriggerConfig,
)
from volunteer_automation.services.storage import count_rows

# Days present in every month; beyond this monthly triggers clamp.
_SAFE_MONTH_DAY = 28


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cron_expression(config: TimeTriggerConfig) -> str:
    minute, hour = config.minute, config.hour
    if config.frequency == "daily":
        return f"{minute} {hour} * * *"
    if config.frequency == "weekly":
        # cron and the trigger both number Sunday as 0.
        return f"{minute} {hour} * * {config.day_of_week}"
    if config.day_of_month <= _SAFE_MONTH_DAY:
        return f"{minute} {hour} {config.day_of_month} * *"
    return f"{minute} {hour} {_SAFE_MONTH_DAY}-31 * *"


def next_run_time(
    trigger: TimeTrigger | TimeTriggerConfig,
    now: datetime,
    tz: tzinfo | None = None,
) -> datetime:
    """Return the first fire instant strictly after ``now``, in UTC.

    ``time`` is wall-clock time in ``tz`` (``WORKFLOW_TIMEZONE`` by default).
    A monthly ``dayOfMonth`` past the end of a month fires on that month's
    last day instead, so a monthly trigger fires exactly once per month.
    """
    config = trigger.config if isinstance(trigger, TimeTrigger) else trigger
    zone = tz or settings.tz
    local_now = ensure_aware(now).astimezone(zone)

    itr = croniter(cron_expression(config), local_now)
    clamp = config.frequency == "monthly" and config.day_of_month > _SAFE_MONTH_DAY
    while True:
        candidate: datetime = itr.get_next(datetime)
        if candidate <= local_now:
            continue
        if clamp:
            last_day = calendar.monthrange(candidate.year, candidate.month)[1]
            if candidate.day != min(config.day_of_month, last_day):
                continue
        return candidate.astimezone(timezone.utc)


def _strict_equal(actual: Any, expected: Any) -> bool:
    # Keep True from matching 1.
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual is expected
    return actual == expected


_MISSING = object()


def event_matches(trigger: EventTrigger, event_name: str, payload: dict[str, Any] | None) -> bool:
    """True when the event name matches and every condition equals the payload field.

    Only exact equality is supported; there is no wildcard or partial matching.
    """
    if trigger.config.event != event_name:
        return False
    data = payload or {}
    for key, expected in trigger.config.conditions.items():
        actual = data.get(key, _MISSING)
        if actual is _MISSING or not _strict_equal(actual, expected):
            return False
    return True


def condition_met(db: Session, trigger: ConditionTrigger) -> bool:
    query = trigger.config.query
    return count_rows(db, query.table, query.conditions) > 0
