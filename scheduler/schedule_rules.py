import logging
from datetime import datetime
from typing import Optional

import pytz
from croniter import croniter
from pydantic import ValidationError

from exceptions import DefinitionError
from models.workflow import ScheduleConfig, ScheduleType, WorkflowDefinition
from utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger("workflow_engine")

WEEKDAYS = {
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
}
SCHEDULE_SETTING_KEYS = ("schedule_type", "schedule_value", "schedule_time", "schedule_day", "cron_expression", "timezone")


def schedule_for(definition: WorkflowDefinition) -> Optional[ScheduleConfig]:
    """
    Returns the definition's schedule. Falls back to schedule_* keys
    placed directly in trigger settings. None when no schedule is set.
    """
    trigger = definition.trigger_conditions
    if trigger.schedule is not None:
        return trigger.schedule

    settings = trigger.settings or {}
    if not settings.get("schedule_type"):
        return None
    raw = {key: settings[key] for key in SCHEDULE_SETTING_KEYS if settings.get(key) is not None}
    try:
        return ScheduleConfig.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"Workflow {definition.id} has an invalid schedule: {e}")


def _hour_minute(schedule_time: Optional[str]):
    if not schedule_time:
        return 0, 0
    try:
        hour, minute = str(schedule_time).split(":")[:2]
        hour, minute = int(hour), int(minute)
    except ValueError:
        raise DefinitionError(f"Invalid schedule_time '{schedule_time}', expected HH:MM")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise DefinitionError(f"Invalid schedule_time '{schedule_time}', expected HH:MM")
    return hour, minute


def cron_expression_for(schedule: ScheduleConfig) -> str:
    """Expresses a daily / weekly / monthly anchor as a cron expression."""
    if schedule.schedule_type == ScheduleType.CRON:
        if not schedule.cron_expression or not croniter.is_valid(schedule.cron_expression):
            raise DefinitionError(f"Invalid cron expression: {schedule.cron_expression!r}")
        return schedule.cron_expression

    hour, minute = _hour_minute(schedule.schedule_time)

    if schedule.schedule_type == ScheduleType.DAILY:
        return f"{minute} {hour} * * *"

    if schedule.schedule_type == ScheduleType.WEEKLY:
        day = WEEKDAYS.get(str(schedule.schedule_day or "monday").strip().lower())
        if day is None:
            raise DefinitionError(f"Invalid schedule_day '{schedule.schedule_day}'")
        return f"{minute} {hour} * * {day}"

    if schedule.schedule_type == ScheduleType.MONTHLY:
        day_of_month = int(schedule.schedule_value or 1)
        if not 1 <= day_of_month <= 31:
            raise DefinitionError(f"Invalid day of month {schedule.schedule_value}")
        return f"{minute} {hour} {day_of_month} * *"

    raise DefinitionError(f"Schedule type {schedule.schedule_type.value} has no cron form")


def most_recent_run(schedule: ScheduleConfig, now: datetime) -> datetime:
    """Latest scheduled instant at or before `now`, in UTC."""
    try:
        tz = pytz.timezone(schedule.timezone or "UTC")
    except pytz.UnknownTimeZoneError:
        raise DefinitionError(f"Unknown timezone '{schedule.timezone}'")

    now_local = ensure_utc(now).astimezone(tz)
    cron = croniter(cron_expression_for(schedule), now_local)
    previous = cron.get_prev(datetime)
    return previous.astimezone(pytz.utc)


def is_due(schedule: Optional[ScheduleConfig], last_triggered: Optional[datetime], now: datetime = None) -> bool:
    """
    interval: at least schedule_value minutes since last_triggered.
    daily / weekly / monthly / cron: the most recent scheduled instant is
    later than last_triggered. Never-triggered workflows are due.
    """
    if schedule is None:
        return False
    now = ensure_utc(now or utcnow())
    last = ensure_utc(last_triggered) if last_triggered else None

    if schedule.schedule_type == ScheduleType.INTERVAL:
        if not schedule.schedule_value or schedule.schedule_value <= 0:
            raise DefinitionError("Interval schedules require a positive schedule_value (minutes)")
        if last is None:
            return True
        elapsed_minutes = (now - last).total_seconds() / 60.0
        return elapsed_minutes >= schedule.schedule_value

    previous = most_recent_run(schedule, now)
    if last is None:
        return True
    return previous > last
