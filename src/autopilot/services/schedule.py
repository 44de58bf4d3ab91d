"""Next-run calculation for scheduled tasks.

Everything here is pure: given a task and the current time, work out when the
task should fire next. Malformed schedule parameters never raise from the
calculator, they just yield None so the task stops firing until corrected.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Any, Iterable

from autopilot.errors import InvalidScheduleError
from autopilot.models.scheduled_task import IntervalUnit, ScheduledTask, ScheduleType
from autopilot.models.timestamps import now_local

DEFAULT_HEARTBEAT_MINUTES = 30
DAILY_SEARCH_LIMIT = 9  # Today plus eight days always finds a permitted weekday

_UNIT_STEPS = {
    IntervalUnit.MINUTES: timedelta(minutes=1),
    IntervalUnit.HOURS: timedelta(hours=1),
    IntervalUnit.DAYS: timedelta(days=1),
    IntervalUnit.WEEKS: timedelta(weeks=1),
}
# Whole-day units keep the wall-clock time across DST changes
_WALL_CLOCK_UNITS = {IntervalUnit.DAYS, IntervalUnit.WEEKS}


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def parse_daily_time(value: Any) -> tuple[int, int] | None:
    """Parse "HH:MM" into (hour, minute), or None if it is not a valid clock time."""
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour, minute


def weekday_index(moment: datetime) -> int:
    """Day of week with 0=Sunday..6=Saturday, the convention used by daily_days."""
    return (moment.weekday() + 1) % 7


def _localize(wall: datetime, reference: datetime) -> datetime:
    """Give a naive wall-clock time the zone of ``reference``.

    now_local() yields a fixed UTC offset rather than a zone. Such offsets are
    resolved again through the system zone so the result picks up its own DST
    offset. Any other tzinfo (UTC, zoneinfo) is attached as is.
    """
    tz = reference.tzinfo
    if isinstance(tz, timezone) and reference.utcoffset() == reference.astimezone().utcoffset():
        return wall.astimezone()
    return wall.replace(tzinfo=tz)


def _shift(moment: datetime, step: timedelta, wall_clock: bool) -> datetime:
    if not wall_clock:
        return moment + step
    return _localize(moment.replace(tzinfo=None) + step, moment)


def _advance(
    last_run: datetime | None, now: datetime, step: timedelta, wall_clock: bool = False
) -> datetime:
    # Never schedule in the past and never catch up on missed intervals:
    # a stale anchor restarts the cadence from now.
    candidate = _shift(last_run or now, step, wall_clock)
    if candidate <= now:
        candidate = _shift(now, step, wall_clock)
    return candidate


def _next_daily(task: ScheduledTask, now: datetime) -> datetime | None:
    clock = parse_daily_time(task.daily_time)
    if clock is None:
        return None
    allowed = set(task.daily_days) if task.daily_days else None

    # Step whole calendar days so 09:00 stays 09:00 on both sides of a DST change
    today = now.date()
    for offset in range(DAILY_SEARCH_LIMIT):
        wall = datetime.combine(today + timedelta(days=offset), time(*clock))
        candidate = _localize(wall, now)
        if candidate <= now:
            continue
        if allowed is None or weekday_index(candidate) in allowed:
            return candidate
    return None


def calculate_next_run(
    task: ScheduledTask, now: datetime | None = None
) -> datetime | None:
    """Return the next trigger instant for a task, or None if it should not fire."""
    now = now or now_local()

    if not task.enabled:
        return None

    if task.schedule_type == ScheduleType.HOOK:
        return None

    if task.schedule_type == ScheduleType.ONCE:
        if task.scheduled_time is None:
            return None
        return task.scheduled_time if task.scheduled_time > now else None

    if task.schedule_type == ScheduleType.INTERVAL:
        value = _positive_number(task.interval_value)
        unit_step = _UNIT_STEPS.get(task.interval_unit) if task.interval_unit else None
        if value is None or unit_step is None:
            return None
        return _advance(
            task.last_run, now, unit_step * value, task.interval_unit in _WALL_CLOCK_UNITS
        )

    if task.schedule_type == ScheduleType.HEARTBEAT:
        if task.heartbeat_interval is None:
            minutes = float(DEFAULT_HEARTBEAT_MINUTES)
        else:
            minutes = _positive_number(task.heartbeat_interval)
            if minutes is None:
                return None
        return _advance(task.last_run, now, timedelta(minutes=minutes))

    if task.schedule_type == ScheduleType.DAILY:
        return _next_daily(task, now)

    return None


def is_due(task: ScheduledTask, now: datetime) -> bool:
    return (
        task.enabled
        and task.schedule_type != ScheduleType.HOOK
        and task.next_run is not None
        and task.next_run <= now
    )


def count_due_within(
    tasks: Iterable[ScheduledTask],
    now: datetime,
    window: timedelta = timedelta(hours=1),
) -> int:
    """Count enabled tasks due before now + window, overdue ones included."""
    return sum(
        1
        for task in tasks
        if task.enabled and task.next_run is not None and task.next_run - now < window
    )


def validate_schedule(task: ScheduledTask) -> None:
    """Reject schedules that could never fire. Used on create/update only."""
    kind = task.schedule_type
    if kind == ScheduleType.ONCE and task.scheduled_time is None:
        raise InvalidScheduleError("once tasks need scheduled_time")
    if kind == ScheduleType.INTERVAL:
        if _positive_number(task.interval_value) is None or task.interval_unit is None:
            raise InvalidScheduleError(
                "interval tasks need a positive interval_value and an interval_unit"
            )
    if kind == ScheduleType.DAILY:
        if parse_daily_time(task.daily_time) is None:
            raise InvalidScheduleError("daily tasks need daily_time as HH:MM")
        if any(day not in range(7) for day in task.daily_days):
            raise InvalidScheduleError("daily_days must be within 0 (Sunday) .. 6")
    if kind == ScheduleType.HEARTBEAT and task.heartbeat_interval is not None:
        if _positive_number(task.heartbeat_interval) is None:
            raise InvalidScheduleError("heartbeat_interval must be positive minutes")
    if kind == ScheduleType.HOOK and task.hook_event is None:
        raise InvalidScheduleError("hook tasks need a hook_event")
