"""Scheduled task model for deferred, recurring and event-driven sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from autopilot.models.timestamps import format_timestamp, now_local, parse_timestamp


class ScheduleType(str, Enum):
    ONCE = "once"
    INTERVAL = "interval"
    DAILY = "daily"
    HEARTBEAT = "heartbeat"
    HOOK = "hook"


class IntervalUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


class HookEvent(str, Enum):
    STARTUP = "startup"
    SESSION_COMPLETE = "session.complete"


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value) if value is not None else None
    except ValueError:
        return None


@dataclass
class HookFilter:
    """Optional conditions a hook task's triggering event must satisfy."""

    assistant_id: str | None = None
    title_pattern: str | None = None  # Regex searched in the completed session title
    only_on_error: bool = False

    def to_record(self) -> dict[str, Any]:
        return {
            "assistantId": self.assistant_id,
            "titlePattern": self.title_pattern,
            "onlyOnError": self.only_on_error,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any] | None) -> "HookFilter | None":
        if not isinstance(data, dict):
            return None
        return cls(
            assistant_id=data.get("assistantId"),
            title_pattern=data.get("titlePattern"),
            only_on_error=bool(data.get("onlyOnError", False)),
        )


@dataclass
class ScheduledTask:
    """A unit of deferred or recurring work that starts an AI session."""

    task_id: str
    name: str
    prompt: str
    schedule_type: ScheduleType
    enabled: bool = True
    cwd: str | None = None
    skill_path: str | None = None
    assistant_id: str | None = None
    # once
    scheduled_time: datetime | None = None
    # interval
    interval_value: float | None = None
    interval_unit: IntervalUnit | None = None
    # daily: "HH:MM" plus weekdays, 0=Sunday..6=Saturday, empty means every day
    daily_time: str | None = None
    daily_days: list[int] = field(default_factory=list)
    # heartbeat
    heartbeat_interval: float | None = None  # Minutes, defaults to 30
    suppress_if_short: bool = False
    # hook
    hook_event: HookEvent | None = None
    hook_filter: HookFilter | None = None
    last_run: datetime | None = None
    next_run: datetime | None = None
    created_at: datetime = field(default_factory=now_local)
    updated_at: datetime = field(default_factory=now_local)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the camelCase layout of scheduled-tasks.json."""
        return {
            "id": self.task_id,
            "name": self.name,
            "enabled": self.enabled,
            "prompt": self.prompt,
            "cwd": self.cwd,
            "skillPath": self.skill_path,
            "assistantId": self.assistant_id,
            "scheduleType": self.schedule_type.value,
            "scheduledTime": format_timestamp(self.scheduled_time),
            "intervalValue": self.interval_value,
            "intervalUnit": self.interval_unit.value if self.interval_unit else None,
            "dailyTime": self.daily_time,
            "dailyDays": list(self.daily_days),
            "heartbeatInterval": self.heartbeat_interval,
            "suppressIfShort": self.suppress_if_short,
            "hookEvent": self.hook_event.value if self.hook_event else None,
            "hookFilter": self.hook_filter.to_record() if self.hook_filter else None,
            "lastRun": format_timestamp(self.last_run),
            "nextRun": format_timestamp(self.next_run),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "ScheduledTask":
        """Build a task from a stored record.

        Unknown unit/event values become None so a malformed schedule simply
        never fires. An unknown schedule type raises ValueError and the store
        skips that record.
        """
        schedule_type = _enum_or_none(ScheduleType, data.get("scheduleType"))
        if schedule_type is None:
            raise ValueError(f"Unknown schedule type: {data.get('scheduleType')!r}")
        return cls(
            task_id=data["id"],
            name=data.get("name", ""),
            prompt=data.get("prompt", ""),
            schedule_type=schedule_type,
            enabled=bool(data.get("enabled", True)),
            cwd=data.get("cwd"),
            skill_path=data.get("skillPath"),
            assistant_id=data.get("assistantId"),
            scheduled_time=parse_timestamp(data.get("scheduledTime")),
            interval_value=data.get("intervalValue"),
            interval_unit=_enum_or_none(IntervalUnit, data.get("intervalUnit")),
            daily_time=data.get("dailyTime"),
            daily_days=list(data.get("dailyDays") or []),
            heartbeat_interval=data.get("heartbeatInterval"),
            suppress_if_short=bool(data.get("suppressIfShort", False)),
            hook_event=_enum_or_none(HookEvent, data.get("hookEvent")),
            hook_filter=HookFilter.from_record(data.get("hookFilter")),
            last_run=parse_timestamp(data.get("lastRun")),
            next_run=parse_timestamp(data.get("nextRun")),
            created_at=parse_timestamp(data.get("createdAt")) or now_local(),
            updated_at=parse_timestamp(data.get("updatedAt")) or now_local(),
        )
