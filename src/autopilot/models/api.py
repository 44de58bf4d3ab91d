"""Request schemas for the task and goal APIs."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from autopilot.models.scheduled_task import HookEvent, IntervalUnit, ScheduleType


class ApiModel(BaseModel):
    """Accepts both snake_case and the camelCase keys used on disk and in replies."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HookFilterSchema(ApiModel):
    assistant_id: str | None = None
    title_pattern: str | None = None
    only_on_error: bool = False


# Scheduled task schemas
class TaskCreate(ApiModel):
    name: str
    prompt: str
    schedule_type: ScheduleType
    enabled: bool = True
    cwd: str | None = None
    skill_path: str | None = None
    assistant_id: str | None = None
    scheduled_time: datetime | None = None
    interval_value: float | None = None
    interval_unit: IntervalUnit | None = None
    daily_time: str | None = None
    daily_days: list[int] = []
    heartbeat_interval: float | None = None
    suppress_if_short: bool = False
    hook_event: HookEvent | None = None
    hook_filter: HookFilterSchema | None = None


class TaskUpdate(ApiModel):
    name: str | None = None
    prompt: str | None = None
    schedule_type: ScheduleType | None = None
    enabled: bool | None = None
    cwd: str | None = None
    skill_path: str | None = None
    assistant_id: str | None = None
    scheduled_time: datetime | None = None
    interval_value: float | None = None
    interval_unit: IntervalUnit | None = None
    daily_time: str | None = None
    daily_days: list[int] | None = None
    heartbeat_interval: float | None = None
    suppress_if_short: bool | None = None
    hook_event: HookEvent | None = None
    hook_filter: HookFilterSchema | None = None


# Goal schemas
class GoalCreate(ApiModel):
    name: str
    description: str
    assistant_id: str | None = None
    cwd: str | None = None
    retry_interval: float = Field(default=60, ge=0)
    max_runs: int = Field(default=10, ge=1)


class GoalUpdate(ApiModel):
    name: str | None = None
    description: str | None = None
    assistant_id: str | None = None
    cwd: str | None = None
    retry_interval: float | None = Field(default=None, ge=0)
    max_runs: int | None = Field(default=None, ge=1)
