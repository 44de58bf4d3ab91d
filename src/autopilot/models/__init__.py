from .api import (
    GoalCreate,
    GoalUpdate,
    HookFilterSchema,
    TaskCreate,
    TaskUpdate,
)
from .assistant import AssistantConfig, AssistantsConfig
from .goal import GoalProgressEntry, GoalStatus, LongTermGoal
from .messages import SessionOutcome, SessionRequest, SessionStatus
from .scheduled_task import (
    HookEvent,
    HookFilter,
    IntervalUnit,
    ScheduledTask,
    ScheduleType,
)

__all__ = [
    # API schemas
    "GoalCreate",
    "GoalUpdate",
    "HookFilterSchema",
    "TaskCreate",
    "TaskUpdate",
    # Session messages
    "SessionOutcome",
    "SessionRequest",
    "SessionStatus",
    # Domain models
    "AssistantConfig",
    "AssistantsConfig",
    "GoalProgressEntry",
    "GoalStatus",
    "HookEvent",
    "HookFilter",
    "IntervalUnit",
    "LongTermGoal",
    "ScheduledTask",
    "ScheduleType",
]
