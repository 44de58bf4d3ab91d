from .assistants import AssistantConfigProvider, JsonAssistantConfigProvider
from .completion import CompletionRouter
from .goal_engine import GoalEngine
from .goal_store import GoalStore
from .nats_service import NatsService
from .scheduler import HookContext, SchedulerService
from .session_runner import NatsSessionRunner, SessionRunner
from .task_store import TaskStore

__all__ = [
    "AssistantConfigProvider",
    "JsonAssistantConfigProvider",
    "CompletionRouter",
    "GoalEngine",
    "GoalStore",
    "NatsService",
    "HookContext",
    "SchedulerService",
    "NatsSessionRunner",
    "SessionRunner",
    "TaskStore",
]
