"""Exceptions raised by the autopilot services."""


class AutopilotError(Exception):
    """Base class for autopilot errors."""


class TaskNotFoundError(AutopilotError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Scheduled task {task_id} not found")
        self.task_id = task_id


class GoalNotFoundError(AutopilotError):
    def __init__(self, goal_id: str) -> None:
        super().__init__(f"Goal {goal_id} not found")
        self.goal_id = goal_id


class InvalidScheduleError(AutopilotError):
    """Raised when a task is created or updated with unusable schedule parameters."""


class SessionRejectedError(AutopilotError):
    """The session layer refused or failed to acknowledge a start request."""
