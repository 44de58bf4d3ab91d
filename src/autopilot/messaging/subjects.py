"""NATS subject constants for autopilot."""


class Subjects:
    """NATS subject definitions shared with the session layer and the UI."""

    # Session layer (request/reply so a start gets an acknowledgement)
    SESSION_START = "autopilot.session.start"

    # Session outcomes (JetStream SESSIONS stream), one subject per session id
    SESSION_COMPLETE_ALL = "autopilot.session.*.complete"

    # Broadcasts (Core NATS)
    BROADCAST_TASK_CREATED = "autopilot.broadcast.task_created"
    BROADCAST_TASK_UPDATED = "autopilot.broadcast.task_updated"
    BROADCAST_TASK_DELETED = "autopilot.broadcast.task_deleted"
    BROADCAST_GOAL_CREATED = "autopilot.broadcast.goal_created"
    BROADCAST_GOAL_UPDATED = "autopilot.broadcast.goal_updated"
    BROADCAST_GOAL_DELETED = "autopilot.broadcast.goal_deleted"
    BROADCAST_GOAL_STATUS = "autopilot.broadcast.goal_status"
    BROADCAST_SESSION_COMPLETE = "autopilot.broadcast.session_complete"

    # API (NATS request/reply)
    API_TASKS = "autopilot.api.tasks"
    API_TASK_GET = "autopilot.api.tasks.get"
    API_TASK_CREATE = "autopilot.api.tasks.create"
    API_TASK_UPDATE = "autopilot.api.tasks.update"
    API_TASK_DELETE = "autopilot.api.tasks.delete"
    API_TASK_TOGGLE = "autopilot.api.tasks.toggle"
    API_TASK_TRIGGER = "autopilot.api.tasks.trigger"
    API_TASKS_DUE_COUNT = "autopilot.api.tasks.due-count"
    API_GOALS = "autopilot.api.goals"
    API_GOAL_GET = "autopilot.api.goals.get"
    API_GOAL_CREATE = "autopilot.api.goals.create"
    API_GOAL_UPDATE = "autopilot.api.goals.update"
    API_GOAL_DELETE = "autopilot.api.goals.delete"
    API_GOAL_PAUSE = "autopilot.api.goals.pause"
    API_GOAL_RESUME = "autopilot.api.goals.resume"
    API_GOAL_RUN = "autopilot.api.goals.run"
