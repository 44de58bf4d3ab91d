"""NATS front door: task and goal APIs, session completions and UI broadcasts."""

import functools
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from autopilot.errors import AutopilotError, GoalNotFoundError, TaskNotFoundError
from autopilot.messaging import NatsConnection, Subjects, ensure_streams
from autopilot.models.api import GoalCreate, GoalUpdate, TaskCreate, TaskUpdate
from autopilot.models.goal import LongTermGoal
from autopilot.models.messages import SessionOutcome
from autopilot.models.scheduled_task import ScheduledTask
from autopilot.services.completion import CompletionRouter
from autopilot.services.goal_engine import GoalEngine
from autopilot.services.scheduler import SchedulerService

logger = logging.getLogger(__name__)

Handler = Callable[[Any, dict[str, Any]], Awaitable[dict[str, Any]]]


def _api_errors(handler: Handler) -> Handler:
    """Turn expected failures into ``{"error": ...}`` replies."""

    @functools.wraps(handler)
    async def wrapper(self: Any, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return await handler(self, data)
        except ValidationError as e:
            return {"error": f"Invalid request: {e.errors(include_url=False)}"}
        except AutopilotError as e:
            return {"error": str(e)}

    return wrapper


def _payload(data: dict[str, Any], *id_keys: str) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in id_keys}


class NatsService:
    """Serves the request/reply APIs and routes session completions.

    The connection is shared with the session runner, so starting this
    service is what makes session starts possible.
    """

    def __init__(
        self,
        conn: NatsConnection,
        scheduler: SchedulerService,
        goal_engine: GoalEngine,
        router: CompletionRouter,
    ) -> None:
        self._conn = conn
        self._scheduler = scheduler
        self._goal_engine = goal_engine
        self._router = router

    @property
    def conn(self) -> NatsConnection:
        return self._conn

    async def start(self) -> None:
        """Connect to NATS and set up all subscriptions."""
        await self._conn.connect()
        await ensure_streams(self._conn.js)
        await self._setup_subscriptions()
        self._goal_engine.set_status_listener(self.publish_goal_status)
        logger.info("NatsService started")

    async def stop(self) -> None:
        self._goal_engine.set_status_listener(None)
        await self._conn.close()
        logger.info("NatsService stopped")

    # ── Subscription setup ──────────────────────────────────────

    async def _setup_subscriptions(self) -> None:
        conn = self.conn

        # Session outcomes (JetStream, durable so restarts do not lose them)
        await conn.js_subscribe(
            Subjects.SESSION_COMPLETE_ALL,
            self._handle_session_complete,
            durable="autopilot-session-complete",
        )

        api_handlers = {
            Subjects.API_TASKS: self._api_list_tasks,
            Subjects.API_TASK_GET: self._api_get_task,
            Subjects.API_TASK_CREATE: self._api_create_task,
            Subjects.API_TASK_UPDATE: self._api_update_task,
            Subjects.API_TASK_DELETE: self._api_delete_task,
            Subjects.API_TASK_TOGGLE: self._api_toggle_task,
            Subjects.API_TASK_TRIGGER: self._api_trigger_task,
            Subjects.API_TASKS_DUE_COUNT: self._api_due_count,
            Subjects.API_GOALS: self._api_list_goals,
            Subjects.API_GOAL_GET: self._api_get_goal,
            Subjects.API_GOAL_CREATE: self._api_create_goal,
            Subjects.API_GOAL_UPDATE: self._api_update_goal,
            Subjects.API_GOAL_DELETE: self._api_delete_goal,
            Subjects.API_GOAL_PAUSE: self._api_pause_goal,
            Subjects.API_GOAL_RESUME: self._api_resume_goal,
            Subjects.API_GOAL_RUN: self._api_run_goal,
        }
        for subject, handler in api_handlers.items():
            await conn.subscribe_request(subject, handler, queue="autopilot")

        logger.info("NATS subscriptions set up")

    # ── Session completion ──────────────────────────────────────

    async def _handle_session_complete(self, data: dict[str, Any]) -> None:
        try:
            outcome = SessionOutcome.model_validate(data)
        except ValidationError as e:
            # Redelivery cannot fix a malformed event
            logger.warning(f"Dropping malformed session completion: {e}")
            return
        suppressed = await self._router.handle(outcome)
        await self.conn.publish(
            Subjects.BROADCAST_SESSION_COMPLETE,
            {
                "session_id": outcome.session_id,
                "correlation_id": outcome.correlation_id,
                "status": outcome.status.value,
                "suppressed": suppressed,
            },
        )

    async def publish_goal_status(self, goal: LongTermGoal) -> None:
        """Status listener for the goal engine."""
        await self.conn.publish(
            Subjects.BROADCAST_GOAL_STATUS,
            {"goal_id": goal.goal_id, "name": goal.name, "status": goal.status.value},
        )

    # ── Formatting ──────────────────────────────────────────────

    def _format_task(self, task: ScheduledTask) -> dict[str, Any]:
        return task.to_record()

    def _format_goal(self, goal: LongTermGoal) -> dict[str, Any]:
        return goal.to_record()

    # ── Task API ────────────────────────────────────────────────

    async def _api_list_tasks(self, data: dict[str, Any]) -> dict[str, Any]:
        tasks = await self._scheduler.list_tasks()
        return {"tasks": [self._format_task(t) for t in tasks]}

    @_api_errors
    async def _api_get_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task_id = data.get("task_id", "")
        task = await self._scheduler.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return self._format_task(task)

    @_api_errors
    async def _api_create_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task = await self._scheduler.create_task(TaskCreate.model_validate(data))
        formatted = self._format_task(task)
        await self.conn.publish(Subjects.BROADCAST_TASK_CREATED, formatted)
        return formatted

    @_api_errors
    async def _api_update_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task_id = data.get("task_id", "")
        update = TaskUpdate.model_validate(_payload(data, "task_id"))
        task = await self._scheduler.update_task(task_id, update)
        if task is None:
            raise TaskNotFoundError(task_id)
        formatted = self._format_task(task)
        await self.conn.publish(Subjects.BROADCAST_TASK_UPDATED, formatted)
        return formatted

    async def _api_delete_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task_id = data.get("task_id", "")
        success = await self._scheduler.delete_task(task_id)
        if success:
            await self.conn.publish(Subjects.BROADCAST_TASK_DELETED, {"task_id": task_id})
        return {"success": success}

    @_api_errors
    async def _api_toggle_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task_id = data.get("task_id", "")
        task = await self._scheduler.toggle_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        formatted = self._format_task(task)
        await self.conn.publish(Subjects.BROADCAST_TASK_UPDATED, formatted)
        return formatted

    @_api_errors
    async def _api_trigger_task(self, data: dict[str, Any]) -> dict[str, Any]:
        task_id = data.get("task_id", "")
        task = await self._scheduler.trigger_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return {"task_id": task.task_id, "triggered": True}

    async def _api_due_count(self, data: dict[str, Any]) -> dict[str, Any]:
        """Tasks due within the next ``window_minutes`` (default one hour)."""
        window = timedelta(minutes=float(data.get("window_minutes", 60)))
        return {"count": await self._scheduler.count_due_tasks(window)}

    # ── Goal API ────────────────────────────────────────────────

    async def _api_list_goals(self, data: dict[str, Any]) -> dict[str, Any]:
        goals = await self._goal_engine.list_goals()
        return {"goals": [self._format_goal(g) for g in goals]}

    @_api_errors
    async def _api_get_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        goal = await self._goal_engine.get_goal(goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        return self._format_goal(goal)

    @_api_errors
    async def _api_create_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a goal and start its first run right away."""
        goal = await self._goal_engine.create_goal(GoalCreate.model_validate(data))
        await self.conn.publish(Subjects.BROADCAST_GOAL_CREATED, self._format_goal(goal))
        await self._goal_engine.run_goal_now(goal.goal_id)
        goal = await self._goal_engine.get_goal(goal.goal_id) or goal
        return self._format_goal(goal)

    @_api_errors
    async def _api_update_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        update = GoalUpdate.model_validate(_payload(data, "goal_id"))
        goal = await self._goal_engine.update_goal(goal_id, update)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        formatted = self._format_goal(goal)
        await self.conn.publish(Subjects.BROADCAST_GOAL_UPDATED, formatted)
        return formatted

    async def _api_delete_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        success = await self._goal_engine.delete_goal(goal_id)
        if success:
            await self.conn.publish(Subjects.BROADCAST_GOAL_DELETED, {"goal_id": goal_id})
        return {"success": success}

    @_api_errors
    async def _api_pause_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        goal = await self._goal_engine.pause_goal(goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        return self._format_goal(goal)

    @_api_errors
    async def _api_resume_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        goal = await self._goal_engine.resume_goal(goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        return self._format_goal(goal)

    @_api_errors
    async def _api_run_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        goal_id = data.get("goal_id", "")
        if await self._goal_engine.get_goal(goal_id) is None:
            raise GoalNotFoundError(goal_id)
        triggered = await self._goal_engine.run_goal_now(goal_id)
        return {"goal_id": goal_id, "triggered": triggered}
