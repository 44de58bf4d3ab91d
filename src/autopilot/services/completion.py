"""Fan-out of finished sessions to the goal engine and session.complete hooks."""

import logging
from collections import OrderedDict

from autopilot.models.messages import SessionOutcome
from autopilot.models.scheduled_task import HookEvent
from autopilot.services.goal_engine import GoalEngine
from autopilot.services.scheduler import HookContext, SchedulerService

logger = logging.getLogger(__name__)

ROUTED_SESSION_LIMIT = 512


class CompletionRouter:
    def __init__(
        self,
        scheduler: SchedulerService,
        goal_engine: GoalEngine,
        routed_limit: int = ROUTED_SESSION_LIMIT,
    ) -> None:
        self._scheduler = scheduler
        self._goal_engine = goal_engine
        # Recently routed session ids, oldest first. A redelivered completion
        # must not start its hook tasks a second time.
        self._routed: OrderedDict[str, None] = OrderedDict()
        self._routed_limit = routed_limit

    def _mark_routed(self, session_id: str) -> None:
        self._routed[session_id] = None
        while len(self._routed) > self._routed_limit:
            self._routed.popitem(last=False)

    async def handle(self, outcome: SessionOutcome) -> bool:
        """Process one completion. Returns True if its output should be suppressed."""
        if outcome.session_id in self._routed:
            logger.info(f"Session {outcome.session_id} already routed, skipping fan-out")
        else:
            logger.info(
                f"Session {outcome.session_id} finished with status {outcome.status.value} "
                f"(correlation={outcome.correlation_id})"
            )
            await self._goal_engine.handle_session_complete(outcome)
            self._mark_routed(outcome.session_id)
            await self._scheduler.run_hook_tasks(
                HookEvent.SESSION_COMPLETE,
                HookContext(
                    assistant_id=outcome.assistant_id,
                    status=outcome.status.value,
                    title=outcome.title,
                    correlation_id=outcome.correlation_id,
                ),
            )

        task = await self._scheduler.task_for_correlation(outcome.correlation_id)
        if task is None:
            return False
        suppressed = self._scheduler.is_trivial_output(task, outcome.last_message_text)
        if suppressed:
            logger.info(f"Suppressing trivial output from task {task.name!r}")
        return suppressed
