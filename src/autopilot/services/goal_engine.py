"""Goal execution engine: runs long-term goals until they finish or give up.

State machine per goal::

    active -> completed   model declared the goal done (terminal)
    active -> abandoned   max_runs reached without completion (terminal)
    active -> paused      consecutive error threshold reached, or by the user
    paused -> active      explicit resume only

Every run is counted at trigger time, so a crash between trigger and
completion can never loop a goal forever. The next run is either fired on
the next loop iteration (retry_interval 0) or after retry_interval minutes,
and its due time is persisted so it survives restarts.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from autopilot.models.api import GoalCreate, GoalUpdate
from autopilot.models.goal import GoalProgressEntry, GoalStatus, LongTermGoal
from autopilot.models.messages import SessionOutcome
from autopilot.models.timestamps import now_local
from autopilot.services.assistants import AssistantConfigProvider, resolve_assistant
from autopilot.services.goal_prompt import (
    build_goal_prompt,
    goal_session_title,
    parse_goal_output,
    parse_goal_session_title,
)
from autopilot.services.goal_store import GoalStore
from autopilot.services.session_runner import SessionRunner, build_session_request

logger = logging.getLogger(__name__)

GOAL_CORRELATION_PREFIX = "goal:"

StatusListener = Callable[[LongTermGoal], Awaitable[None]]


def goal_correlation_id(goal_id: str, run_number: int) -> str:
    return f"{GOAL_CORRELATION_PREFIX}{goal_id}:{run_number}"


def parse_goal_correlation_id(correlation_id: str | None) -> tuple[str, int] | None:
    if not correlation_id or not correlation_id.startswith(GOAL_CORRELATION_PREFIX):
        return None
    goal_id, _, run = correlation_id[len(GOAL_CORRELATION_PREFIX):].rpartition(":")
    if not goal_id or not run.isdigit():
        return None
    return goal_id, int(run)


class GoalEngine:
    """Triggers goal runs, interprets their outcomes and schedules the next one.

    The engine owns one pending timer per goal id. Arming a timer always
    replaces the previous one for that goal, and pausing or deleting a goal
    cancels it, so a goal never has two runs queued.
    """

    def __init__(
        self,
        store: GoalStore,
        session_runner: SessionRunner,
        assistants: AssistantConfigProvider,
        history_limit: int = 8,
        max_consecutive_errors: int = 3,
        status_listener: StatusListener | None = None,
    ) -> None:
        self._store = store
        self._runner = session_runner
        self._assistants = assistants
        self._history_limit = history_limit
        self._max_consecutive_errors = max_consecutive_errors
        self._status_listener = status_listener
        self._timers: dict[str, asyncio.Task[None]] = {}

    def set_status_listener(self, listener: StatusListener | None) -> None:
        self._status_listener = listener

    # ── Timer registry ──────────────────────────────────────────

    def has_pending_run(self, goal_id: str) -> bool:
        timer = self._timers.get(goal_id)
        return timer is not None and not timer.done()

    def _arm_timer(self, goal_id: str, delay_seconds: float) -> None:
        self._cancel_timer(goal_id)
        self._timers[goal_id] = asyncio.create_task(
            self._fire_after(goal_id, max(0.0, delay_seconds))
        )

    def _cancel_timer(self, goal_id: str) -> bool:
        timer = self._timers.pop(goal_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    async def _fire_after(self, goal_id: str, delay_seconds: float) -> None:
        try:
            await asyncio.sleep(delay_seconds)
        except asyncio.CancelledError:
            return
        # Leave the registry before triggering so a delete during the start
        # request cannot cancel the request half way.
        if self._timers.get(goal_id) is asyncio.current_task():
            del self._timers[goal_id]
        try:
            await self.trigger_run(goal_id)
        except Exception:
            logger.exception(f"Scheduled run for goal {goal_id} failed")

    async def _schedule_next_run(self, goal: LongTermGoal, delay_seconds: float) -> None:
        next_run_at = now_local() + timedelta(seconds=delay_seconds)
        await self._store.update(goal.goal_id, next_run_at=next_run_at)
        self._arm_timer(goal.goal_id, delay_seconds)
        logger.info(f"Goal {goal.name!r} next run scheduled at {next_run_at.isoformat()}")

    async def stop(self) -> None:
        """Cancel every pending timer. Persisted next_run_at values stay for resume."""
        timers = list(self._timers.values())
        for goal_id in list(self._timers):
            self._cancel_timer(goal_id)
        await asyncio.gather(*timers, return_exceptions=True)

    # ── Triggering ──────────────────────────────────────────────

    async def trigger_run(self, goal_id: str) -> bool:
        """Start the next run of an active goal. Returns False if it was skipped."""
        goal = await self._store.begin_run(goal_id)
        if goal is None:
            current = await self._store.get(goal_id)
            logger.info(
                f"Skipping run for goal {goal_id}: status is "
                f"{current.status.value if current else 'deleted'}"
            )
            return False

        run_number = goal.total_runs
        assistant = resolve_assistant(self._assistants.load(), goal.assistant_id)
        request = build_session_request(
            title=goal_session_title(goal.name, run_number),
            prompt=build_goal_prompt(goal, self._history_limit),
            correlation_id=goal_correlation_id(goal.goal_id, run_number),
            assistant=assistant,
            cwd=goal.cwd,
        )
        logger.info(f"Starting run {run_number}/{goal.max_runs} of goal {goal.name!r}")
        try:
            await self._runner.start_session(request)
        except Exception as e:
            logger.error(f"Failed to start session for goal {goal.name!r}: {e}")
        return True

    async def run_goal_now(self, goal_id: str) -> bool:
        """Run immediately, replacing any pending timer."""
        self._cancel_timer(goal_id)
        return await self.trigger_run(goal_id)

    # ── Completion handling ─────────────────────────────────────

    async def _goal_for_outcome(self, outcome: SessionOutcome) -> LongTermGoal | None:
        correlated = parse_goal_correlation_id(outcome.correlation_id)
        if correlated is not None:
            return await self._store.get(correlated[0])

        # Session layers that do not echo correlation ids still keep our title
        titled = parse_goal_session_title(outcome.title)
        if titled is None:
            return None
        name = titled[0]
        for goal in await self._store.list_all():
            if goal.name == name and goal.status in (GoalStatus.ACTIVE, GoalStatus.PAUSED):
                return goal
        return None

    async def handle_session_complete(self, outcome: SessionOutcome) -> LongTermGoal | None:
        """Record a finished run and decide what happens next.

        Returns the updated goal, or None if the outcome does not belong to
        a goal that is still running.
        """
        goal = await self._goal_for_outcome(outcome)
        if goal is None:
            return None
        if goal.status not in (GoalStatus.ACTIVE, GoalStatus.PAUSED):
            logger.info(
                f"Ignoring completion for goal {goal.name!r} in status {goal.status.value}"
            )
            return None
        if any(entry.session_id == outcome.session_id for entry in goal.progress_log):
            logger.info(f"Session {outcome.session_id} already recorded for goal {goal.name!r}")
            return None

        now = now_local()
        parsed = parse_goal_output(outcome.last_message_text)
        entry = GoalProgressEntry(
            session_id=outcome.session_id,
            run_at=now,
            summary=parsed.summary or ("Run failed" if outcome.is_error else "(no summary)"),
            is_complete=parsed.is_complete,
            next_steps=parsed.next_steps,
        )

        if parsed.is_complete:
            return await self._finish(
                goal,
                entry,
                status=GoalStatus.COMPLETED,
                consecutive_errors=0,
                completed_at=now,
            )

        if goal.total_runs >= goal.max_runs:
            logger.info(f"Goal {goal.name!r} abandoned after reaching max_runs ({goal.max_runs})")
            return await self._finish(goal, entry, status=GoalStatus.ABANDONED)

        consecutive_errors = goal.consecutive_errors + 1 if outcome.is_error else 0
        if consecutive_errors >= self._max_consecutive_errors:
            logger.warning(
                f"Goal {goal.name!r} auto-paused after {consecutive_errors} consecutive errors"
            )
            return await self._finish(
                goal,
                entry,
                status=GoalStatus.PAUSED,
                consecutive_errors=consecutive_errors,
            )

        updated = await self._store.append_progress(
            goal.goal_id, entry, consecutive_errors=consecutive_errors
        )
        if updated is None or updated.status != GoalStatus.ACTIVE:
            # Paused by the user while this run was in flight
            return updated

        delay = 0.0 if updated.retry_interval <= 0 else updated.retry_interval * 60
        await self._schedule_next_run(updated, delay)
        return updated

    async def _finish(
        self, goal: LongTermGoal, entry: GoalProgressEntry, **updates: Any
    ) -> LongTermGoal | None:
        self._cancel_timer(goal.goal_id)
        updated = await self._store.append_progress(
            goal.goal_id, entry, next_run_at=None, **updates
        )
        if updated is not None:
            logger.info(f"Goal {goal.name!r} is now {updated.status.value}")
            await self._notify(updated)
        return updated

    async def _notify(self, goal: LongTermGoal) -> None:
        if self._status_listener is None:
            return
        try:
            await self._status_listener(goal)
        except Exception as e:
            logger.error(f"Goal status listener failed for {goal.goal_id}: {e}")

    # ── Restart recovery ────────────────────────────────────────

    async def resume_active_goals(self, now: datetime | None = None) -> tuple[int, int]:
        """Re-arm persisted runs after a restart.

        Overdue runs fire on the next loop iteration, future runs get a timer
        for the remaining delay. Active goals without next_run_at were mid-run
        when the process stopped and are left alone, since their session may
        in fact have completed; the user restarts them explicitly.

        Returns (immediate, scheduled) counts.
        """
        now = now or now_local()
        immediate = scheduled = 0
        for goal in await self._store.list_all():
            if goal.status != GoalStatus.ACTIVE or goal.next_run_at is None:
                continue
            if goal.next_run_at <= now:
                logger.info(
                    f"Resuming overdue goal {goal.name!r} (was due {goal.next_run_at.isoformat()})"
                )
                self._arm_timer(goal.goal_id, 0)
                immediate += 1
            else:
                self._arm_timer(goal.goal_id, (goal.next_run_at - now).total_seconds())
                scheduled += 1
        if immediate + scheduled:
            logger.info(f"Resumed goals: {immediate} immediate, {scheduled} scheduled")
        return immediate, scheduled

    # ── CRUD and manual control ─────────────────────────────────

    async def create_goal(self, data: GoalCreate) -> LongTermGoal:
        """Create an active goal. Starting its first run is up to the caller."""
        goal = LongTermGoal(goal_id=str(uuid.uuid4()), **data.model_dump())
        return await self._store.add(goal)

    async def update_goal(self, goal_id: str, data: GoalUpdate) -> LongTermGoal | None:
        updates = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in ("assistant_id", "cwd")
        }
        goal = await self._store.update(goal_id, **updates)
        if goal is None:
            return None
        if (
            "retry_interval" in updates
            and goal.status == GoalStatus.ACTIVE
            and self.has_pending_run(goal_id)
        ):
            await self._schedule_next_run(goal, max(0.0, goal.retry_interval * 60))
        return goal

    async def pause_goal(self, goal_id: str) -> LongTermGoal | None:
        self._cancel_timer(goal_id)
        goal = await self._store.get(goal_id)
        if goal is None:
            return None
        if goal.status != GoalStatus.ACTIVE:
            return goal
        goal = await self._store.update(goal_id, status=GoalStatus.PAUSED, next_run_at=None)
        if goal is not None:
            logger.info(f"Goal {goal.name!r} paused")
            await self._notify(goal)
        return goal

    async def resume_goal(self, goal_id: str) -> LongTermGoal | None:
        """Reactivate a paused, completed or abandoned goal and run it right away."""
        goal = await self._store.get(goal_id)
        if goal is None:
            return None
        if goal.status == GoalStatus.ACTIVE:
            return goal
        goal = await self._store.update(
            goal_id,
            status=GoalStatus.ACTIVE,
            consecutive_errors=0,
            completed_at=None,
        )
        if goal is None:
            return None
        logger.info(f"Goal {goal.name!r} resumed")
        await self._notify(goal)
        await self._schedule_next_run(goal, 0)
        return goal

    async def delete_goal(self, goal_id: str) -> bool:
        # Cancel first: a timer firing after removal must find nothing to run
        self._cancel_timer(goal_id)
        deleted = await self._store.delete(goal_id)
        if deleted:
            logger.info(f"Deleted goal: {goal_id}")
        return deleted

    async def get_goal(self, goal_id: str) -> LongTermGoal | None:
        return await self._store.get(goal_id)

    async def list_goals(self) -> list[LongTermGoal]:
        return await self._store.list_all()
