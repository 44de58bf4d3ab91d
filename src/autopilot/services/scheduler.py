"""Scheduler service: polls for due tasks and dispatches lifecycle hooks."""

import asyncio
import dataclasses
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from autopilot.models.api import HookFilterSchema, TaskCreate, TaskUpdate
from autopilot.models.messages import SessionRequest, SessionStatus
from autopilot.models.scheduled_task import (
    HookEvent,
    HookFilter,
    ScheduledTask,
    ScheduleType,
)
from autopilot.models.timestamps import now_local
from autopilot.services.assistants import AssistantConfigProvider, resolve_assistant
from autopilot.services.schedule import count_due_within, is_due, validate_schedule
from autopilot.services.session_runner import SessionRunner, build_session_request
from autopilot.services.task_store import TaskStore

logger = logging.getLogger(__name__)

NO_ACTION_MARKER = "<no-action>"
TASK_CORRELATION_PREFIX = "task:"


@dataclass
class HookContext:
    """What is known about the event that fired a hook."""

    assistant_id: str | None = None
    status: str | None = None
    title: str | None = None
    correlation_id: str | None = None


def task_correlation_id(task_id: str) -> str:
    return f"{TASK_CORRELATION_PREFIX}{task_id}"


def parse_task_correlation_id(correlation_id: str | None) -> str | None:
    if correlation_id and correlation_id.startswith(TASK_CORRELATION_PREFIX):
        return correlation_id[len(TASK_CORRELATION_PREFIX):] or None
    return None


def task_session_title(task: ScheduledTask) -> str:
    if task.schedule_type == ScheduleType.HEARTBEAT:
        return f"[heartbeat] {task.name}"
    return f"Scheduled task: {task.name}"


def hook_filter_matches(task: ScheduledTask, context: HookContext) -> bool:
    f = task.hook_filter
    if f is None:
        return True
    if f.assistant_id and context.assistant_id != f.assistant_id:
        return False
    if f.only_on_error and context.status != SessionStatus.ERROR.value:
        return False
    if f.title_pattern:
        try:
            if not re.search(f.title_pattern, context.title or ""):
                return False
        except re.error as e:
            logger.warning(
                f"Hook task {task.task_id} has an invalid title pattern "
                f"{f.title_pattern!r}: {e}"
            )
            return False
    return True


_REQUIRED_FIELDS = {"name", "prompt", "schedule_type", "enabled", "daily_days", "suppress_if_short"}


def _hook_filter(schema: HookFilterSchema | None) -> HookFilter | None:
    if schema is None:
        return None
    return HookFilter(**schema.model_dump())


def _normalize_fields(fields: dict[str, object]) -> dict[str, object]:
    """Drop nulls for fields a task cannot be without and localize naive times."""
    normalized = {
        key: value
        for key, value in fields.items()
        if not (key in _REQUIRED_FIELDS and value is None)
    }
    scheduled_time = normalized.get("scheduled_time")
    if isinstance(scheduled_time, datetime) and scheduled_time.tzinfo is None:
        normalized["scheduled_time"] = scheduled_time.astimezone()
    return normalized


class SchedulerService:
    """Fires scheduled tasks when due and hook tasks when their event happens.

    Execution is fire-and-forget: a session that fails to start is logged and
    not retried here; time-based tasks simply fire again at their next run.
    """

    def __init__(
        self,
        store: TaskStore,
        session_runner: SessionRunner,
        assistants: AssistantConfigProvider,
        poll_interval: float = 60.0,
        trivial_output_chars: int = 80,
    ) -> None:
        self._store = store
        self._runner = session_runner
        self._assistants = assistants
        self._poll_interval = poll_interval
        self._trivial_output_chars = trivial_output_chars
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._dispatches: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Start polling. The first scan happens immediately."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Scheduler service started")

    async def stop(self) -> None:
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        dispatches = list(self._dispatches)
        for task in dispatches:
            task.cancel()
        await asyncio.gather(*dispatches, return_exceptions=True)
        logger.info("Scheduler service stopped")

    async def _scheduler_loop(self) -> None:
        while self._running:
            try:
                await self.run_due_tasks()
            except Exception as e:
                logger.exception(f"Scheduler error: {e}")
            await asyncio.sleep(self._poll_interval)

    # ── Triggering ──────────────────────────────────────────────

    async def run_due_tasks(self, now: datetime | None = None) -> list[ScheduledTask]:
        """Trigger every enabled, time-based task whose next run has arrived.

        Tasks fire in store order. Each trigger recomputes next_run before the
        scan moves on, so a task cannot be selected twice for one due instant.
        """
        now = now or now_local()
        triggered: list[ScheduledTask] = []
        for task in await self._store.list_all():
            if not is_due(task, now):
                continue
            logger.info(f"Running task: {task.name} ({task.schedule_type.value})")
            fired = await self._trigger(task, now)
            if fired is not None:
                triggered.append(fired)
        return triggered

    async def run_hook_tasks(
        self, event: HookEvent, context: HookContext | None = None
    ) -> list[ScheduledTask]:
        """Trigger enabled hook tasks listening for ``event`` whose filter matches."""
        context = context or HookContext()
        now = now_local()
        triggered: list[ScheduledTask] = []
        for task in await self._store.list_all():
            if not task.enabled or task.schedule_type != ScheduleType.HOOK:
                continue
            if task.hook_event != event:
                continue
            if (
                event == HookEvent.SESSION_COMPLETE
                and context.correlation_id == task_correlation_id(task.task_id)
            ):
                # Its own session finishing must not fire it again
                continue
            if not hook_filter_matches(task, context):
                continue
            logger.info(f"Running hook task {task.name!r} for event: {event.value}")
            fired = await self._trigger(task, now)
            if fired is not None:
                triggered.append(fired)
        return triggered

    async def trigger_task(self, task_id: str) -> ScheduledTask | None:
        """Manually run a task now, whatever its schedule or enabled state."""
        task = await self._store.get(task_id)
        if task is None:
            return None
        return await self._trigger(task, now_local())

    async def _trigger(self, task: ScheduledTask, now: datetime) -> ScheduledTask | None:
        updates: dict[str, object] = {"last_run": now}
        if task.schedule_type == ScheduleType.ONCE:
            updates["enabled"] = False
        updated = await self._store.update(task.task_id, now=now, **updates)
        if updated is None:
            return None

        self._dispatch(self._build_request(updated), updated.name)
        return updated

    def _build_request(self, task: ScheduledTask) -> SessionRequest:
        assistant = resolve_assistant(self._assistants.load(), task.assistant_id)
        return build_session_request(
            title=task_session_title(task),
            prompt=task.prompt,
            correlation_id=task_correlation_id(task.task_id),
            assistant=assistant,
            cwd=task.cwd,
            skill_path=task.skill_path,
        )

    def _dispatch(self, request: SessionRequest, task_name: str) -> None:
        dispatch = asyncio.create_task(self._start_session(request, task_name))
        self._dispatches.add(dispatch)
        dispatch.add_done_callback(self._dispatches.discard)

    async def _start_session(self, request: SessionRequest, task_name: str) -> None:
        try:
            await self._runner.start_session(request)
        except Exception as e:
            logger.error(f"Failed to start session for task {task_name!r}: {e}")

    # ── Completion helpers ──────────────────────────────────────

    async def task_for_correlation(self, correlation_id: str | None) -> ScheduledTask | None:
        task_id = parse_task_correlation_id(correlation_id)
        return await self._store.get(task_id) if task_id else None

    def is_trivial_output(self, task: ScheduledTask, text: str) -> bool:
        """True when a task asked to hide short or explicitly empty replies and this is one."""
        if not task.suppress_if_short:
            return False
        stripped = text.strip()
        return len(stripped) < self._trivial_output_chars or NO_ACTION_MARKER in stripped

    async def count_due_tasks(
        self, window: timedelta = timedelta(hours=1), now: datetime | None = None
    ) -> int:
        return count_due_within(await self._store.list_all(), now or now_local(), window)

    # ── CRUD ────────────────────────────────────────────────────

    async def create_task(self, data: TaskCreate) -> ScheduledTask:
        """Create a task. Raises InvalidScheduleError if it could never fire."""
        fields = _normalize_fields(data.model_dump(exclude={"hook_filter"}))
        task = ScheduledTask(
            task_id=str(uuid.uuid4()),
            hook_filter=_hook_filter(data.hook_filter),
            **fields,
        )
        validate_schedule(task)
        await self._store.add(task)
        logger.info(f"Created scheduled task: {task.task_id}")
        return task

    async def update_task(self, task_id: str, data: TaskUpdate) -> ScheduledTask | None:
        existing = await self._store.get(task_id)
        if existing is None:
            return None
        updates = _normalize_fields(
            data.model_dump(exclude_unset=True, exclude={"hook_filter"})
        )
        if "hook_filter" in data.model_fields_set:
            updates["hook_filter"] = _hook_filter(data.hook_filter)
        validate_schedule(dataclasses.replace(existing, **updates))
        task = await self._store.update(task_id, **updates)
        logger.info(f"Updated scheduled task: {task_id}")
        return task

    async def toggle_task(self, task_id: str) -> ScheduledTask | None:
        task = await self._store.get(task_id)
        if task is None:
            return None
        toggled = await self._store.update(task_id, enabled=not task.enabled)
        if toggled:
            logger.info(f"Toggled scheduled task {task_id}: enabled={toggled.enabled}")
        return toggled

    async def delete_task(self, task_id: str) -> bool:
        deleted = await self._store.delete(task_id)
        if deleted:
            logger.info(f"Deleted scheduled task: {task_id}")
        return deleted

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        return await self._store.get(task_id)

    async def list_tasks(self) -> list[ScheduledTask]:
        return await self._store.list_all()
