"""Durable collection of scheduled tasks."""

import logging
from datetime import datetime
from typing import Any

from autopilot.models.scheduled_task import ScheduledTask
from autopilot.models.timestamps import now_local
from autopilot.services.json_store import JsonStore
from autopilot.services.schedule import calculate_next_run

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = {"task_id", "created_at", "updated_at", "next_run"}


class TaskStore(JsonStore[ScheduledTask]):
    """CRUD over scheduled-tasks.json.

    Every add and update recomputes ``next_run`` from the task's current
    configuration, so the stored value always reflects the calculator.
    """

    collection_key = "tasks"

    def _item_id(self, item: ScheduledTask) -> str:
        return item.task_id

    def _to_record(self, item: ScheduledTask) -> dict[str, Any]:
        return item.to_record()

    def _from_record(self, data: dict[str, Any]) -> ScheduledTask:
        return ScheduledTask.from_record(data)

    async def add(
        self, task: ScheduledTask, now: datetime | None = None
    ) -> ScheduledTask:
        now = now or now_local()
        async with self._lock:
            task.created_at = now
            task.updated_at = now
            task.next_run = calculate_next_run(task, now)
            self._items[task.task_id] = task
            self._save()
        logger.info(f"Added scheduled task {task.task_id} ({task.schedule_type.value})")
        return task

    async def update(
        self, task_id: str, now: datetime | None = None, **updates: Any
    ) -> ScheduledTask | None:
        now = now or now_local()
        async with self._lock:
            task = self._items.get(task_id)
            if task is None:
                return None
            for key, value in updates.items():
                if hasattr(task, key) and key not in _IMMUTABLE_FIELDS:
                    setattr(task, key, value)
            task.updated_at = now
            task.next_run = calculate_next_run(task, now)
            self._save()
            return task
