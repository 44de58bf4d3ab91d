"""Durable collection of long-term goals."""

import logging
from datetime import datetime
from typing import Any

from autopilot.models.goal import GoalProgressEntry, GoalStatus, LongTermGoal
from autopilot.models.timestamps import now_local
from autopilot.services.json_store import JsonStore

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = {"goal_id", "created_at", "updated_at", "progress_log"}


class GoalStore(JsonStore[LongTermGoal]):
    """CRUD over long-term-goals.json. No scheduling decisions live here."""

    collection_key = "goals"

    def _item_id(self, item: LongTermGoal) -> str:
        return item.goal_id

    def _to_record(self, item: LongTermGoal) -> dict[str, Any]:
        return item.to_record()

    def _from_record(self, data: dict[str, Any]) -> LongTermGoal:
        return LongTermGoal.from_record(data)

    async def add(self, goal: LongTermGoal, now: datetime | None = None) -> LongTermGoal:
        """Store a new goal in its initial state: active, no runs, empty log."""
        now = now or now_local()
        async with self._lock:
            goal.status = GoalStatus.ACTIVE
            goal.total_runs = 0
            goal.consecutive_errors = 0
            goal.next_run_at = None
            goal.progress_log = []
            goal.completed_at = None
            goal.created_at = now
            goal.updated_at = now
            self._items[goal.goal_id] = goal
            self._save()
        logger.info(f"Added goal {goal.goal_id} ({goal.name})")
        return goal

    async def update(self, goal_id: str, **updates: Any) -> LongTermGoal | None:
        async with self._lock:
            goal = self._items.get(goal_id)
            if goal is None:
                return None
            for key, value in updates.items():
                if hasattr(goal, key) and key not in _IMMUTABLE_FIELDS:
                    setattr(goal, key, value)
            goal.updated_at = now_local()
            self._save()
            return goal

    async def begin_run(self, goal_id: str) -> LongTermGoal | None:
        """Count a new run for an active goal and clear its pending run time.

        Returns None without changes if the goal is gone or not active. Doing
        the check and the increment under one lock keeps total_runs exact even
        when two triggers interleave.
        """
        async with self._lock:
            goal = self._items.get(goal_id)
            if goal is None or goal.status != GoalStatus.ACTIVE:
                return None
            goal.total_runs += 1
            goal.next_run_at = None
            goal.updated_at = now_local()
            self._save()
            return goal

    async def append_progress(
        self, goal_id: str, entry: GoalProgressEntry, **updates: Any
    ) -> LongTermGoal | None:
        """Append a progress entry and apply further field updates in one write."""
        async with self._lock:
            goal = self._items.get(goal_id)
            if goal is None:
                return None
            goal.progress_log.append(entry)
            for key, value in updates.items():
                if hasattr(goal, key) and key not in _IMMUTABLE_FIELDS:
                    setattr(goal, key, value)
            goal.updated_at = now_local()
            self._save()
            return goal
