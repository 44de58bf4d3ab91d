"""Long-term goal model pursued across repeated AI sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from autopilot.models.timestamps import format_timestamp, now_local, parse_timestamp


class GoalStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass
class GoalProgressEntry:
    """Outcome of one finished goal run."""

    session_id: str
    run_at: datetime
    summary: str
    is_complete: bool = False
    next_steps: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "sessionId": self.session_id,
            "runAt": format_timestamp(self.run_at),
            "summary": self.summary,
            "isComplete": self.is_complete,
        }
        if self.next_steps:
            record["nextSteps"] = self.next_steps
        return record

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "GoalProgressEntry":
        return cls(
            session_id=data.get("sessionId", ""),
            run_at=parse_timestamp(data.get("runAt")) or now_local(),
            summary=data.get("summary", ""),
            is_complete=bool(data.get("isComplete", False)),
            next_steps=data.get("nextSteps"),
        )


@dataclass
class LongTermGoal:
    goal_id: str
    name: str
    description: str
    assistant_id: str | None = None
    cwd: str | None = None
    retry_interval: float = 60  # Minutes between runs; 0 runs again immediately
    max_runs: int = 10
    status: GoalStatus = GoalStatus.ACTIVE
    total_runs: int = 0
    consecutive_errors: int = 0
    next_run_at: datetime | None = None  # Persisted so a pending run survives restarts
    progress_log: list[GoalProgressEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_local)
    updated_at: datetime = field(default_factory=now_local)
    completed_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.goal_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "assistantId": self.assistant_id,
            "cwd": self.cwd,
            "retryInterval": self.retry_interval,
            "maxRuns": self.max_runs,
            "totalRuns": self.total_runs,
            "consecutiveErrors": self.consecutive_errors,
            "nextRunAt": format_timestamp(self.next_run_at),
            "progressLog": [entry.to_record() for entry in self.progress_log],
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "completedAt": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "LongTermGoal":
        return cls(
            goal_id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            assistant_id=data.get("assistantId"),
            cwd=data.get("cwd"),
            retry_interval=data["retryInterval"] if data.get("retryInterval") is not None else 60,
            max_runs=data["maxRuns"] if data.get("maxRuns") is not None else 10,
            status=GoalStatus(data.get("status", GoalStatus.ACTIVE.value)),
            total_runs=data.get("totalRuns") or 0,
            consecutive_errors=data.get("consecutiveErrors") or 0,
            next_run_at=parse_timestamp(data.get("nextRunAt")),
            progress_log=[
                GoalProgressEntry.from_record(item)
                for item in data.get("progressLog") or []
                if isinstance(item, dict)
            ],
            created_at=parse_timestamp(data.get("createdAt")) or now_local(),
            updated_at=parse_timestamp(data.get("updatedAt")) or now_local(),
            completed_at=parse_timestamp(data.get("completedAt")),
        )
