"""Pytest configuration and fixtures for autopilot tests."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from autopilot.services import (
    GoalEngine,
    GoalStore,
    JsonAssistantConfigProvider,
    SchedulerService,
    TaskStore,
)

# Monday 2026-03-02 09:30 UTC
MONDAY_0930 = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def temp_tasks_path(tmp_path):
    """Create a temporary task storage path."""
    return tmp_path / "scheduled-tasks.json"


@pytest.fixture
def temp_goals_path(tmp_path):
    """Create a temporary goal storage path."""
    return tmp_path / "long-term-goals.json"


@pytest.fixture
def assistants_path(tmp_path):
    path = tmp_path / "assistants-config.json"
    path.write_text(
        json.dumps(
            {
                "assistants": [
                    {
                        "id": "coder",
                        "name": "Coder",
                        "model": "sonnet",
                        "skillNames": ["git"],
                        "defaultCwd": "/work/coder",
                    },
                    {"id": "writer", "name": "Writer", "persona": "Be concise."},
                ],
                "defaultAssistantId": "coder",
            }
        )
    )
    return path


@pytest.fixture
def assistants(assistants_path):
    return JsonAssistantConfigProvider(assistants_path)


@pytest.fixture
def mock_runner():
    """Create a mock SessionRunner."""
    runner = MagicMock()
    runner.start_session = AsyncMock()
    return runner


@pytest.fixture
def task_store(temp_tasks_path):
    return TaskStore(temp_tasks_path)


@pytest.fixture
def goal_store(temp_goals_path):
    return GoalStore(temp_goals_path)


@pytest.fixture
async def scheduler(task_store, mock_runner, assistants):
    """Create a SchedulerService instance."""
    sched = SchedulerService(task_store, mock_runner, assistants, poll_interval=3600)
    yield sched
    await sched.stop()


@pytest.fixture
async def goal_engine(goal_store, mock_runner, assistants):
    """Create a GoalEngine instance with a recording status listener."""
    engine = GoalEngine(
        goal_store,
        mock_runner,
        assistants,
        status_listener=AsyncMock(),
    )
    yield engine
    await engine.stop()


@pytest.fixture
def mock_conn():
    """Create a mock NatsConnection."""
    conn = MagicMock()
    conn.connect = AsyncMock()
    conn.close = AsyncMock()
    conn.publish = AsyncMock()
    conn.request = AsyncMock(return_value={"session_id": "session-1"})
    conn.subscribe_request = AsyncMock()
    conn.js_subscribe = AsyncMock()
    conn.is_connected = True
    return conn
