"""Tests for the GoalEngine."""

import asyncio
import logging
from datetime import timedelta

import pytest

from autopilot.errors import SessionRejectedError
from autopilot.models import (
    GoalCreate,
    GoalStatus,
    GoalUpdate,
    LongTermGoal,
    SessionOutcome,
    SessionStatus,
)
from autopilot.models.timestamps import now_local
from autopilot.services import GoalEngine, GoalStore
from autopilot.services.goal_engine import goal_correlation_id, parse_goal_correlation_id

NOT_DONE = (
    "Worked on it.\n<goal-complete>false</goal-complete>"
    "<goal-progress>Moved two pages</goal-progress>"
    "<goal-next-steps>Move the rest</goal-next-steps>"
)
DONE = "<goal-complete>true</goal-complete><goal-progress>All pages moved</goal-progress>"


def outcome_for(goal, run: int, text: str = NOT_DONE, status=SessionStatus.COMPLETED, **kwargs):
    return SessionOutcome(
        session_id=kwargs.pop("session_id", f"{goal.goal_id}-session-{run}"),
        status=status,
        last_message_text=text,
        correlation_id=goal_correlation_id(goal.goal_id, run),
        **kwargs,
    )


async def new_goal(engine, **kwargs):
    fields = {"name": "Migrate docs", "description": "Move every page"}
    fields.update(kwargs)
    return await engine.create_goal(GoalCreate(**fields))


class TestCorrelationIds:
    def test_round_trip(self):
        assert parse_goal_correlation_id(goal_correlation_id("abc-123", 4)) == ("abc-123", 4)

    def test_foreign_ids(self):
        assert parse_goal_correlation_id("task:abc") is None
        assert parse_goal_correlation_id("goal:abc:x") is None
        assert parse_goal_correlation_id(None) is None


class TestTriggerRun:
    @pytest.mark.asyncio
    async def test_run_is_counted_and_started(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine, cwd="/docs", assistant_id="writer")

        assert await goal_engine.trigger_run(goal.goal_id) is True

        stored = await goal_engine.get_goal(goal.goal_id)
        assert stored.total_runs == 1
        assert stored.next_run_at is None

        request = mock_runner.start_session.await_args.args[0]
        assert request.title == "[goal] Migrate docs - run 1"
        assert request.correlation_id == f"goal:{goal.goal_id}:1"
        assert request.cwd == "/docs"
        assert request.assistant_id == "writer"
        assert request.assistant_persona == "Be concise."
        assert request.prompt.startswith("[Long-term goal] Migrate docs")

    @pytest.mark.asyncio
    async def test_inactive_goal_is_skipped(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine)
        await goal_engine.pause_goal(goal.goal_id)

        assert await goal_engine.trigger_run(goal.goal_id) is False
        assert await goal_engine.trigger_run("missing") is False

        mock_runner.start_session.assert_not_awaited()
        assert (await goal_engine.get_goal(goal.goal_id)).total_runs == 0

    @pytest.mark.asyncio
    async def test_failed_start_still_counts(self, goal_engine, mock_runner, caplog):
        mock_runner.start_session.side_effect = SessionRejectedError("no ack")
        goal = await new_goal(goal_engine)

        with caplog.at_level(logging.ERROR):
            await goal_engine.trigger_run(goal.goal_id)

        assert (await goal_engine.get_goal(goal.goal_id)).total_runs == 1
        assert "no ack" in caplog.text

    @pytest.mark.asyncio
    async def test_total_runs_matches_trigger_count(self, goal_engine):
        goal = await new_goal(goal_engine)

        await asyncio.gather(*(goal_engine.trigger_run(goal.goal_id) for _ in range(5)))
        # Completions arriving out of order do not change the count
        await goal_engine.handle_session_complete(outcome_for(goal, 3))
        await goal_engine.handle_session_complete(outcome_for(goal, 1))

        assert (await goal_engine.get_goal(goal.goal_id)).total_runs == 5


class TestSessionComplete:
    @pytest.mark.asyncio
    async def test_completion_finishes_goal(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine)
        await goal_engine.trigger_run(goal.goal_id)

        updated = await goal_engine.handle_session_complete(outcome_for(goal, 1, DONE))

        assert updated.status == GoalStatus.COMPLETED
        assert updated.completed_at is not None
        assert updated.next_run_at is None
        assert updated.progress_log[-1].summary == "All pages moved"
        assert updated.progress_log[-1].is_complete is True
        assert not goal_engine.has_pending_run(goal.goal_id)
        goal_engine._status_listener.assert_awaited_once_with(updated)

    @pytest.mark.asyncio
    async def test_unfinished_run_schedules_retry(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine, retry_interval=60)
        await goal_engine.trigger_run(goal.goal_id)
        before = now_local()

        updated = await goal_engine.handle_session_complete(outcome_for(goal, 1))

        assert updated.status == GoalStatus.ACTIVE
        assert updated.progress_log[-1].summary == "Moved two pages"
        assert updated.progress_log[-1].next_steps == "Move the rest"
        assert updated.next_run_at >= before + timedelta(minutes=60)
        assert goal_engine.has_pending_run(goal.goal_id)

        await asyncio.sleep(0.1)
        assert mock_runner.start_session.await_count == 1

    @pytest.mark.asyncio
    async def test_zero_retry_interval_runs_again_immediately(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine, retry_interval=0)
        await goal_engine.trigger_run(goal.goal_id)

        await goal_engine.handle_session_complete(outcome_for(goal, 1))
        await asyncio.sleep(0.1)

        assert mock_runner.start_session.await_count == 2
        second = mock_runner.start_session.await_args.args[0]
        assert second.title == "[goal] Migrate docs - run 2"
        assert "Run 1 (" in second.prompt
        assert (await goal_engine.get_goal(goal.goal_id)).total_runs == 2

    @pytest.mark.asyncio
    async def test_max_runs_abandons_goal(self, goal_engine):
        goal = await new_goal(goal_engine, max_runs=5)

        for run in range(1, 6):
            await goal_engine.run_goal_now(goal.goal_id)
            updated = await goal_engine.handle_session_complete(outcome_for(goal, run))

        assert updated.status == GoalStatus.ABANDONED
        assert updated.total_runs == 5
        assert len(updated.progress_log) == 5
        assert not goal_engine.has_pending_run(goal.goal_id)
        assert await goal_engine.trigger_run(goal.goal_id) is False

    @pytest.mark.asyncio
    async def test_completion_beats_max_runs(self, goal_engine):
        goal = await new_goal(goal_engine, max_runs=1)
        await goal_engine.trigger_run(goal.goal_id)

        updated = await goal_engine.handle_session_complete(outcome_for(goal, 1, DONE))

        assert updated.status == GoalStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_three_errors_pause_goal(self, goal_engine):
        goal = await new_goal(goal_engine, max_runs=10)

        for run in range(1, 4):
            await goal_engine.run_goal_now(goal.goal_id)
            updated = await goal_engine.handle_session_complete(
                outcome_for(goal, run, "", status=SessionStatus.ERROR)
            )
            if run < 3:
                assert updated.status == GoalStatus.ACTIVE
                assert updated.consecutive_errors == run

        assert updated.status == GoalStatus.PAUSED
        assert updated.consecutive_errors == 3
        assert updated.progress_log[-1].summary == "Run failed"
        assert not goal_engine.has_pending_run(goal.goal_id)
        goal_engine._status_listener.assert_awaited_once_with(updated)

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, goal_engine):
        goal = await new_goal(goal_engine)

        await goal_engine.handle_session_complete(
            outcome_for(goal, 1, "", status=SessionStatus.ERROR)
        )
        await goal_engine.handle_session_complete(
            outcome_for(goal, 2, "", status=SessionStatus.ERROR)
        )
        updated = await goal_engine.handle_session_complete(outcome_for(goal, 3, ""))

        assert updated.consecutive_errors == 0
        assert updated.status == GoalStatus.ACTIVE
        assert updated.progress_log[-1].summary == "(no summary)"

    @pytest.mark.asyncio
    async def test_pause_during_run_is_respected(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine, retry_interval=0)
        await goal_engine.trigger_run(goal.goal_id)
        await goal_engine.pause_goal(goal.goal_id)

        updated = await goal_engine.handle_session_complete(outcome_for(goal, 1))
        await asyncio.sleep(0.1)

        assert updated.status == GoalStatus.PAUSED
        assert len(updated.progress_log) == 1
        assert not goal_engine.has_pending_run(goal.goal_id)
        assert mock_runner.start_session.await_count == 1

    @pytest.mark.asyncio
    async def test_finished_goal_ignores_late_completions(self, goal_engine):
        goal = await new_goal(goal_engine)
        await goal_engine.handle_session_complete(outcome_for(goal, 1, DONE))

        assert await goal_engine.handle_session_complete(outcome_for(goal, 2)) is None
        assert len((await goal_engine.get_goal(goal.goal_id)).progress_log) == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_recorded_once(self, goal_engine):
        goal = await new_goal(goal_engine)
        outcome = outcome_for(goal, 1)

        await goal_engine.handle_session_complete(outcome)
        assert await goal_engine.handle_session_complete(outcome) is None
        assert len((await goal_engine.get_goal(goal.goal_id)).progress_log) == 1

    @pytest.mark.asyncio
    async def test_title_fallback_without_correlation(self, goal_engine):
        goal = await new_goal(goal_engine)

        updated = await goal_engine.handle_session_complete(
            SessionOutcome(
                session_id="s-1",
                last_message_text=NOT_DONE,
                title="[goal] Migrate docs - run 1",
            )
        )

        assert updated.goal_id == goal.goal_id
        assert len(updated.progress_log) == 1

    @pytest.mark.asyncio
    async def test_unrelated_sessions_are_ignored(self, goal_engine):
        await new_goal(goal_engine)

        assert (
            await goal_engine.handle_session_complete(
                SessionOutcome(session_id="s-1", title="Chat", correlation_id="task:x")
            )
            is None
        )
        assert (
            await goal_engine.handle_session_complete(
                SessionOutcome(session_id="s-2", correlation_id="goal:missing:1")
            )
            is None
        )


class TestResumeActiveGoals:
    @pytest.mark.asyncio
    async def test_overdue_goal_fires_exactly_once(self, temp_goals_path, mock_runner, assistants):
        store = GoalStore(temp_goals_path)
        goal = await store.add(LongTermGoal(goal_id="overdue", name="Overdue", description="x"))
        await store.update(goal.goal_id, next_run_at=now_local() - timedelta(minutes=10))

        # Simulate a restart: a fresh store and engine over the same file
        reloaded = GoalStore(temp_goals_path)
        await reloaded.load()
        engine = GoalEngine(reloaded, mock_runner, assistants)
        try:
            assert await engine.resume_active_goals() == (1, 0)
            assert await engine.resume_active_goals() == (1, 0)
            await asyncio.sleep(0.1)

            mock_runner.start_session.assert_awaited_once()
            assert (await reloaded.get("overdue")).total_runs == 1
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_future_run_keeps_remaining_delay(self, goal_engine, goal_store, mock_runner):
        goal = await new_goal(goal_engine)
        await goal_store.update(goal.goal_id, next_run_at=now_local() + timedelta(hours=1))

        assert await goal_engine.resume_active_goals() == (0, 1)
        await asyncio.sleep(0.1)

        assert goal_engine.has_pending_run(goal.goal_id)
        mock_runner.start_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_goal_without_pending_run_stays_dormant(self, goal_engine, goal_store):
        goal = await new_goal(goal_engine)
        paused = await new_goal(goal_engine, name="Paused")
        await goal_store.update(paused.goal_id, status=GoalStatus.PAUSED, next_run_at=now_local())

        assert await goal_engine.resume_active_goals() == (0, 0)
        assert not goal_engine.has_pending_run(goal.goal_id)
        assert not goal_engine.has_pending_run(paused.goal_id)


class TestGoalControl:
    @pytest.mark.asyncio
    async def test_delete_cancels_pending_run(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine, retry_interval=0)
        await goal_engine.trigger_run(goal.goal_id)
        await goal_engine.handle_session_complete(outcome_for(goal, 1))

        # The immediate retry is armed but has not run yet
        assert await goal_engine.delete_goal(goal.goal_id) is True
        await asyncio.sleep(0.1)

        assert not goal_engine.has_pending_run(goal.goal_id)
        assert mock_runner.start_session.await_count == 1
        assert await goal_engine.get_goal(goal.goal_id) is None
        assert await goal_engine.delete_goal(goal.goal_id) is False

    @pytest.mark.asyncio
    async def test_pause_cancels_timer_and_clears_next_run(self, goal_engine):
        goal = await new_goal(goal_engine)
        await goal_engine.handle_session_complete(outcome_for(goal, 1))
        assert goal_engine.has_pending_run(goal.goal_id)

        paused = await goal_engine.pause_goal(goal.goal_id)

        assert paused.status == GoalStatus.PAUSED
        assert paused.next_run_at is None
        assert not goal_engine.has_pending_run(goal.goal_id)
        goal_engine._status_listener.assert_awaited_once_with(paused)

    @pytest.mark.asyncio
    async def test_resume_resets_errors_and_runs(self, goal_engine, goal_store, mock_runner):
        goal = await new_goal(goal_engine)
        await goal_store.update(goal.goal_id, status=GoalStatus.PAUSED, consecutive_errors=3)

        resumed = await goal_engine.resume_goal(goal.goal_id)
        assert resumed.status == GoalStatus.ACTIVE
        assert resumed.consecutive_errors == 0
        assert resumed.next_run_at is not None

        await asyncio.sleep(0.1)
        mock_runner.start_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_now_replaces_pending_timer(self, goal_engine, mock_runner):
        goal = await new_goal(goal_engine)
        await goal_engine.handle_session_complete(outcome_for(goal, 1))
        assert goal_engine.has_pending_run(goal.goal_id)

        assert await goal_engine.run_goal_now(goal.goal_id) is True

        assert not goal_engine.has_pending_run(goal.goal_id)
        mock_runner.start_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_goal(self, goal_engine):
        goal = await new_goal(goal_engine)

        updated = await goal_engine.update_goal(
            goal.goal_id, GoalUpdate(description="Move the blog too", name=None)
        )

        assert updated.description == "Move the blog too"
        assert updated.name == "Migrate docs"
        assert await goal_engine.update_goal("missing", GoalUpdate(name="x")) is None

    @pytest.mark.asyncio
    async def test_update_retry_interval_reschedules(self, goal_engine):
        goal = await new_goal(goal_engine, retry_interval=600)
        await goal_engine.handle_session_complete(outcome_for(goal, 1))
        far = (await goal_engine.get_goal(goal.goal_id)).next_run_at

        updated = await goal_engine.update_goal(goal.goal_id, GoalUpdate(retry_interval=5))

        assert updated.next_run_at < far
        assert goal_engine.has_pending_run(goal.goal_id)

    @pytest.mark.asyncio
    async def test_list_goals(self, goal_engine):
        await new_goal(goal_engine, name="One")
        await new_goal(goal_engine, name="Two")
        assert [g.name for g in await goal_engine.list_goals()] == ["One", "Two"]

    @pytest.mark.asyncio
    async def test_stop_waits_for_cancelled_timers(self, goal_engine, goal_store):
        goal = await new_goal(goal_engine)
        await goal_engine.handle_session_complete(outcome_for(goal, 1))
        timer = goal_engine._timers[goal.goal_id]

        await goal_engine.stop()

        assert timer.done()
        assert not goal_engine.has_pending_run(goal.goal_id)
        # The persisted next run survives for resume
        assert (await goal_store.get(goal.goal_id)).next_run_at is not None
