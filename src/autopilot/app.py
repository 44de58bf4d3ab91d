"""Autopilot FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from autopilot.config import Settings
from autopilot.messaging import NatsConnection
from autopilot.models.scheduled_task import HookEvent
from autopilot.routes import config_router
from autopilot.services import (
    CompletionRouter,
    GoalEngine,
    GoalStore,
    JsonAssistantConfigProvider,
    NatsService,
    NatsSessionRunner,
    SchedulerService,
    TaskStore,
)

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()

    # Storage
    task_store = TaskStore(settings.tasks_path())
    goal_store = GoalStore(settings.goals_path())
    assistants = JsonAssistantConfigProvider(settings.assistants_path())

    # Session layer boundary (one connection shared by runner and API)
    conn = NatsConnection(url=settings.nats_url, name="autopilot")
    session_runner = NatsSessionRunner(conn)

    # Core services
    scheduler = SchedulerService(
        task_store,
        session_runner,
        assistants,
        poll_interval=settings.poll_interval,
        trivial_output_chars=settings.trivial_output_chars,
    )
    goal_engine = GoalEngine(
        goal_store,
        session_runner,
        assistants,
        history_limit=settings.goal_history_limit,
        max_consecutive_errors=settings.max_consecutive_errors,
    )
    router = CompletionRouter(scheduler, goal_engine)
    nats_service = NatsService(conn, scheduler, goal_engine, router)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Autopilot starting up")

        await task_store.load()
        await goal_store.load()

        nats_started = False
        if settings.nats_enabled:
            try:
                await nats_service.start()
                nats_started = True
            except Exception as e:
                logger.error(f"Failed to start NATS service, sessions cannot be started: {e}")
        else:
            logger.warning("NATS disabled, sessions cannot be started")

        await scheduler.start()
        await goal_engine.resume_active_goals()
        await scheduler.run_hook_tasks(HookEvent.STARTUP)

        yield

        await goal_engine.stop()
        await scheduler.stop()
        if nats_started:
            await nats_service.stop()

        logger.info("Autopilot shutting down")

    autopilot_app = FastAPI(
        title="Autopilot",
        description="Scheduled tasks and long-term goals for AI assistant sessions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store services in app.state for dependency injection
    autopilot_app.state.settings = settings
    autopilot_app.state.scheduler = scheduler
    autopilot_app.state.goal_engine = goal_engine
    autopilot_app.state.completion_router = router
    autopilot_app.state.nats_service = nats_service

    autopilot_app.include_router(config_router)

    return autopilot_app
