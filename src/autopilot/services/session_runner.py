"""Boundary to the session layer that actually runs AI sessions."""

import logging
from typing import Protocol

from autopilot.errors import SessionRejectedError
from autopilot.messaging import NatsConnection, Subjects
from autopilot.models.assistant import AssistantConfig
from autopilot.models.messages import SessionRequest

logger = logging.getLogger(__name__)


class SessionRunner(Protocol):
    """Starts a session and returns once the session layer has accepted it.

    Completion is reported separately as a SessionOutcome.
    """

    async def start_session(self, request: SessionRequest) -> None: ...


def build_session_request(
    *,
    title: str,
    prompt: str,
    correlation_id: str,
    assistant: AssistantConfig | None,
    cwd: str | None = None,
    skill_path: str | None = None,
) -> SessionRequest:
    """Merge a task or goal with its resolved assistant; an explicit cwd wins."""
    return SessionRequest(
        title=title,
        prompt=prompt,
        correlation_id=correlation_id,
        cwd=cwd or (assistant.default_cwd if assistant else None),
        assistant_id=assistant.id if assistant else None,
        assistant_skill_names=list(assistant.skill_names) if assistant else [],
        assistant_persona=assistant.persona if assistant else None,
        provider=assistant.provider if assistant else "claude",
        model=assistant.model if assistant else None,
        skill_path=skill_path,
    )


class NatsSessionRunner:
    """Sends start requests to the session layer over NATS request/reply."""

    def __init__(self, conn: NatsConnection, timeout: float = 10.0) -> None:
        self._conn = conn
        self._timeout = timeout

    async def start_session(self, request: SessionRequest) -> None:
        try:
            reply = await self._conn.request(
                Subjects.SESSION_START, request, timeout=self._timeout
            )
        except Exception as e:
            raise SessionRejectedError(f"No acknowledgement for {request.title!r}: {e}") from e
        if reply.get("error"):
            raise SessionRejectedError(str(reply["error"]))
        logger.info(
            f"Session layer accepted {request.correlation_id} "
            f"(session_id={reply.get('session_id')})"
        )
