from enum import Enum

from pydantic import BaseModel


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"


class SessionRequest(BaseModel):
    """Everything the session layer needs to start an AI session."""

    title: str
    prompt: str
    correlation_id: str
    cwd: str | None = None
    assistant_id: str | None = None
    assistant_skill_names: list[str] = []
    assistant_persona: str | None = None
    provider: str = "claude"
    model: str | None = None
    skill_path: str | None = None
    background: bool = True


class SessionOutcome(BaseModel):
    """Reported by the session layer once a session reaches a terminal state."""

    session_id: str
    status: SessionStatus = SessionStatus.COMPLETED
    last_message_text: str = ""
    title: str | None = None
    correlation_id: str | None = None
    assistant_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status == SessionStatus.ERROR
