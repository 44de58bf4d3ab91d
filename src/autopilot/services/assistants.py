"""Read-only access to the assistant configuration owned by the desktop shell."""

import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from autopilot.models.assistant import AssistantConfig, AssistantsConfig

logger = logging.getLogger(__name__)

DEFAULT_ASSISTANT = AssistantConfig(id="default-assistant", name="Assistant")


class AssistantConfigProvider(Protocol):
    def load(self) -> AssistantsConfig: ...


def _default_config() -> AssistantsConfig:
    return AssistantsConfig(
        assistants=[DEFAULT_ASSISTANT.model_copy()],
        default_assistant_id=DEFAULT_ASSISTANT.id,
    )


class JsonAssistantConfigProvider:
    """Reads assistants-config.json on every lookup so edits apply without a restart."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> AssistantsConfig:
        if not self._path.exists():
            return _default_config()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read assistant config {self._path}: {e}")
            return _default_config()
        if not isinstance(raw, dict):
            return _default_config()

        assistants: list[AssistantConfig] = []
        for item in raw.get("assistants") or []:
            try:
                assistants.append(AssistantConfig.model_validate(item))
            except ValidationError:
                logger.warning(f"Ignoring invalid assistant entry: {item!r}")
        if not assistants:
            return _default_config()

        default_id = raw.get("defaultAssistantId")
        if not any(a.id == default_id for a in assistants):
            default_id = assistants[0].id
        return AssistantsConfig(assistants=assistants, default_assistant_id=default_id)


def resolve_assistant(
    config: AssistantsConfig, assistant_id: str | None
) -> AssistantConfig | None:
    """Pick the assistant a task or goal runs as.

    An explicit id must match exactly; without one the default assistant is
    used, falling back to the first configured.
    """
    if assistant_id:
        return next((a for a in config.assistants if a.id == assistant_id), None)
    default = next(
        (a for a in config.assistants if a.id == config.default_assistant_id), None
    )
    if default is not None:
        return default
    return config.assistants[0] if config.assistants else None
