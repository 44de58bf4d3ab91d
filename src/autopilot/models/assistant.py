from pydantic import BaseModel, ConfigDict, Field


class AssistantConfig(BaseModel):
    """Execution parameters for one configured assistant."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    provider: str = "claude"
    model: str | None = None
    skill_names: list[str] = Field(default_factory=list, alias="skillNames")
    persona: str | None = None
    default_cwd: str | None = Field(default=None, alias="defaultCwd")


class AssistantsConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assistants: list[AssistantConfig] = Field(default_factory=list)
    default_assistant_id: str | None = Field(default=None, alias="defaultAssistantId")
