from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8765

    # Storage settings
    data_dir: Path = Path.home() / ".autopilot"
    tasks_file: str = "scheduled-tasks.json"
    goals_file: str = "long-term-goals.json"
    assistants_file: str = "assistants-config.json"

    # Scheduler settings
    poll_interval: float = 60.0  # Seconds between due-task scans
    trivial_output_chars: int = 80  # Heartbeat replies shorter than this are suppressible

    # Goal engine settings
    goal_history_limit: int = 8  # Progress entries embedded in each goal prompt
    max_consecutive_errors: int = 3  # Auto-pause threshold

    # NATS settings
    nats_enabled: bool = True
    nats_url: str = "nats://localhost:4222"
    nats_ws_url: str = "ws://localhost:8443"  # For UI config endpoint

    model_config = SettingsConfigDict(env_prefix="AUTOPILOT_")

    def tasks_path(self) -> Path:
        return self.data_dir.expanduser() / self.tasks_file

    def goals_path(self) -> Path:
        return self.data_dir.expanduser() / self.goals_file

    def assistants_path(self) -> Path:
        return self.data_dir.expanduser() / self.assistants_file
