from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    # Shared operator secret for /api/*. Secrets must be provided via `.env` (not committed).
    admin_key: str = ""

    # SQLAlchemy async URL, e.g. postgresql+asyncpg://user:pass@db:5432/nodehub
    database_url: str = ""

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Public URL used in generated install commands and subscription links.
    # If empty, the request origin is used.
    subscription_base_url: str = ""
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # A node is reported online when its last heartbeat is within this window.
    online_window_seconds: int = 120
    # Only the newest N releases are kept; older ones are pruned on every push.
    release_retention: int = 10

    agent_api_base: str = "http://127.0.0.1:8080"
    agent_node_id: str = ""
    agent_node_token: str = ""
    agent_heartbeat_seconds: int = 60
    agent_reconcile_seconds: int = 30
    agent_request_timeout_seconds: int = 10
    agent_event_batch_size: int = 50
    agent_data_root: str = "/tmp/nodehub-agent"
    agent_dry_run: bool = True
    # Executed after a desired config snapshot has been written to disk.
    agent_reload_cmd: str = "systemctl reload-or-restart sing-box"
    # Optional command whose output is reported as protocol_app_version.
    agent_app_version_cmd: str = ""
    # Upper bound for reload and version commands; a hung command is killed.
    agent_command_timeout_seconds: int = 60
    agent_metrics_enabled: bool = False
    agent_metrics_host: str = "127.0.0.1"
    agent_metrics_port: int = 9092


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def ensure_agent_dirs(settings: Settings) -> None:
    root = Path(settings.agent_data_root)
    (root / "state").mkdir(parents=True, exist_ok=True)
    (root / "runtime" / "inbounds").mkdir(parents=True, exist_ok=True)
