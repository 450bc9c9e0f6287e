"""Configuration management using Pydantic Settings."""

from enum import Enum

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class StoreBackend(str, Enum):
    """Persistent local store type."""
    SQLITE = "sqlite"
    REDIS = "redis"
    MEMORY = "memory"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


class SettingsSnapshot(BaseModel):
    """User-facing toggles, read on every gated operation."""

    remote_sync_enabled: bool = True
    peer_validation_enabled: bool = True


class EngineConfig(BaseSettings):
    """Configuration for the xcred profile engine."""

    # Cache settings
    cache_ttl_seconds: int = 24 * 60 * 60
    error_cache_ttl_seconds: int = 30 * 60
    memory_cache_max: int = 200
    max_entries: int = 5000
    eviction_batch_size: int = 500
    eviction_check_probability: float = 0.05
    sweep_interval_seconds: int = 60 * 60
    store_backend: StoreBackend = StoreBackend.SQLITE
    sqlite_path: str = ".xcred_cache.db"
    redis_url: str = "redis://localhost:6379/0"

    # Remote shared store
    remote_url: str | None = None
    remote_api_key: str | None = None
    remote_ttl_seconds: int = 7 * 24 * 60 * 60
    remote_sync_batch_size: int = 50
    remote_timeout_seconds: float = 10.0
    remote_sync_enabled: bool = True

    # Fetch pipeline
    max_queue_size: int = 50
    batch_size: int = 5
    request_delay_seconds: float = 0.5
    max_request_delay_seconds: float = 2.0
    batch_delay_seconds: float = 3.0
    rate_limit_base_pause_seconds: float = 60.0
    rate_limit_max_pause_seconds: float = 300.0
    fetch_timeout_seconds: float = 30.0
    api_base_url: str = "https://x.com"
    bearer_token: str | None = None
    csrf_token: str | None = None

    # Consensus validation
    node_id: str | None = None
    authority_url: str = "https://api.xcred.org"
    validator_budget_per_window: int = 25
    validator_window_seconds: int = 60 * 60
    task_max_age_seconds: int = 5 * 60
    cross_check_timeout_seconds: float = 2.0
    heartbeat_interval_seconds: int = 60
    peer_validation_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.CONSOLE

    model_config = {
        "env_prefix": "XCRED_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def settings_snapshot(self) -> SettingsSnapshot:
        """Build the toggle snapshot from static configuration."""
        return SettingsSnapshot(
            remote_sync_enabled=self.remote_sync_enabled,
            peer_validation_enabled=self.peer_validation_enabled,
        )
