"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STAGEGATE_", extra="ignore")

    app_name: str = "StageGate"
    env: str = "dev"
    log_level: str = "info"
    log_dir: str = "logs"
    log_to_file: bool = True
    log_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    log_backup_count: int = Field(default=5, ge=0)

    # Filters without an explicit order sort as if they declared this value.
    default_filter_order: int = 0
    reusable_cache_max_entries: int = Field(default=1024, ge=1)
    order_cache_max_entries: int = Field(default=4096, ge=1)
    # Run sync targets in a worker thread instead of on the event loop.
    offload_sync_targets: bool = False
    fault_status_code: int = Field(default=500, ge=400, le=599)
    trace_stages: bool = True

    filters_config_path: str = "config/filters.yaml"

    api_key_header: str = "x-api-key"
    request_id_header: str = "x-request-id"
    disconnect_poll_interval_seconds: float = Field(default=0.5, gt=0.0)


settings = Settings()
