"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "kindred-moments"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # Moment window and geography
    moment_window_hours: int = 24
    join_radius_meters: float = 50.0
    discovery_radius_km: float = 5.0
    geocell_size_degrees: float = 0.001

    # Content limits
    max_post_length: int = 300
    max_chat_length: int = 200
    chat_history_limit: int = 20

    # Expiry and retention
    archive_after_hours: int = 6
    retention_days: int = 7
    inactivity_minutes: int = 30

    # Scheduler
    sweep_interval_minutes: int = 60
    deep_cleanup_interval_hours: int = 24
    sweep_batch_size: int = 500
    sweep_max_batches: int = 20

    # Store access
    store_timeout_seconds: float = 2.0

    model_config = {"env_prefix": "KINDRED_"}


settings = Settings()
