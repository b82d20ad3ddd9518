"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings

from simulator.schemas import MetricType, RoundingRule


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "monitor"
    mysql_password: str = ""
    mysql_db: str = "health_monitor"

    # Redis (Celery broker and result backend)
    redis_url: str = "redis://127.0.0.1:6379/0"

    # Live ticks
    tick_interval_seconds: float = 60.0
    circadian_timezone: str = "UTC"

    # Historical backfill
    backfill_days: int = 180
    backfill_batch_size: int = 500
    backfill_skip_threshold: int = 1000
    backfill_concurrency: int = 4
    backfill_on_startup: bool = True
    purge_on_startup: bool = True

    # Population split (critical group is the remainder)
    healthy_ratio: float = 0.46
    warning_ratio: float = 0.31

    # Per-metric rounding overrides, e.g. {"glucose": "tenth"}
    metric_rounding: dict[MetricType, RoundingRule] = {}

    # Store writes
    store_retry_attempts: int = 3
    store_retry_base_delay_seconds: float = 0.5

    # Alerting
    supervisor_alert_cap: int = 50

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @model_validator(mode="after")
    def _check_population_split(self) -> "Settings":
        for name in ("healthy_ratio", "warning_ratio"):
            ratio = getattr(self, name)
            if not 0.0 < ratio < 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {ratio}")
        if self.healthy_ratio + self.warning_ratio >= 1.0:
            raise ValueError("healthy_ratio + warning_ratio must leave room for a critical group")
        return self


settings = Settings()
