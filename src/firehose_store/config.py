from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IngestSettings(BaseSettings):
    """Runtime settings, overridable with ``FIREHOSE_*`` env vars or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="FIREHOSE_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # windowing
    window_max_count: int = Field(100, ge=1)
    window_max_seconds: float = Field(10.0, gt=0)
    flush_on_end: bool = True

    # retry (Batch Inserter)
    retry_max_attempts: int = Field(3, ge=1)
    retry_initial_backoff_ms: int = Field(250, ge=0)
    retry_backoff_multiplier: float = Field(2.0, ge=1.0)
    retry_max_backoff_ms: int = Field(30_000, ge=0)
    retry_jitter: bool = False

    # supervision / aggregation
    restart_delay_sec: float = Field(1.0, ge=0)
    report_interval_sec: float = Field(10.0, gt=0)
    stop_policy: Literal["all", "any"] = "all"

    # storage
    dsn: Optional[str] = None
    pool_max: int = Field(4, ge=1)
    schema_name: str = "twitter"
    sample_table: str = "sample"
    user_table: str = "user"
    error_table: str = "error"
    error_ndjson_path: str = ".errors/errors.ndjson"

    # ops
    metrics_port: Optional[int] = None
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache()
def get_settings() -> IngestSettings:
    return IngestSettings()
