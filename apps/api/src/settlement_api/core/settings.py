from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./settlement.db"
    redis_url: str = "redis://localhost:6379/0"
    secret_key: str = "change-me"

    # Internal API security (operator + reconciliation endpoints)
    service_api_key: str = ""

    # Logging / tracing
    log_level: str = "INFO"
    log_json: bool = True
    otel_enabled: bool = False
    otel_exporter_endpoint: str | None = None
    # key=value pairs, comma separated
    otel_exporter_headers: str = ""
    otel_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    # Pending transaction store
    pending_store_backend: Literal["database", "redis", "memory"] = "database"
    pending_transaction_ttl_seconds: int = 600

    # Code generation
    reference_number_prefix: str = "TXN"
    short_code_length: int = 6
    short_code_max_attempts: int = 5

    # Points settlement
    points_earn_rate: float = 0.10
    balance_update_max_attempts: int = 5

    # Maintenance scheduler
    maintenance_scheduler_enabled: bool = False
    maintenance_schedule_path: str = "config/schedules.toml"
    # Comma separated job ids; empty runs every enabled job
    maintenance_job_ids: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("reference_number_prefix", mode="before")
    @classmethod
    def _normalize_prefix(cls, value: object) -> str:
        text = str(value or "").strip().upper()
        return text or "TXN"

    @field_validator("short_code_length")
    @classmethod
    def _validate_short_code_length(cls, value: int) -> int:
        if value < 4:
            raise ValueError("short_code_length must be at least 4")
        return value

    @field_validator("points_earn_rate")
    @classmethod
    def _validate_earn_rate(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("points_earn_rate must be between 0 and 1")
        return value

    @field_validator("maintenance_job_ids", mode="before")
    @classmethod
    def _parse_job_ids(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
