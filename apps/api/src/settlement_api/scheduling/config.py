"""Load the maintenance schedule (pending purge, points reconciliation) from TOML."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import tomllib
from apscheduler.triggers.cron import CronTrigger
from loguru import logger


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    base_delay_seconds: float = 5.0
    multiplier: float = 2.0
    max_delay_seconds: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""

        delay = self.base_delay_seconds * (self.multiplier ** max(attempt - 1, 0))
        if self.max_delay_seconds:
            delay = min(delay, self.max_delay_seconds)
        return max(delay, 0.0)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=max(int(payload.get("max_attempts") or 1), 1),
            base_delay_seconds=max(float(payload.get("base_backoff_seconds", 5.0) or 0), 0.0),
            multiplier=max(float(payload.get("backoff_multiplier", 2.0) or 1), 1.0),
            max_delay_seconds=max(float(payload.get("max_backoff_seconds", 60.0) or 0), 0.0),
        )


@dataclass(slots=True)
class JobDefinition:
    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]

    def select(self, job_ids: Iterable[str]) -> list[JobDefinition]:
        """Enabled jobs, narrowed to ``job_ids`` when that list is non-empty."""

        wanted = {job_id for job_id in job_ids if job_id}
        return [job for job in self.jobs if job.enabled and (not wanted or job.id in wanted)]

    def get(self, job_id: str) -> JobDefinition | None:
        return next((job for job in self.jobs if job.id == job_id), None)


def _parse_job(key: str, payload: Any) -> JobDefinition | None:
    if not isinstance(payload, dict):
        return None
    task, cron = payload.get("task"), payload.get("cron")
    if not isinstance(task, str) or not isinstance(cron, str):
        logger.warning("Skipping schedule entry without task or cron", job_id=key)
        return None
    try:
        CronTrigger.from_crontab(cron)
    except ValueError:
        logger.warning("Skipping schedule entry with invalid cron", job_id=key, cron=cron)
        return None

    kwargs = payload.get("kwargs")
    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=dict(kwargs) if isinstance(kwargs, dict) else {},
        enabled=bool(payload.get("enabled", True)),
        retry=RetryPolicy.from_mapping(payload),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs = [job for key, payload in data.get("jobs", {}).items() if (job := _parse_job(key, payload)) is not None]
    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "RetryPolicy", "ScheduleConfig", "load_job_definitions"]
