"""APScheduler host for the settlement maintenance jobs."""

from __future__ import annotations

import asyncio
import inspect
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from settlement_api.observability.settlement import get_settlement_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

JobCallable = Callable[..., Awaitable[Any]]


class MaintenanceJobScheduler:
    """Run pending-code purges and balance reconciliation on cron triggers.

    Jobs receive ``session_factory`` plus the shared ``job_context`` (the
    pending store) as keyword arguments. A job never overlaps with itself.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any],
        config_path: Path,
        job_ids: Iterable[str] = (),
        job_context: dict[str, Any] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._job_ids = list(job_ids)
        self._job_context = dict(job_context or {})
        self._jobs: dict[str, tuple[JobDefinition, JobCallable]] = {}
        self._scheduler: AsyncIOScheduler | None = None
        self._metrics = get_settlement_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config: ScheduleConfig = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.select(self._job_ids):
            func = self._resolve_callable(job)
            scheduler.add_job(
                self.execute,
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                args=(job, func),
                id=job.id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._jobs[job.id] = (job, func)
            logger.info("Registered maintenance job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._scheduler = scheduler
        logger.info("Maintenance job scheduler started", jobs=len(self._jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Maintenance job scheduler stopped")

    async def run_job(self, job_id: str) -> Any:
        """Run a registered job immediately, outside its cron slot."""

        try:
            job, func = self._jobs[job_id]
        except KeyError:
            raise KeyError(f"Maintenance job {job_id} is not registered") from None
        return await self.execute(job, func)

    def _resolve_callable(self, job: JobDefinition) -> JobCallable:
        module_name, _, attr = job.task.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {job.task}")
        func = getattr(import_module(module_name), attr, None)
        if func is None:
            raise AttributeError(f"Task {job.task} not found")
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"Task {job.task} must be an async function")
        return func

    async def execute(self, job: JobDefinition, func: JobCallable) -> Any:
        """Call ``func`` under the job's retry policy; failures are recorded, not raised."""

        policy = job.retry
        attempt = 0
        while True:
            attempt += 1
            try:
                summary = await func(session_factory=self._session_factory, **self._job_context, **job.kwargs)
            except Exception as exc:
                if attempt >= policy.max_attempts:
                    self._metrics.record_job_run(job.id, success=False, error=str(exc))
                    logger.exception("Maintenance job failed after retries", job_id=job.id, attempts=attempt)
                    return None
                delay = policy.delay_for(attempt)
                logger.warning("Maintenance job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                if delay:
                    await asyncio.sleep(delay)
                continue
            self._metrics.record_job_run(job.id, success=True)
            logger.info("Maintenance job completed", job_id=job.id, attempts=attempt, summary=summary)
            return summary

    def health(self) -> dict[str, object]:
        job_metrics = self._metrics.snapshot().jobs
        return {
            "running": self.is_running,
            "configured_jobs": len(self._jobs),
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.retry.max_attempts,
                    "metrics": job_metrics.get(job.id),
                }
                for job, _ in self._jobs.values()
            ],
        }


__all__ = ["MaintenanceJobScheduler"]
