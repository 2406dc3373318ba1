from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from settlement_api.core.settings import Settings, settings
from settlement_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import MaintenanceJobScheduler
from .services.settlement import PendingTransactionStore, build_pending_store


APP_VERSION = "0.1.0"
SERVICE_NAME = "settlement-api"
_API_ROOT = Path(__file__).resolve().parent.parent.parent


def resolve_schedule_path(raw: str) -> Path:
    """Relative schedule paths are anchored at the ``apps/api`` directory."""

    path = Path(raw)
    return path if path.is_absolute() else _API_ROOT / path


def build_scheduler(config: Settings, pending_store: PendingTransactionStore) -> MaintenanceJobScheduler:
    return MaintenanceJobScheduler(
        session_factory=async_session,
        config_path=resolve_schedule_path(config.maintenance_schedule_path),
        job_ids=config.maintenance_job_ids,
        job_context={"pending_store": pending_store},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may pre-seed an in-memory store.
    pending_store = getattr(app.state, "pending_store", None) or build_pending_store(session_factory=async_session)
    app.state.pending_store = pending_store
    logger.info("Pending transaction store ready", backend=pending_store.name)

    scheduler = build_scheduler(settings, pending_store)
    app.state.maintenance_scheduler = scheduler
    if not settings.maintenance_scheduler_enabled:
        logger.info("Maintenance scheduler disabled", reason="maintenance_scheduler_enabled is false")
    else:
        try:
            scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Maintenance scheduler failed to start", error=str(exc))

    try:
        yield
    finally:
        await scheduler.stop()
        await pending_store.close()


def create_app() -> FastAPI:
    """Application factory for the settlement FastAPI service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        json_output=settings.log_json,
    )

    app = FastAPI(
        title="Points Settlement API",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    if settings.otel_enabled:
        configure_tracing(app, config=settings, service_name=SERVICE_NAME, service_version=APP_VERSION)

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "service": SERVICE_NAME, "environment": settings.environment, "version": APP_VERSION}

    return app
