from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.core.settings import settings
from settlement_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/health/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    pending_store = getattr(request.app.state, "pending_store", None)
    components["pending_store"] = ComponentStatus(
        status="ready",
        detail=f"Backend: {pending_store.name if pending_store is not None else settings.pending_store_backend}",
    )

    scheduler = getattr(request.app.state, "maintenance_scheduler", None)
    if settings.maintenance_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        detail = None if running else "Maintenance scheduler not running"
        failing = [
            job["id"]
            for job in scheduler.health()["jobs"]
            if job.get("metrics") and job["metrics"].get("last_error")
        ]
        scheduler_status: Literal["ready", "starting", "disabled", "error", "degraded"] = "ready" if running else "starting"
        if failing:
            scheduler_status = "degraded"
            detail = f"Jobs failing: {', '.join(failing)}"
        if scheduler_status != "ready" and status == "ready":
            status = "degraded"
        components["maintenance_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["maintenance_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Maintenance scheduler disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
