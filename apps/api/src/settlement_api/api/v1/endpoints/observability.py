"""Observability endpoints for settlement metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from settlement_api.api.dependencies.security import require_service_api_key
from settlement_api.observability.settlement import get_settlement_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/settlement",
    dependencies=[Depends(require_service_api_key)],
    summary="Settlement observability snapshot",
)
async def get_settlement_snapshot() -> dict[str, object]:
    return get_settlement_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_service_api_key)],
    summary="Prometheus-formatted settlement metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_settlement_store().snapshot()
    lines: list[str] = []
    for outcome in ("settled", "replayed", "rejected", "compensated"):
        lines.extend(
            _format_metric(
                f"settlement_transactions_{outcome}_total",
                f"Settlements {outcome}",
                snapshot.settlements.get(outcome, 0),
            )
        )
    for code, count in sorted(snapshot.rejections.items()):
        lines.extend(
            _format_metric("settlement_rejections_total", "Settlement rejections by error code", count, {"code": code})
        )
    lines.extend(_format_metric("settlement_points_issued_total", "Points issued by settlements", snapshot.points.get("issued", 0.0)))
    lines.extend(_format_metric("settlement_points_spent_total", "Points spent by settlements", snapshot.points.get("spent", 0.0)))
    for event, count in sorted(snapshot.pending.items()):
        lines.extend(
            _format_metric("settlement_pending_codes_total", "Pending code lifecycle events", count, {"event": event})
        )
    lines.extend(
        _format_metric("settlement_reconciliation_runs_total", "Reconciler runs", snapshot.reconciliation.get("runs", 0))
    )
    lines.extend(
        _format_metric(
            "settlement_reconciliation_corrected_total",
            "Balances corrected by the reconciler",
            snapshot.reconciliation.get("corrected", 0),
        )
    )
    for job_id, state in sorted(snapshot.jobs.items()):
        lines.extend(_format_metric("settlement_job_runs_total", "Maintenance job runs", int(state.get("runs", 0)), {"job": job_id}))
        lines.extend(
            _format_metric("settlement_job_failures_total", "Maintenance job failures", int(state.get("failures", 0)), {"job": job_id})
        )
    return PlainTextResponse("\n".join(lines) + "\n")
