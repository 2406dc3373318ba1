"""Points balance inspection and reconciliation endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.api.dependencies.security import require_service_api_key
from settlement_api.db.session import get_session
from settlement_api.models.transaction import TransactionRecord
from settlement_api.services.settlement import (
    BalanceLedger,
    PointsLedgerReconciler,
    ReconciliationReport,
)

from .schemas import BalanceResponse, TransactionRecordResponse


router = APIRouter(prefix="/points", tags=["Points"])


class ReconciledBalanceResponse(BaseModel):
    user_id: int
    store_id: int
    previous_total: float
    total_points: float
    redeemed_points: float
    corrected: bool


class ReconciliationResponse(BaseModel):
    checked: int
    corrected: int
    balances: List[ReconciledBalanceResponse]


class PointsCheckResponse(BaseModel):
    user_id: int
    balances: List[BalanceResponse]
    recent_records: List[TransactionRecordResponse]


def _report_response(report: ReconciliationReport) -> ReconciliationResponse:
    return ReconciliationResponse(
        checked=len(report.balances),
        corrected=report.corrected,
        balances=[
            ReconciledBalanceResponse(
                user_id=entry.user_id,
                store_id=entry.store_id,
                previous_total=float(entry.previous_total),
                total_points=float(entry.total_points),
                redeemed_points=float(entry.redeemed_points),
                corrected=entry.corrected,
            )
            for entry in report.balances
        ],
    )


@router.post(
    "/sync/{user_id}",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_service_api_key)],
)
async def sync_user_points(user_id: int, session: AsyncSession = Depends(get_session)) -> ReconciliationResponse:
    """Rebuild one user's balances from their transaction history."""

    report = await PointsLedgerReconciler(session).reconcile_user(user_id)
    return _report_response(report)


@router.post(
    "/sync-all",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_service_api_key)],
)
async def sync_all_points(session: AsyncSession = Depends(get_session)) -> ReconciliationResponse:
    report = await PointsLedgerReconciler(session).reconcile_all()
    return _report_response(report)


@router.get("/check/{user_id}", response_model=PointsCheckResponse)
async def check_user_points(
    user_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> PointsCheckResponse:
    """Balances alongside the most recent transaction lines."""

    balances = await BalanceLedger(session).list_balances(user_id)
    result = await session.execute(
        select(TransactionRecord)
        .where(TransactionRecord.customer_id == user_id)
        .order_by(TransactionRecord.created_at.desc(), TransactionRecord.line_number.asc())
        .limit(limit)
    )
    return PointsCheckResponse(
        user_id=user_id,
        balances=[BalanceResponse.from_snapshot(balance) for balance in balances],
        recent_records=[TransactionRecordResponse.from_model(record) for record in result.scalars()],
    )


@router.get("/{user_id}", response_model=List[BalanceResponse])
async def get_user_points(user_id: int, session: AsyncSession = Depends(get_session)) -> List[BalanceResponse]:
    balances = await BalanceLedger(session).list_balances(user_id)
    return [BalanceResponse.from_snapshot(balance) for balance in balances]
