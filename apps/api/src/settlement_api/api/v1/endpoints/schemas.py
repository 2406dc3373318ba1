"""Response models shared by settlement endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, NoReturn, Optional
from uuid import UUID

from fastapi import HTTPException
from pydantic import BaseModel

from settlement_api.models.transaction import TransactionRecord, TransactionSettlement
from settlement_api.services.settlement import BalanceSnapshot, SettlementError


def raise_settlement_http(exc: SettlementError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.as_detail()) from exc


class BalanceResponse(BaseModel):
    user_id: int
    store_id: int
    total_points: float
    redeemed_points: float

    @classmethod
    def from_snapshot(cls, snapshot: BalanceSnapshot) -> "BalanceResponse":
        return cls(
            user_id=snapshot.user_id,
            store_id=snapshot.store_id,
            total_points=float(snapshot.total_points),
            redeemed_points=float(snapshot.redeemed_points),
        )


class TransactionRecordResponse(BaseModel):
    id: UUID
    reference_number: str
    line_number: int
    transaction_type: str
    product_id: Optional[int]
    quantity: int
    unit_price: float
    points_delta: float
    is_reward_line: bool
    reward_id: Optional[int]
    customer_id: int
    vendor_id: int
    store_id: int
    created_at: Optional[datetime]

    @classmethod
    def from_model(cls, record: TransactionRecord) -> "TransactionRecordResponse":
        return cls(
            id=record.id,
            reference_number=record.reference_number,
            line_number=record.line_number,
            transaction_type=getattr(record.transaction_type, "value", record.transaction_type),
            product_id=record.product_id,
            quantity=record.quantity,
            unit_price=float(record.unit_price or 0),
            points_delta=float(record.points_delta or 0),
            is_reward_line=bool(record.is_reward_line),
            reward_id=record.reward_id,
            customer_id=record.customer_id,
            vendor_id=record.vendor_id,
            store_id=record.store_id,
            created_at=record.created_at,
        )


class TransactionSummaryResponse(BaseModel):
    reference_number: str
    short_code: Optional[str]
    customer_id: int
    vendor_id: int
    store_id: int
    reward_id: Optional[int]
    total_amount: float
    total_points: float
    net_points: float
    redeemed_points: float
    settled_at: Optional[datetime]
    records: List[TransactionRecordResponse]

    @classmethod
    def from_models(
        cls,
        settlement: TransactionSettlement,
        records: List[TransactionRecord],
    ) -> "TransactionSummaryResponse":
        return cls(
            reference_number=settlement.reference_number,
            short_code=settlement.short_code,
            customer_id=settlement.customer_id,
            vendor_id=settlement.vendor_id,
            store_id=settlement.store_id,
            reward_id=settlement.reward_id,
            total_amount=float(settlement.total_amount or 0),
            total_points=float(settlement.total_points or 0),
            net_points=float(settlement.net_points or 0),
            redeemed_points=float(settlement.redeemed_points or 0),
            settled_at=settlement.settled_at,
            records=[TransactionRecordResponse.from_model(record) for record in records],
        )


__all__ = [
    "BalanceResponse",
    "TransactionRecordResponse",
    "TransactionSummaryResponse",
    "raise_settlement_http",
]
