"""Endpoints for creating, settling and inspecting transactions."""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from settlement_api.api.dependencies.stores import get_settlement_processor
from settlement_api.db.session import get_session
from settlement_api.models.transaction import TransactionSettlement
from settlement_api.services.settlement import (
    CartItem,
    SettlementError,
    SettlementProcessor,
    SettlementResult,
    encode_qr_payload,
)

from .schemas import BalanceResponse, TransactionSummaryResponse, raise_settlement_http


router = APIRouter(prefix="/transactions", tags=["Transactions"])


class CartItemRequest(BaseModel):
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    points_cost: Optional[Decimal] = Field(default=None, ge=0, description="Points that pay for this line instead of money")
    is_reward_line: bool = False

    def to_cart_item(self) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            points_cost=self.points_cost,
            is_reward_line=self.is_reward_line,
        )


class CreateTransactionRequest(BaseModel):
    vendor_id: int
    store_id: int
    items: List[CartItemRequest] = Field(..., min_length=1)
    reward_id: Optional[int] = None
    customer_id: Optional[int] = Field(default=None, description="Restrict settlement to this customer")
    ttl_seconds: Optional[int] = Field(default=None, gt=0, le=3600)


class CartLineResponse(BaseModel):
    product_id: Optional[int]
    product_name: Optional[str]
    quantity: int
    unit_price: float
    points_cost: Optional[float]
    is_reward_line: bool


class PendingTransactionResponse(BaseModel):
    reference_number: str
    short_code: str
    qr_payload: str
    expires_at: datetime
    vendor_id: int
    store_id: int
    reward_id: Optional[int]
    total_amount: float
    total_points: float
    items: List[CartLineResponse]


class ScanRequest(BaseModel):
    customer_id: int
    qr_data: str = Field(..., min_length=1, description="Scanned QR content: a cart payload or a short code")


class CodeRequest(BaseModel):
    customer_id: int
    short_code: str = Field(..., min_length=1, max_length=16)


class SettlementResponse(TransactionSummaryResponse):
    replayed: bool
    balance: BalanceResponse
    notes: List[str] = Field(default_factory=list)


def _cart_lines(items: List[CartItem]) -> List[CartLineResponse]:
    return [
        CartLineResponse(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=float(item.unit_price),
            points_cost=float(item.points_cost) if item.points_cost is not None else None,
            is_reward_line=item.is_reward_line,
        )
        for item in items
    ]


def _settlement_response(result: SettlementResult, response: Response | None = None) -> SettlementResponse:
    if response is not None and result.replayed:
        response.status_code = status.HTTP_200_OK
    summary = TransactionSummaryResponse.from_models(result.settlement, result.records)
    return SettlementResponse(
        **summary.model_dump(),
        replayed=result.replayed,
        balance=BalanceResponse.from_snapshot(result.balance),
        notes=result.notes,
    )


def _looks_like_payload(raw: str) -> Dict[str, Any] | None:
    candidate = raw.strip()
    if not candidate.startswith("{"):
        return None
    try:
        decoded = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_request", "message": "Scanned payload is not valid JSON"}) from exc
    return decoded if isinstance(decoded, dict) else None


@router.post("", response_model=PendingTransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: CreateTransactionRequest,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> PendingTransactionResponse:
    """Vendor finalizes a cart and receives a short code plus QR payload."""

    try:
        created = await processor.create_pending_transaction(
            vendor_id=payload.vendor_id,
            store_id=payload.store_id,
            items=[item.to_cart_item() for item in payload.items],
            reward_id=payload.reward_id,
            customer_id=payload.customer_id,
            ttl_seconds=payload.ttl_seconds,
        )
    except SettlementError as exc:
        raise_settlement_http(exc)

    return PendingTransactionResponse(
        reference_number=created.reference_number,
        short_code=created.short_code,
        qr_payload=created.qr_payload,
        expires_at=created.expires_at,
        vendor_id=payload.vendor_id,
        store_id=payload.store_id,
        reward_id=payload.reward_id,
        total_amount=float(created.resolved.total_amount),
        total_points=float(created.resolved.total_points),
        items=_cart_lines(created.resolved.items),
    )


@router.post("/scan", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
async def settle_scanned(
    payload: ScanRequest,
    response: Response,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> SettlementResponse:
    """Settle a scanned QR code carrying either the full cart or a short code."""

    cart_payload = _looks_like_payload(payload.qr_data)
    try:
        if cart_payload is not None:
            result = await processor.settle_payload(cart_payload, customer_id=payload.customer_id)
        else:
            result = await processor.settle_code(payload.qr_data, customer_id=payload.customer_id)
    except SettlementError as exc:
        raise_settlement_http(exc)
    return _settlement_response(result, response)


@router.post("/code", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
async def settle_code(
    payload: CodeRequest,
    response: Response,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> SettlementResponse:
    """Settle a manually entered short code."""

    try:
        result = await processor.settle_code(payload.short_code, customer_id=payload.customer_id)
    except SettlementError as exc:
        raise_settlement_http(exc)
    return _settlement_response(result, response)


@router.get("/pending/{short_code}", response_model=PendingTransactionResponse)
async def get_pending_transaction(
    short_code: str,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> PendingTransactionResponse:
    try:
        entry = await processor.get_pending(short_code)
    except SettlementError as exc:
        raise_settlement_http(exc)
    cart = entry.payload
    return PendingTransactionResponse(
        reference_number=entry.reference_number,
        short_code=entry.short_code,
        qr_payload=encode_qr_payload(cart),
        expires_at=entry.expires_at,
        vendor_id=cart.vendor_id,
        store_id=cart.store_id,
        reward_id=cart.reward.reward_id if cart.reward is not None else None,
        total_amount=float(cart.total_amount),
        total_points=float(cart.total_points),
        items=_cart_lines(cart.items),
    )


@router.delete("/pending/{short_code}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_pending_transaction(
    short_code: str,
    vendor_id: Optional[int] = Query(default=None),
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> Response:
    """Cancel a live code; removing an unknown code is not an error."""

    try:
        await processor.cancel_pending(short_code, vendor_id=vendor_id)
    except SettlementError as exc:
        raise_settlement_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/user/{user_id}", response_model=List[TransactionSummaryResponse])
async def list_user_transactions(
    user_id: int,
    role: Literal["customer", "vendor"] = Query(default="customer"),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> List[TransactionSummaryResponse]:
    column = TransactionSettlement.customer_id if role == "customer" else TransactionSettlement.vendor_id
    stmt = (
        select(TransactionSettlement)
        .options(selectinload(TransactionSettlement.records))
        .where(column == user_id)
        .order_by(TransactionSettlement.settled_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [TransactionSummaryResponse.from_models(row, list(row.records)) for row in result.scalars()]


@router.get("/store/{store_id}", response_model=List[TransactionSummaryResponse])
async def list_store_transactions(
    store_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> List[TransactionSummaryResponse]:
    stmt = (
        select(TransactionSettlement)
        .options(selectinload(TransactionSettlement.records))
        .where(TransactionSettlement.store_id == store_id)
        .order_by(TransactionSettlement.settled_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [TransactionSummaryResponse.from_models(row, list(row.records)) for row in result.scalars()]


@router.get("/{reference_number}", response_model=SettlementResponse)
async def get_transaction(
    reference_number: str,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> SettlementResponse:
    result = await processor.get_settlement(reference_number)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "transaction_not_found", "message": "Transaction not found"},
        )
    return _settlement_response(result)
