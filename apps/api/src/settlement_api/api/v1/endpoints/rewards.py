"""Redemption catalog reads."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.api.dependencies.stores import get_settlement_processor
from settlement_api.db.session import get_session
from settlement_api.models.reward import Reward
from settlement_api.models.reward_claim import RewardClaim
from settlement_api.models.store import Store
from settlement_api.services.settlement import RedemptionCatalog, SettlementError, SettlementProcessor

from .schemas import TransactionRecordResponse, raise_settlement_http


router = APIRouter(prefix="/rewards", tags=["Rewards"])


class RewardResponse(BaseModel):
    id: int
    store_id: int
    name: str
    description: Optional[str]
    reward_type: str
    points_cost: float
    discount_value: Optional[float]
    free_item_product_id: Optional[int]
    buy_x_product_id: Optional[int]
    buy_x_quantity: Optional[int]
    get_y_product_id: Optional[int]
    get_y_quantity: Optional[int]
    start_date: Optional[date]
    end_date: Optional[date]
    is_active: bool

    @classmethod
    def from_model(cls, reward: Reward) -> "RewardResponse":
        return cls(
            id=reward.id,
            store_id=reward.store_id,
            name=reward.name,
            description=reward.description,
            reward_type=getattr(reward.reward_type, "value", reward.reward_type),
            points_cost=float(reward.points_cost or 0),
            discount_value=float(reward.discount_value) if reward.discount_value is not None else None,
            free_item_product_id=reward.free_item_product_id,
            buy_x_product_id=reward.buy_x_product_id,
            buy_x_quantity=reward.buy_x_quantity,
            get_y_product_id=reward.get_y_product_id,
            get_y_quantity=reward.get_y_quantity,
            start_date=reward.start_date,
            end_date=reward.end_date,
            is_active=bool(reward.is_active),
        )


class AvailableRewardsResponse(BaseModel):
    customer_id: int
    store_id: int
    balance: float
    rewards: List[RewardResponse]


class RedeemRewardRequest(BaseModel):
    customer_id: int
    reward_id: int
    store_id: int


class RedeemRewardResponse(BaseModel):
    reference_number: str
    claim_id: str
    reward_id: int
    store_id: int
    points_spent: float
    remaining_points: float
    total_redeemed: float


class RewardClaimResponse(BaseModel):
    id: str
    reward_id: int
    reward_name: str
    reward_type: str
    store_id: int
    store_name: str
    reference_number: str
    points_spent: float
    is_redeemed: bool
    claimed_at: Optional[datetime]

    @classmethod
    def from_row(cls, claim: RewardClaim, reward: Reward, store: Store) -> "RewardClaimResponse":
        return cls(
            id=str(claim.id),
            reward_id=reward.id,
            reward_name=reward.name,
            reward_type=getattr(reward.reward_type, "value", reward.reward_type),
            store_id=store.id,
            store_name=store.name,
            reference_number=claim.reference_number,
            points_spent=float(claim.points_spent or 0),
            is_redeemed=bool(claim.is_redeemed),
            claimed_at=claim.claimed_at,
        )


@router.get("", response_model=List[RewardResponse])
async def list_active_rewards(session: AsyncSession = Depends(get_session)) -> List[RewardResponse]:
    rewards = await RedemptionCatalog(session).list_active_rewards()
    return [RewardResponse.from_model(reward) for reward in rewards]


@router.get("/store/{store_id}", response_model=List[RewardResponse])
async def list_store_rewards(store_id: int, session: AsyncSession = Depends(get_session)) -> List[RewardResponse]:
    """Active rewards for a store, with date windows applied at read time."""

    rewards = await RedemptionCatalog(session).list_store_rewards(store_id)
    return [RewardResponse.from_model(reward) for reward in rewards]


@router.get("/customer/{customer_id}/available", response_model=AvailableRewardsResponse)
async def list_available_rewards(
    customer_id: int,
    store_id: int = Query(...),
    session: AsyncSession = Depends(get_session),
) -> AvailableRewardsResponse:
    rewards, balance = await RedemptionCatalog(session).list_available_for_customer(customer_id, store_id)
    return AvailableRewardsResponse(
        customer_id=customer_id,
        store_id=store_id,
        balance=float(balance),
        rewards=[RewardResponse.from_model(reward) for reward in rewards],
    )


@router.post("/redeem", response_model=RedeemRewardResponse, status_code=status.HTTP_201_CREATED)
async def redeem_reward(
    payload: RedeemRewardRequest,
    processor: SettlementProcessor = Depends(get_settlement_processor),
) -> RedeemRewardResponse:
    """Spend a customer's store points on a reward outside of any cart."""

    try:
        redemption = await processor.redeem_reward(
            customer_id=payload.customer_id,
            reward_id=payload.reward_id,
            store_id=payload.store_id,
        )
    except SettlementError as exc:
        raise_settlement_http(exc)
    return RedeemRewardResponse(
        reference_number=redemption.reference_number,
        claim_id=str(redemption.claim.id),
        reward_id=payload.reward_id,
        store_id=payload.store_id,
        points_spent=float(redemption.claim.points_spent),
        remaining_points=float(redemption.balance.total_points),
        total_redeemed=float(redemption.balance.redeemed_points),
    )


@router.get("/customer/{customer_id}/history", response_model=List[RewardClaimResponse])
async def get_redemption_history(
    customer_id: int, session: AsyncSession = Depends(get_session)
) -> List[RewardClaimResponse]:
    rows = await RedemptionCatalog(session).list_claims(customer_id)
    return [RewardClaimResponse.from_row(claim, reward, store) for claim, reward, store in rows]


@router.get("/owner/{owner_id}/redemptions", response_model=List[TransactionRecordResponse])
async def get_store_redemptions(
    owner_id: int, session: AsyncSession = Depends(get_session)
) -> List[TransactionRecordResponse]:
    """Redemption lines across every store the owner runs."""

    records = await RedemptionCatalog(session).list_owner_redemptions(owner_id)
    return [TransactionRecordResponse.from_model(record) for record in records]


@router.get("/{reward_id}", response_model=RewardResponse)
async def get_reward(reward_id: int, session: AsyncSession = Depends(get_session)) -> RewardResponse:
    try:
        reward = await RedemptionCatalog(session).get_reward(reward_id)
    except SettlementError as exc:
        raise_settlement_http(exc)
    return RewardResponse.from_model(reward)
