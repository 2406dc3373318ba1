"""Read side of the reward catalog with date-window activation."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.models.points import PointsBalance
from settlement_api.models.reward import Reward
from settlement_api.models.reward_claim import RewardClaim
from settlement_api.models.store import Store
from settlement_api.models.transaction import TransactionRecord, TransactionType

from .exceptions import RewardNotFound, RewardUnavailable
from .rewards import RewardDescriptor


def _window_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _window_end(value: date) -> datetime:
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def compute_active_flag(reward: Reward, now: datetime | None = None) -> bool:
    """Return whether ``reward`` is active at ``now``.

    Rewards carrying both dates are active from the start of ``start_date``
    to the end of ``end_date``; others keep their stored flag.
    """

    if reward.start_date is None or reward.end_date is None:
        return bool(reward.is_active)
    moment = now or datetime.now(timezone.utc)
    return _window_start(reward.start_date) <= moment <= _window_end(reward.end_date)


class RedemptionCatalog:
    """Expose rewards, refreshing their active flag on every read."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def _refresh(self, rewards: Sequence[Reward], now: datetime | None = None) -> list[Reward]:
        moment = now or datetime.now(timezone.utc)
        flipped = 0
        for reward in rewards:
            active = compute_active_flag(reward, moment)
            if bool(reward.is_active) != active:
                reward.is_active = active
                flipped += 1
        if flipped:
            await self._db.commit()
            logger.info("Refreshed reward activity", flipped=flipped)
        return list(rewards)

    async def list_store_rewards(self, store_id: int, *, now: datetime | None = None) -> list[Reward]:
        stmt = select(Reward).where(Reward.store_id == store_id).order_by(Reward.created_at.desc(), Reward.id.desc())
        result = await self._db.execute(stmt)
        rewards = await self._refresh(list(result.scalars()), now)
        return [reward for reward in rewards if reward.is_active]

    async def list_active_rewards(self, *, now: datetime | None = None) -> list[Reward]:
        result = await self._db.execute(select(Reward).order_by(Reward.store_id.asc(), Reward.id.asc()))
        rewards = await self._refresh(list(result.scalars()), now)
        return [reward for reward in rewards if reward.is_active]

    async def get_reward(self, reward_id: int, *, now: datetime | None = None) -> Reward:
        reward = await self._db.get(Reward, reward_id)
        if reward is None:
            raise RewardNotFound()
        await self._refresh([reward], now)
        return reward

    async def require_redeemable(self, reward_id: int, store_id: int, *, now: datetime | None = None) -> RewardDescriptor:
        """Return a descriptor for an active reward belonging to ``store_id``."""

        reward = await self.get_reward(reward_id, now=now)
        if reward.store_id != store_id:
            raise RewardUnavailable("Reward does not belong to this store")
        if not reward.is_active:
            raise RewardUnavailable()
        return RewardDescriptor.from_model(reward)

    async def list_available_for_customer(
        self,
        customer_id: int,
        store_id: int,
        *,
        now: datetime | None = None,
    ) -> tuple[list[Reward], Decimal]:
        """Return active store rewards the customer can afford and their balance."""

        rewards = await self.list_store_rewards(store_id, now=now)
        result = await self._db.execute(
            select(PointsBalance.total_points).where(
                PointsBalance.user_id == customer_id,
                PointsBalance.store_id == store_id,
            )
        )
        balance = Decimal(result.scalar_one_or_none() or 0)
        affordable = [reward for reward in rewards if Decimal(reward.points_cost or 0) <= balance]
        return affordable, balance

    async def list_claims(self, customer_id: int) -> list[tuple[RewardClaim, Reward, Store]]:
        """Return a customer's reward claims, newest first."""

        stmt = (
            select(RewardClaim, Reward, Store)
            .join(Reward, Reward.id == RewardClaim.reward_id)
            .join(Store, Store.id == RewardClaim.store_id)
            .where(RewardClaim.user_id == customer_id)
            .order_by(RewardClaim.claimed_at.desc())
        )
        result = await self._db.execute(stmt)
        return [(claim, reward, store) for claim, reward, store in result.all()]

    async def list_owner_redemptions(self, owner_id: int) -> list[TransactionRecord]:
        """Return redemption lines written at any store ``owner_id`` owns, newest first."""

        stmt = (
            select(TransactionRecord)
            .join(Store, Store.id == TransactionRecord.store_id)
            .where(
                Store.owner_id == owner_id,
                TransactionRecord.transaction_type == TransactionType.REDEMPTION,
            )
            .order_by(TransactionRecord.created_at.desc(), TransactionRecord.line_number.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars())


__all__ = ["RedemptionCatalog", "compute_active_flag"]
