"""Versioned points balance updates."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.core.settings import settings
from settlement_api.models.points import PointsBalance

from .exceptions import InsufficientPoints
from .rewards import ZERO, round2


class BalanceUpdateConflict(RuntimeError):
    """Raised when a versioned update keeps losing to concurrent writers."""


@dataclass(slots=True)
class BalanceSnapshot:
    user_id: int
    store_id: int
    total_points: Decimal
    redeemed_points: Decimal
    version: int

    @classmethod
    def from_model(cls, balance: PointsBalance) -> "BalanceSnapshot":
        return cls(
            user_id=balance.user_id,
            store_id=balance.store_id,
            total_points=Decimal(balance.total_points or 0),
            redeemed_points=Decimal(balance.redeemed_points or 0),
            version=int(balance.version or 0),
        )

    @classmethod
    def empty(cls, user_id: int, store_id: int) -> "BalanceSnapshot":
        return cls(user_id=user_id, store_id=store_id, total_points=ZERO, redeemed_points=ZERO, version=0)

    def as_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "store_id": self.store_id,
            "total_points": str(self.total_points),
            "redeemed_points": str(self.redeemed_points),
        }


class BalanceLedger:
    """Read and mutate ``points_balances`` rows with optimistic concurrency.

    Writes run inside the caller's transaction. Each update is conditional on
    the version that was read, and a lost race is retried against a fresh read.
    """

    def __init__(self, db_session: AsyncSession, *, max_attempts: int | None = None) -> None:
        self._db = db_session
        self._max_attempts = max_attempts or settings.balance_update_max_attempts

    async def get_balance(self, user_id: int, store_id: int) -> PointsBalance | None:
        stmt = (
            select(PointsBalance)
            .where(PointsBalance.user_id == user_id, PointsBalance.store_id == store_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def snapshot(self, user_id: int, store_id: int) -> BalanceSnapshot:
        balance = await self.get_balance(user_id, store_id)
        if balance is None:
            return BalanceSnapshot.empty(user_id, store_id)
        return BalanceSnapshot.from_model(balance)

    async def list_balances(self, user_id: int) -> list[BalanceSnapshot]:
        result = await self._db.execute(
            select(PointsBalance).where(PointsBalance.user_id == user_id).order_by(PointsBalance.store_id.asc())
        )
        return [BalanceSnapshot.from_model(balance) for balance in result.scalars()]

    async def current_points(self, user_id: int, store_id: int) -> Decimal:
        return (await self.snapshot(user_id, store_id)).total_points

    async def _ensure_row(self, user_id: int, store_id: int) -> PointsBalance:
        balance = await self.get_balance(user_id, store_id)
        if balance is not None:
            return balance
        try:
            async with self._db.begin_nested():
                balance = PointsBalance(
                    user_id=user_id,
                    store_id=store_id,
                    total_points=ZERO,
                    redeemed_points=ZERO,
                    version=0,
                )
                self._db.add(balance)
                await self._db.flush()
        except IntegrityError:
            logger.warning("Detected race when creating points balance", user_id=user_id, store_id=store_id)
            balance = await self.get_balance(user_id, store_id)
            if balance is None:
                raise
        return balance

    async def apply(
        self,
        user_id: int,
        store_id: int,
        *,
        net_delta: Decimal,
        redeemed: Decimal = ZERO,
    ) -> BalanceSnapshot:
        """Add ``net_delta`` to the balance and ``redeemed`` to the spend counter."""

        for attempt in range(1, self._max_attempts + 1):
            balance = await self._ensure_row(user_id, store_id)
            current_total = Decimal(balance.total_points or 0)
            new_total = round2(current_total + net_delta)
            if new_total < ZERO:
                raise InsufficientPoints(required=round2(-net_delta), available=current_total)
            new_redeemed = round2(Decimal(balance.redeemed_points or 0) + redeemed)
            if await self._conditional_write(balance, new_total, new_redeemed):
                logger.debug(
                    "Applied points delta",
                    user_id=user_id,
                    store_id=store_id,
                    net_delta=str(net_delta),
                    attempt=attempt,
                )
                return BalanceSnapshot(
                    user_id=user_id,
                    store_id=store_id,
                    total_points=new_total,
                    redeemed_points=new_redeemed,
                    version=int(balance.version or 0) + 1,
                )
            logger.info("Points balance version conflict", user_id=user_id, store_id=store_id, attempt=attempt)
        raise BalanceUpdateConflict(f"Balance for user {user_id} at store {store_id} kept changing")

    async def overwrite(
        self,
        user_id: int,
        store_id: int,
        *,
        total_points: Decimal,
        redeemed_points: Decimal,
        expected_version: int | None,
    ) -> bool:
        """Replace the balance if it is still at ``expected_version``.

        ``expected_version`` of ``None`` means no row was present when the
        caller read the history. Returns ``False`` when a concurrent writer won.
        """

        balance = await self.get_balance(user_id, store_id)
        if balance is None:
            if expected_version is not None:
                return False
            try:
                async with self._db.begin_nested():
                    self._db.add(
                        PointsBalance(
                            user_id=user_id,
                            store_id=store_id,
                            total_points=total_points,
                            redeemed_points=redeemed_points,
                            version=1,
                        )
                    )
                    await self._db.flush()
            except IntegrityError:
                return False
            return True
        if expected_version is None or int(balance.version or 0) != expected_version:
            return False
        return await self._conditional_write(balance, total_points, redeemed_points)

    async def _conditional_write(self, balance: PointsBalance, total: Decimal, redeemed: Decimal) -> bool:
        version = int(balance.version or 0)
        result = await self._db.execute(
            update(PointsBalance)
            .where(PointsBalance.id == balance.id, PointsBalance.version == version)
            .values(total_points=total, redeemed_points=redeemed, version=version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


__all__ = ["BalanceLedger", "BalanceSnapshot", "BalanceUpdateConflict"]
