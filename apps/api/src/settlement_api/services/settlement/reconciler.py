"""Rebuild points balances from the transaction history."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from loguru import logger
from sqlalchemy import select, union
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.models.points import PointsBalance
from settlement_api.models.transaction import TransactionRecord
from settlement_api.observability.settlement import get_settlement_store
from settlement_api.observability.tracing import get_tracer

from .ledger import BalanceLedger
from .rewards import summarize_lines

_tracer = get_tracer(__name__)


class ReconciliationConflict(RuntimeError):
    """Raised when a balance kept changing underneath the reconciler."""


@dataclass(slots=True)
class BalanceReconciliation:
    user_id: int
    store_id: int
    previous_total: Decimal
    previous_redeemed: Decimal
    total_points: Decimal
    redeemed_points: Decimal

    @property
    def corrected(self) -> bool:
        return self.previous_total != self.total_points or self.previous_redeemed != self.redeemed_points

    def as_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "store_id": self.store_id,
            "previous_total": str(self.previous_total),
            "previous_redeemed": str(self.previous_redeemed),
            "total_points": str(self.total_points),
            "redeemed_points": str(self.redeemed_points),
            "corrected": self.corrected,
        }


@dataclass(slots=True)
class ReconciliationReport:
    balances: list[BalanceReconciliation] = field(default_factory=list)

    @property
    def corrected(self) -> int:
        return sum(1 for entry in self.balances if entry.corrected)

    def as_dict(self) -> dict[str, object]:
        return {
            "balances": [entry.as_dict() for entry in self.balances],
            "checked": len(self.balances),
            "corrected": self.corrected,
        }


class PointsLedgerReconciler:
    """Recompute per-store balances from committed transaction rows.

    Each overwrite is conditional on the balance version read before the
    history, so a settlement landing mid-pass forces a re-read instead of
    being overwritten.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: BalanceLedger | None = None,
        max_attempts: int = 5,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or BalanceLedger(db_session)
        self._max_attempts = max_attempts
        self._metrics = get_settlement_store()

    async def reconcile_user(self, user_id: int) -> ReconciliationReport:
        with _tracer.start_as_current_span("settlement.reconcile_user") as span:
            span.set_attribute("settlement.user_id", user_id)
            report = ReconciliationReport()
            for store_id in await self._store_ids_for(user_id):
                report.balances.append(await self._reconcile_pair(user_id, store_id))
            self._metrics.record_reconciliation(balances=len(report.balances), corrected=report.corrected)
            logger.info(
                "Reconciled user points",
                user_id=user_id,
                checked=len(report.balances),
                corrected=report.corrected,
            )
            return report

    async def reconcile_all(self) -> ReconciliationReport:
        with _tracer.start_as_current_span("settlement.reconcile_all"):
            stmt = union(
                select(TransactionRecord.customer_id.label("user_id")),
                select(PointsBalance.user_id.label("user_id")),
            )
            result = await self._db.execute(stmt)
            user_ids = sorted({row.user_id for row in result})
            report = ReconciliationReport()
            for user_id in user_ids:
                for store_id in await self._store_ids_for(user_id):
                    report.balances.append(await self._reconcile_pair(user_id, store_id))
            self._metrics.record_reconciliation(balances=len(report.balances), corrected=report.corrected)
            logger.info("Reconciled all points", users=len(user_ids), checked=len(report.balances), corrected=report.corrected)
            return report

    async def _store_ids_for(self, user_id: int) -> list[int]:
        stmt = union(
            select(TransactionRecord.store_id.label("store_id")).where(TransactionRecord.customer_id == user_id),
            select(PointsBalance.store_id.label("store_id")).where(PointsBalance.user_id == user_id),
        )
        result = await self._db.execute(stmt)
        return sorted({row.store_id for row in result})

    async def _reconcile_pair(self, user_id: int, store_id: int) -> BalanceReconciliation:
        for attempt in range(1, self._max_attempts + 1):
            balance = await self._ledger.get_balance(user_id, store_id)
            expected_version = int(balance.version or 0) if balance is not None else None
            previous_total = Decimal(balance.total_points or 0) if balance is not None else Decimal("0")
            previous_redeemed = Decimal(balance.redeemed_points or 0) if balance is not None else Decimal("0")

            rows = await self._db.execute(
                select(TransactionRecord.transaction_type, TransactionRecord.points_delta).where(
                    TransactionRecord.customer_id == user_id,
                    TransactionRecord.store_id == store_id,
                )
            )
            total, redeemed = summarize_lines(rows.all())
            entry = BalanceReconciliation(
                user_id=user_id,
                store_id=store_id,
                previous_total=previous_total,
                previous_redeemed=previous_redeemed,
                total_points=total,
                redeemed_points=redeemed,
            )
            if balance is not None and not entry.corrected:
                await self._db.commit()
                return entry

            written = await self._ledger.overwrite(
                user_id,
                store_id,
                total_points=total,
                redeemed_points=redeemed,
                expected_version=expected_version,
            )
            if written:
                await self._db.commit()
                if entry.corrected:
                    logger.warning(
                        "Corrected points balance",
                        user_id=user_id,
                        store_id=store_id,
                        previous_total=str(previous_total),
                        total_points=str(total),
                    )
                return entry
            await self._db.rollback()
            logger.info("Reconciliation lost a version race", user_id=user_id, store_id=store_id, attempt=attempt)
        raise ReconciliationConflict(f"Balance for user {user_id} at store {store_id} kept changing")


__all__ = [
    "BalanceReconciliation",
    "PointsLedgerReconciler",
    "ReconciliationConflict",
    "ReconciliationReport",
]
