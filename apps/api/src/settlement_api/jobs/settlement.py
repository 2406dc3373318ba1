"""Maintenance jobs for pending codes and points balances."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.observability.settlement import get_settlement_store
from settlement_api.services.settlement import (
    PendingTransactionStore,
    PointsLedgerReconciler,
    build_pending_store,
)

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def _open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def purge_expired_pending_transactions(
    *,
    session_factory: SessionFactory,
    pending_store: PendingTransactionStore | None = None,
    **_: Any,
) -> Dict[str, Any]:
    """Drop pending carts whose expiry has passed."""

    store = pending_store or build_pending_store(session_factory=session_factory)  # type: ignore[arg-type]
    purged = await store.purge_expired()
    if purged:
        get_settlement_store().record_pending_event("expired", purged)
    summary = {"backend": store.name, "purged": purged}
    logger.bind(summary=summary).info("Pending transaction sweep completed")
    return summary


async def reconcile_all_points(*, session_factory: SessionFactory, **_: Any) -> Dict[str, Any]:
    """Rebuild every points balance from the transaction history."""

    session = await _open_session(session_factory)
    async with session as managed_session:
        report = await PointsLedgerReconciler(managed_session).reconcile_all()
    summary = {"checked": len(report.balances), "corrected": report.corrected}
    logger.bind(summary=summary).info("Points reconciliation sweep completed")
    return summary


__all__ = ["purge_expired_pending_transactions", "reconcile_all_points"]
