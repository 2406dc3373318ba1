"""Dependencies exposing the shared pending transaction store."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.db.session import get_session
from settlement_api.services.settlement import (
    PendingTransactionStore,
    SettlementProcessor,
    build_pending_store,
)


def get_pending_store(request: Request) -> PendingTransactionStore:
    store = getattr(request.app.state, "pending_store", None)
    if store is None:
        store = build_pending_store()
        request.app.state.pending_store = store
    return store


async def get_settlement_processor(
    session: AsyncSession = Depends(get_session),
    pending_store: PendingTransactionStore = Depends(get_pending_store),
) -> SettlementProcessor:
    return SettlementProcessor(session, pending_store)
