"""Settlement state machine turning pending carts into ledger rows."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from settlement_api.core.settings import settings
from settlement_api.models.reward_claim import RewardClaim
from settlement_api.models.transaction import TransactionRecord, TransactionSettlement, TransactionType
from settlement_api.observability.settlement import get_settlement_store
from settlement_api.observability.tracing import get_tracer

from .catalog import RedemptionCatalog
from .codes import allocate_short_code, generate_reference_number, normalize_short_code
from .directory import SettlementDirectory
from .exceptions import (
    CodeInvalidOrExpired,
    InsufficientPoints,
    InvalidSettlementRequest,
    PendingCodeExists,
    PendingTransactionNotFound,
    PointsUpdateFailed,
    RewardAlreadyClaimed,
    SettlementConflict,
    SettlementError,
    ShortCodeExhausted,
    VendorNotFound,
)
from .ledger import BalanceLedger, BalanceSnapshot, BalanceUpdateConflict
from .pending_store import (
    PendingEntry,
    PendingPayload,
    PendingTransactionStore,
    decode_qr_payload,
    encode_qr_payload,
)
from .rewards import CartItem, ResolvedCart, RewardDescriptor, RewardResolver, round2

_tracer = get_tracer(__name__)

# Tolerated clock difference between the vendor device and the server.
_CLOCK_SKEW = timedelta(seconds=60)


class SettlementState(str, Enum):
    PENDING = "pending"
    SETTLING = "settling"
    SETTLED = "settled"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(slots=True)
class PendingTransactionCreated:
    """Result of a vendor finalizing a cart."""

    reference_number: str
    short_code: str
    qr_payload: str
    expires_at: datetime
    payload: PendingPayload
    resolved: ResolvedCart


@dataclass(slots=True)
class SettlementResult:
    """Committed transaction plus the balance it produced."""

    settlement: TransactionSettlement
    records: list[TransactionRecord]
    balance: BalanceSnapshot
    replayed: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def reference_number(self) -> str:
        return self.settlement.reference_number


@dataclass(slots=True)
class RewardRedemption:
    """Committed standalone reward redemption."""

    settlement: TransactionSettlement
    record: TransactionRecord
    claim: RewardClaim
    balance: BalanceSnapshot

    @property
    def reference_number(self) -> str:
        return self.settlement.reference_number


class SettlementProcessor:
    """Validate, price and commit carts exactly once per reference number."""

    def __init__(
        self,
        db_session: AsyncSession,
        pending_store: PendingTransactionStore,
        *,
        resolver: RewardResolver | None = None,
        ledger: BalanceLedger | None = None,
        directory: SettlementDirectory | None = None,
        catalog: RedemptionCatalog | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._db = db_session
        self._pending = pending_store
        self._resolver = resolver or RewardResolver()
        self._ledger = ledger or BalanceLedger(db_session)
        self._directory = directory or SettlementDirectory(db_session)
        self._catalog = catalog or RedemptionCatalog(db_session)
        self._ttl_seconds = ttl_seconds or settings.pending_transaction_ttl_seconds
        self._metrics = get_settlement_store()

    # Pending lifecycle

    async def create_pending_transaction(
        self,
        *,
        vendor_id: int,
        store_id: int,
        items: Sequence[CartItem],
        reward_id: int | None = None,
        customer_id: int | None = None,
        ttl_seconds: int | None = None,
    ) -> PendingTransactionCreated:
        """Validate a vendor cart and park it under a fresh short code."""

        await self._directory.require_vendor_for_store(vendor_id, store_id)
        reward: RewardDescriptor | None = None
        if reward_id is not None:
            reward = await self._catalog.require_redeemable(reward_id, store_id)
        base_items = await self._catalog_items(store_id, items)
        resolved = self._resolver.resolve(base_items, reward)

        ttl = ttl_seconds or self._ttl_seconds
        for attempt in range(1, settings.short_code_max_attempts + 1):
            short_code = await allocate_short_code(self._pending)
            payload = PendingPayload(
                reference_number=generate_reference_number(),
                short_code=short_code,
                vendor_id=vendor_id,
                store_id=store_id,
                customer_id=customer_id,
                items=base_items,
                reward=reward,
                total_amount=resolved.total_amount,
                total_points=resolved.total_points,
            )
            try:
                entry = await self._pending.put(short_code, payload, ttl_seconds=ttl)
            except PendingCodeExists:
                logger.info("Pending code or reference collided, regenerating", attempt=attempt)
                continue
            self._metrics.record_pending_event("issued")
            logger.info(
                "Created pending transaction",
                reference_number=payload.reference_number,
                short_code=short_code,
                vendor_id=vendor_id,
                store_id=store_id,
                reward_id=reward_id,
                total_amount=str(resolved.total_amount),
                state=SettlementState.PENDING.value,
            )
            return PendingTransactionCreated(
                reference_number=payload.reference_number,
                short_code=entry.short_code,
                qr_payload=encode_qr_payload(payload),
                expires_at=entry.expires_at,
                payload=payload,
                resolved=resolved,
            )
        raise ShortCodeExhausted()

    async def get_pending(self, short_code: str) -> PendingEntry:
        return await self._pending.get(short_code)

    async def cancel_pending(self, short_code: str, *, vendor_id: int | None = None) -> bool:
        """Remove a live code; vendors may only cancel their own carts."""

        code = normalize_short_code(short_code)
        if vendor_id is not None:
            try:
                entry = await self._pending.get(code)
            except PendingTransactionNotFound:
                return False
            if entry.payload.vendor_id != vendor_id:
                raise PendingTransactionNotFound()
        removed = await self._pending.remove(code)
        if removed:
            self._metrics.record_pending_event("cancelled")
            logger.info("Cancelled pending transaction", short_code=code, vendor_id=vendor_id)
        return removed

    # Entry points

    async def settle_code(self, short_code: str, *, customer_id: int) -> SettlementResult:
        """Settle a cart identified by a scanned or typed short code."""

        code = normalize_short_code(short_code)
        with _tracer.start_as_current_span("settlement.settle_code") as span:
            span.set_attribute("settlement.short_code", code)
            span.set_attribute("settlement.customer_id", customer_id)
            try:
                entry = await self._pending.get(code)
            except PendingTransactionNotFound:
                replay = await self._replay_recent_code(code, customer_id)
                if replay is not None:
                    return replay
                raise self._rejected(CodeInvalidOrExpired(), state=SettlementState.EXPIRED, short_code=code)
            return await self._settle(entry.payload, customer_id=customer_id, short_code=code, from_store=True)

    async def settle_payload(self, raw_payload: str | Mapping[str, Any], *, customer_id: int) -> SettlementResult:
        """Settle a cart carried in full inside a vendor QR code."""

        with _tracer.start_as_current_span("settlement.settle_payload") as span:
            span.set_attribute("settlement.customer_id", customer_id)
            try:
                if isinstance(raw_payload, Mapping):
                    payload = PendingPayload.from_dict(raw_payload)
                else:
                    payload = decode_qr_payload(raw_payload)
            except SettlementError as exc:
                raise self._rejected(exc, customer_id=customer_id)
            span.set_attribute("settlement.reference_number", payload.reference_number)

            if payload.short_code:
                try:
                    entry = await self._pending.get(payload.short_code)
                except PendingTransactionNotFound:
                    entry = None
                if entry is not None and entry.reference_number == payload.reference_number:
                    # The stored cart is authoritative over whatever the code carried.
                    return await self._settle(
                        entry.payload,
                        customer_id=customer_id,
                        short_code=entry.short_code,
                        from_store=True,
                    )

            prior = await self._load_settlement(payload.reference_number)
            if prior is not None:
                return await self._replay(prior, customer_id=customer_id, short_code=None)

            now = datetime.now(timezone.utc)
            if now > payload.created_at + timedelta(seconds=self._ttl_seconds):
                raise self._rejected(
                    CodeInvalidOrExpired(),
                    state=SettlementState.EXPIRED,
                    reference_number=payload.reference_number,
                )
            if payload.created_at > now + _CLOCK_SKEW:
                raise self._rejected(
                    CodeInvalidOrExpired("Transaction payload is dated in the future"),
                    reference_number=payload.reference_number,
                )

            try:
                await self._directory.require_vendor_for_store(payload.vendor_id, payload.store_id)
                if payload.reward is not None:
                    if payload.reward.reward_id is None:
                        raise InvalidSettlementRequest("Attached reward must carry its id")
                    payload.reward = await self._catalog.require_redeemable(payload.reward.reward_id, payload.store_id)
                payload.items = await self._catalog_items(payload.store_id, payload.items)
            except SettlementError as exc:
                raise self._rejected(exc, reference_number=payload.reference_number)
            return await self._settle(payload, customer_id=customer_id, short_code=payload.short_code or None, from_store=False)

    async def get_settlement(self, reference_number: str) -> SettlementResult | None:
        settlement = await self._load_settlement(reference_number)
        if settlement is None:
            return None
        balance = await self._ledger.snapshot(settlement.customer_id, settlement.store_id)
        return SettlementResult(settlement=settlement, records=list(settlement.records), balance=balance)

    async def redeem_reward(self, *, customer_id: int, reward_id: int, store_id: int) -> RewardRedemption:
        """Spend points on a store reward outside of any cart.

        Each customer may claim a given reward once. The claim and its ledger
        rows commit together under a fresh reference number.
        """

        with _tracer.start_as_current_span("settlement.redeem_reward") as span:
            span.set_attribute("settlement.customer_id", customer_id)
            span.set_attribute("settlement.reward_id", reward_id)
            bound = logger.bind(customer_id=customer_id, store_id=store_id, reward_id=reward_id)
            try:
                await self._directory.require_customer(customer_id)
                store = await self._directory.require_active_store(store_id)
                if store.owner_id is None:
                    raise VendorNotFound("Store has no owner to record the redemption against")
                reward = await self._catalog.require_redeemable(reward_id, store_id)
                if await self._load_claim(customer_id, reward_id) is not None:
                    raise RewardAlreadyClaimed()
                cost = round2(reward.points_cost)
                available = await self._ledger.current_points(customer_id, store_id)
                if available < cost:
                    raise InsufficientPoints(required=cost, available=available)
            except SettlementError as exc:
                await self._db.rollback()
                raise self._rejected(exc, customer_id=customer_id, reward_id=reward_id)

            now = datetime.now(timezone.utc)
            reference_number = generate_reference_number(now=now)
            span.set_attribute("settlement.reference_number", reference_number)
            settlement = TransactionSettlement(
                id=uuid4(),
                reference_number=reference_number,
                customer_id=customer_id,
                vendor_id=store.owner_id,
                store_id=store_id,
                reward_id=reward_id,
                total_amount=Decimal("0"),
                total_points=Decimal("0"),
                net_points=-cost,
                redeemed_points=cost,
                settled_at=now,
            )
            record = TransactionRecord(
                id=uuid4(),
                reference_number=reference_number,
                line_number=1,
                transaction_type=TransactionType.REDEMPTION,
                product_id=None,
                quantity=1,
                unit_price=Decimal("0"),
                points_delta=-cost,
                is_reward_line=False,
                reward_id=reward_id,
                customer_id=customer_id,
                vendor_id=store.owner_id,
                store_id=store_id,
                created_at=now,
            )
            claim = RewardClaim(
                id=uuid4(),
                user_id=customer_id,
                reward_id=reward_id,
                store_id=store_id,
                reference_number=reference_number,
                points_spent=cost,
                is_redeemed=False,
                claimed_at=now,
            )

            self._db.add(settlement)
            self._db.add(claim)
            try:
                await self._db.flush()
            except IntegrityError as exc:
                await self._db.rollback()
                error: SettlementError = SettlementConflict()
                if await self._load_claim(customer_id, reward_id) is not None:
                    error = RewardAlreadyClaimed()
                bound.info("Reward claim rejected by the database", error=str(exc.orig))
                raise self._rejected(error, reference_number=reference_number) from exc

            self._db.add(record)
            try:
                await self._db.flush()
                balance = await self._ledger.apply(customer_id, store_id, net_delta=-cost, redeemed=cost)
                await self._db.commit()
            except InsufficientPoints as exc:
                await self._db.rollback()
                raise self._rejected(exc, reference_number=reference_number)
            except (BalanceUpdateConflict, SQLAlchemyError) as exc:
                await self._compensate(settlement, [record], reason=str(exc))
                self._metrics.record_rejected(PointsUpdateFailed.code)
                raise PointsUpdateFailed() from exc

            self._metrics.record_settled(points_issued=Decimal("0"), points_spent=cost)
            bound.info(
                "Redeemed reward",
                reference_number=reference_number,
                points_spent=str(cost),
                balance=str(balance.total_points),
                state=SettlementState.SETTLED.value,
            )
            return RewardRedemption(settlement=settlement, record=record, claim=claim, balance=balance)

    # Shared exit logic

    async def _settle(
        self,
        payload: PendingPayload,
        *,
        customer_id: int,
        short_code: str | None,
        from_store: bool,
    ) -> SettlementResult:
        reference_number = payload.reference_number
        bound = logger.bind(reference_number=reference_number, customer_id=customer_id, store_id=payload.store_id)
        bound.info("Settling transaction", state=SettlementState.SETTLING.value, short_code=short_code)

        try:
            await self._directory.require_customer(customer_id)
            if payload.customer_id is not None and payload.customer_id != customer_id:
                raise CodeInvalidOrExpired()
        except SettlementError as exc:
            await self._db.rollback()
            raise self._rejected(exc, reference_number=reference_number)

        prior = await self._load_settlement(reference_number)
        if prior is not None:
            return await self._replay(prior, customer_id=customer_id, short_code=short_code if from_store else None)

        try:
            resolved = self._resolver.resolve(payload.items, payload.reward)
            required = resolved.points_required
            if required > 0:
                available = await self._ledger.current_points(customer_id, payload.store_id)
                if available < required:
                    raise InsufficientPoints(required=required, available=available)
        except SettlementError as exc:
            await self._db.rollback()
            raise self._rejected(exc, reference_number=reference_number)

        settlement, records = self._build_rows(payload, resolved, customer_id=customer_id, short_code=short_code)
        self._db.add(settlement)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            await self._db.rollback()
            prior = await self._load_settlement(reference_number)
            if prior is None:
                bound.error("Settlement header rejected by the database", error=str(exc.orig))
                raise self._rejected(SettlementConflict(), reference_number=reference_number) from exc
            bound.info("Reference already settled concurrently")
            return await self._replay(prior, customer_id=customer_id, short_code=short_code if from_store else None)

        self._db.add_all(records)
        try:
            await self._db.flush()
            balance = await self._ledger.apply(
                customer_id,
                payload.store_id,
                net_delta=resolved.net_points,
                redeemed=resolved.redeemed_points,
            )
            await self._db.commit()
        except InsufficientPoints as exc:
            await self._db.rollback()
            raise self._rejected(exc, reference_number=reference_number)
        except (BalanceUpdateConflict, SQLAlchemyError) as exc:
            await self._compensate(settlement, records, reason=str(exc))
            self._metrics.record_rejected(PointsUpdateFailed.code)
            raise PointsUpdateFailed() from exc

        if short_code and from_store:
            await self._pending.remove(short_code)

        self._metrics.record_settled(points_issued=resolved.total_points, points_spent=resolved.redeemed_points)
        bound.info(
            "Settled transaction",
            state=SettlementState.SETTLED.value,
            net_points=str(resolved.net_points),
            total_amount=str(resolved.total_amount),
            balance=str(balance.total_points),
        )
        return SettlementResult(
            settlement=settlement,
            records=records,
            balance=balance,
            notes=list(resolved.notes),
        )

    async def _catalog_items(self, store_id: int, items: Sequence[CartItem]) -> list[CartItem]:
        """Check cart lines against the store's products and price redemptions from the catalog."""

        base_items = [item for item in items if not item.is_reward_line]
        if any(item.product_id is None for item in base_items):
            raise InvalidSettlementRequest("Every cart item must reference a product")
        products = await self._directory.require_products(store_id, [item.product_id for item in base_items])

        priced: list[CartItem] = []
        for item in base_items:
            product = products[item.product_id]
            name = item.product_name or product.name
            if item.points_cost is None:
                priced.append(replace(item, product_name=name))
                continue
            if product.points_cost is None:
                raise InvalidSettlementRequest(f"Product {product.id} cannot be redeemed for points")
            cost = round2(Decimal(product.points_cost) * item.quantity)
            priced.append(replace(item, points_cost=cost, product_name=name))
        return priced

    def _build_rows(
        self,
        payload: PendingPayload,
        resolved: ResolvedCart,
        *,
        customer_id: int,
        short_code: str | None,
    ) -> tuple[TransactionSettlement, list[TransactionRecord]]:
        now = datetime.now(timezone.utc)
        reward_id = payload.reward.reward_id if payload.reward is not None else None
        settlement = TransactionSettlement(
            id=uuid4(),
            reference_number=payload.reference_number,
            short_code=short_code,
            customer_id=customer_id,
            vendor_id=payload.vendor_id,
            store_id=payload.store_id,
            reward_id=reward_id,
            total_amount=resolved.total_amount,
            total_points=resolved.total_points,
            net_points=resolved.net_points,
            redeemed_points=resolved.redeemed_points,
            settled_at=now,
        )
        records = [
            TransactionRecord(
                id=uuid4(),
                reference_number=payload.reference_number,
                line_number=index,
                transaction_type=line.transaction_type,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                points_delta=line.points_delta,
                is_reward_line=line.is_reward_line,
                reward_id=line.reward_id,
                customer_id=customer_id,
                vendor_id=payload.vendor_id,
                store_id=payload.store_id,
                created_at=now,
            )
            for index, line in enumerate(resolved.lines, start=1)
        ]
        return settlement, records

    async def _compensate(
        self,
        settlement: TransactionSettlement,
        records: Sequence[TransactionRecord],
        *,
        reason: str,
    ) -> None:
        """Discard rows written for a settlement whose balance update failed."""

        await self._db.rollback()
        record_ids: list[UUID] = [record.id for record in records]
        try:
            await self._db.execute(
                delete(RewardClaim).where(RewardClaim.reference_number == settlement.reference_number)
            )
            if record_ids:
                await self._db.execute(delete(TransactionRecord).where(TransactionRecord.id.in_(record_ids)))
            await self._db.execute(delete(TransactionSettlement).where(TransactionSettlement.id == settlement.id))
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.exception("Compensating delete failed", reference_number=settlement.reference_number)
        self._metrics.record_compensation()
        logger.error(
            "Rolled back settlement after balance update failure",
            reference_number=settlement.reference_number,
            customer_id=settlement.customer_id,
            store_id=settlement.store_id,
            reason=reason,
            state=SettlementState.REJECTED.value,
        )

    async def _replay(
        self,
        settlement: TransactionSettlement,
        *,
        customer_id: int,
        short_code: str | None,
    ) -> SettlementResult:
        if settlement.customer_id != customer_id:
            raise self._rejected(CodeInvalidOrExpired(), reference_number=settlement.reference_number)
        if short_code:
            await self._pending.remove(short_code)
        balance = await self._ledger.snapshot(settlement.customer_id, settlement.store_id)
        self._metrics.record_replayed()
        logger.info(
            "Replayed settled transaction",
            reference_number=settlement.reference_number,
            customer_id=customer_id,
            state=SettlementState.SETTLED.value,
        )
        return SettlementResult(
            settlement=settlement,
            records=list(settlement.records),
            balance=balance,
            replayed=True,
        )

    async def _replay_recent_code(self, short_code: str, customer_id: int) -> SettlementResult | None:
        """Return the prior result when a customer retries a code they already settled."""

        window_start = datetime.now(timezone.utc) - timedelta(seconds=self._ttl_seconds)
        stmt = (
            select(TransactionSettlement)
            .options(selectinload(TransactionSettlement.records))
            .where(
                TransactionSettlement.short_code == short_code,
                TransactionSettlement.customer_id == customer_id,
                TransactionSettlement.settled_at >= window_start,
            )
            .order_by(TransactionSettlement.settled_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        settlement = result.scalar_one_or_none()
        if settlement is None:
            return None
        return await self._replay(settlement, customer_id=customer_id, short_code=None)

    async def _load_claim(self, customer_id: int, reward_id: int) -> RewardClaim | None:
        result = await self._db.execute(
            select(RewardClaim).where(RewardClaim.user_id == customer_id, RewardClaim.reward_id == reward_id)
        )
        return result.scalar_one_or_none()

    async def _load_settlement(self, reference_number: str) -> TransactionSettlement | None:
        stmt = (
            select(TransactionSettlement)
            .options(selectinload(TransactionSettlement.records))
            .where(TransactionSettlement.reference_number == reference_number)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _rejected(
        self,
        exc: SettlementError,
        *,
        state: SettlementState = SettlementState.REJECTED,
        **context: Any,
    ) -> SettlementError:
        """Record a rejection and hand the error back for the caller to raise."""

        self._metrics.record_rejected(exc.code)
        if state == SettlementState.EXPIRED:
            self._metrics.record_pending_event("expired_attempts")
        logger.warning("Settlement rejected", state=state.value, code=exc.code, message=exc.message, **context)
        return exc


__all__ = [
    "PendingTransactionCreated",
    "RewardRedemption",
    "SettlementProcessor",
    "SettlementResult",
    "SettlementState",
]
