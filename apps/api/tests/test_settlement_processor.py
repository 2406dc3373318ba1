from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from settlement_api.models import (
    Product,
    RewardClaim,
    Store,
    TransactionRecord,
    TransactionSettlement,
    TransactionType,
    User,
    UserRoleEnum,
)
from settlement_api.models.reward import RewardType
from settlement_api.observability.settlement import get_settlement_store
from settlement_api.services.settlement import (
    BalanceLedger,
    BalanceUpdateConflict,
    CartItem,
    CodeInvalidOrExpired,
    InMemoryPendingTransactionStore,
    InsufficientPoints,
    InvalidSettlementRequest,
    NotACustomer,
    NotAVendor,
    PendingPayload,
    PendingTransactionNotFound,
    PointsUpdateFailed,
    ProductNotFound,
    RewardAlreadyClaimed,
    RewardDescriptor,
    RewardResolver,
    RewardUnavailable,
    SettlementConflict,
    SettlementProcessor,
    StoreInactive,
    VendorNotFound,
    VendorStoreMismatch,
    encode_qr_payload,
    generate_reference_number,
)


def _processor(session, pending_store, **kwargs) -> SettlementProcessor:
    return SettlementProcessor(
        session,
        pending_store,
        resolver=RewardResolver(earn_rate=0.10),
        ttl_seconds=600,
        **kwargs,
    )


def _lattes(world, quantity: int = 2) -> list[CartItem]:
    return [CartItem(product_id=world.latte_id, quantity=quantity, unit_price=Decimal("4.50"), product_name="Latte")]


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return int((await session.execute(select(func.count()).select_from(model))).scalar_one())


@pytest.mark.asyncio
async def test_code_settlement_writes_rows_and_updates_balance(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id,
            store_id=world.store_id,
            items=_lattes(world),
            reward_id=world.bxgy_reward_id,
        )

    assert len(created.short_code) == 6
    assert created.resolved.total_amount == Decimal("9.00")
    assert await pending.is_live(created.short_code)

    async with session_factory() as session:
        result = await _processor(session, pending).settle_code(created.short_code.lower(), customer_id=world.customer_id)

    assert result.replayed is False
    assert result.settlement.reference_number == created.reference_number
    assert result.settlement.total_points == Decimal("0.90")
    assert [(record.line_number, record.transaction_type) for record in result.records] == [
        (1, TransactionType.PURCHASE),
        (2, TransactionType.REWARD),
    ]
    assert result.records[1].product_id == world.muffin_id
    assert result.records[1].is_reward_line is True
    assert result.balance.total_points == Decimal("0.90")
    assert not await pending.is_live(created.short_code)

    snapshot = get_settlement_store().snapshot()
    assert snapshot.settlements["settled"] == 1
    assert snapshot.pending["issued"] == 1
    assert snapshot.points["issued"] == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_retrying_a_settled_code_replays_without_new_rows(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    async with session_factory() as session:
        first = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)
    async with session_factory() as session:
        second = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)

    assert second.replayed is True
    assert second.settlement.reference_number == first.settlement.reference_number
    assert second.balance.total_points == first.balance.total_points
    assert await _count(session_factory, TransactionSettlement) == 1
    assert await _count(session_factory, TransactionRecord) == 1
    assert get_settlement_store().snapshot().settlements["replayed"] == 1


@pytest.mark.asyncio
async def test_scanning_the_same_payload_twice_is_idempotent(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    async with session_factory() as session:
        first = await _processor(session, pending).settle_payload(created.qr_payload, customer_id=world.customer_id)
    async with session_factory() as session:
        second = await _processor(session, pending).settle_payload(created.qr_payload, customer_id=world.customer_id)

    assert first.replayed is False
    assert second.replayed is True
    assert await _count(session_factory, TransactionSettlement) == 1

    async with session_factory() as session:
        balance = await BalanceLedger(session).snapshot(world.customer_id, world.store_id)
    assert balance.total_points == Decimal("0.90")


@pytest.mark.asyncio
async def test_concurrent_insert_of_same_reference_replays(session_factory, world, monkeypatch) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    async with session_factory() as session:
        await _processor(session, pending).settle_payload(created.qr_payload, customer_id=world.customer_id)

    async with session_factory() as session:
        processor = _processor(session, pending)
        real_load = processor._load_settlement
        calls = {"count": 0}

        async def _stale_load(reference_number: str):
            calls["count"] += 1
            # Simulate a racing request that has not seen the committed header yet.
            if calls["count"] <= 2:
                return None
            return await real_load(reference_number)

        monkeypatch.setattr(processor, "_load_settlement", _stale_load)
        result = await processor.settle_payload(created.qr_payload, customer_id=world.customer_id)

    assert result.replayed is True
    assert await _count(session_factory, TransactionSettlement) == 1
    assert await _count(session_factory, TransactionRecord) == 1


@pytest.mark.asyncio
async def test_insufficient_points_rejects_and_keeps_code_live(session_factory, world, grant_points) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id,
            store_id=world.store_id,
            items=_lattes(world, quantity=1),
            reward_id=world.free_item_reward_id,
        )

    async with session_factory() as session:
        with pytest.raises(InsufficientPoints) as excinfo:
            await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)

    assert excinfo.value.message == "Insufficient points: need 30.00, have 0"
    assert await _count(session_factory, TransactionSettlement) == 0
    assert await _count(session_factory, TransactionRecord) == 0
    assert await pending.is_live(created.short_code)
    assert get_settlement_store().snapshot().rejections["insufficient_points"] == 1

    await grant_points(world.customer_id, world.store_id, "50")

    async with session_factory() as session:
        result = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)

    assert result.balance.total_points == Decimal("20.45")
    assert result.balance.redeemed_points == Decimal("30.00")
    assert result.settlement.redeemed_points == Decimal("30.00")
    reward_deltas = [record.points_delta for record in result.records if record.transaction_type == TransactionType.REWARD]
    assert sorted(reward_deltas) == [Decimal("-30.00"), Decimal("0")]


@pytest.mark.asyncio
async def test_points_paid_item_requires_balance(session_factory, world, grant_points) -> None:
    pending = InMemoryPendingTransactionStore()
    await grant_points(world.customer_id, world.store_id, "45")
    items = [CartItem(product_id=world.croissant_id, quantity=1, unit_price=Decimal("0"), points_cost=Decimal("25"))]

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=items
        )
    async with session_factory() as session:
        result = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)

    assert [record.transaction_type for record in result.records] == [TransactionType.REDEMPTION]
    assert result.balance.total_points == Decimal("20.00")
    assert result.balance.redeemed_points == Decimal("25.00")


@pytest.mark.asyncio
async def test_expired_code_is_rejected(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    entry = await pending.get(created.short_code)
    entry.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired) as excinfo:
            await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)

    assert excinfo.value.message == "Invalid or expired code"
    assert get_settlement_store().snapshot().pending["expired_attempts"] == 1
    assert await _count(session_factory, TransactionSettlement) == 0


@pytest.mark.asyncio
async def test_unknown_code_is_rejected(session_factory, world) -> None:
    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired):
            await _processor(session, InMemoryPendingTransactionStore()).settle_code(
                "ZZZZZZ", customer_id=world.customer_id
            )


class _ConflictingLedger(BalanceLedger):
    async def apply(self, user_id, store_id, *, net_delta, redeemed=Decimal("0")):
        raise BalanceUpdateConflict("simulated contention")


@pytest.mark.asyncio
async def test_failed_balance_update_compensates_rows(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )

    async with session_factory() as session:
        processor = _processor(session, pending, ledger=_ConflictingLedger(session))
        with pytest.raises(PointsUpdateFailed):
            await processor.settle_code(created.short_code, customer_id=world.customer_id)

    assert await _count(session_factory, TransactionSettlement) == 0
    assert await _count(session_factory, TransactionRecord) == 0
    assert await pending.is_live(created.short_code)
    snapshot = get_settlement_store().snapshot()
    assert snapshot.settlements["compensated"] == 1
    assert snapshot.rejections["points_update_failed"] == 1

    async with session_factory() as session:
        result = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)
    assert result.replayed is False
    assert result.balance.total_points == Decimal("0.90")


@pytest.mark.asyncio
async def test_offline_payload_settles_without_pending_entry(session_factory, world) -> None:
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=_lattes(world, quantity=3),
        reward=RewardDescriptor(reward_id=world.discount_reward_id, reward_type=RewardType.DISCOUNT),
    )

    async with session_factory() as session:
        result = await _processor(session, InMemoryPendingTransactionStore()).settle_payload(
            payload.to_dict(), customer_id=world.customer_id
        )

    # The stored reward (50% off) is authoritative over the descriptor carried in the code.
    assert result.settlement.total_amount == Decimal("6.75")
    assert result.settlement.total_points == Decimal("0.68")
    assert result.settlement.short_code is None
    assert result.settlement.reward_id == world.discount_reward_id


@pytest.mark.asyncio
async def test_stale_offline_payload_is_rejected(session_factory, world) -> None:
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=_lattes(world),
        created_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired):
            await _processor(session, InMemoryPendingTransactionStore()).settle_payload(
                encode_qr_payload(payload), customer_id=world.customer_id
            )


@pytest.mark.asyncio
async def test_offline_payload_without_creation_time_is_rejected(session_factory, world) -> None:
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=_lattes(world),
    ).to_dict()
    payload.pop("created_at")

    async with session_factory() as session:
        with pytest.raises(InvalidSettlementRequest):
            await _processor(session, InMemoryPendingTransactionStore()).settle_payload(
                payload, customer_id=world.customer_id
            )

    assert await _count(session_factory, TransactionSettlement) == 0
    assert get_settlement_store().snapshot().rejections["invalid_request"] == 1


@pytest.mark.asyncio
async def test_future_dated_offline_payload_is_rejected(session_factory, world) -> None:
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=_lattes(world),
        created_at=datetime.now(timezone.utc) + timedelta(days=30),
    )

    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired):
            await _processor(session, InMemoryPendingTransactionStore()).settle_payload(
                encode_qr_payload(payload), customer_id=world.customer_id
            )

    assert await _count(session_factory, TransactionSettlement) == 0


@pytest.mark.asyncio
async def test_offline_payload_with_foreign_reward_is_rejected(session_factory, world) -> None:
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=_lattes(world),
        reward=RewardDescriptor(reward_id=world.other_store_reward_id, reward_type=RewardType.DISCOUNT),
    )

    async with session_factory() as session:
        with pytest.raises(RewardUnavailable):
            await _processor(session, InMemoryPendingTransactionStore()).settle_payload(
                payload.to_dict(), customer_id=world.customer_id
            )


@pytest.mark.asyncio
async def test_vendor_cannot_settle_as_customer(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    async with session_factory() as session:
        with pytest.raises(NotACustomer):
            await _processor(session, pending).settle_code(created.short_code, customer_id=world.vendor_id)

    assert await pending.is_live(created.short_code)


@pytest.mark.asyncio
async def test_cart_bound_to_customer_rejects_others(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()
    async with session_factory() as session:
        stranger = User(email="stranger@example.com", role=UserRoleEnum.CUSTOMER.value)
        session.add(stranger)
        await session.commit()
        stranger_id = stranger.id

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id,
            store_id=world.store_id,
            items=_lattes(world),
            customer_id=world.customer_id,
        )
    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired):
            await _processor(session, pending).settle_code(created.short_code, customer_id=stranger_id)

    async with session_factory() as session:
        result = await _processor(session, pending).settle_code(created.short_code, customer_id=world.customer_id)
    assert result.settlement.customer_id == world.customer_id

    async with session_factory() as session:
        with pytest.raises(CodeInvalidOrExpired):
            await _processor(session, pending).settle_payload(created.qr_payload, customer_id=stranger_id)


@pytest.mark.asyncio
async def test_create_pending_validates_vendor_and_store(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        processor = _processor(session, pending)
        with pytest.raises(VendorStoreMismatch):
            await processor.create_pending_transaction(
                vendor_id=world.other_vendor_id, store_id=world.store_id, items=_lattes(world)
            )
        with pytest.raises(VendorNotFound):
            await processor.create_pending_transaction(vendor_id=9999, store_id=world.store_id, items=_lattes(world))
        with pytest.raises(NotAVendor):
            await processor.create_pending_transaction(
                vendor_id=world.customer_id, store_id=world.store_id, items=_lattes(world)
            )
        with pytest.raises(RewardUnavailable):
            await processor.create_pending_transaction(
                vendor_id=world.vendor_id,
                store_id=world.store_id,
                items=_lattes(world),
                reward_id=world.other_store_reward_id,
            )

    async with session_factory() as session:
        store = await session.get(Store, world.store_id)
        store.is_active = False
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(StoreInactive):
            await _processor(session, pending).create_pending_transaction(
                vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
            )


@pytest.mark.asyncio
async def test_cancel_pending_requires_owning_vendor(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        processor = _processor(session, pending)
        created = await processor.create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )

        with pytest.raises(PendingTransactionNotFound):
            await processor.cancel_pending(created.short_code, vendor_id=world.other_vendor_id)
        assert await processor.cancel_pending(created.short_code, vendor_id=world.vendor_id) is True
        assert await processor.cancel_pending(created.short_code, vendor_id=world.vendor_id) is False

    assert get_settlement_store().snapshot().pending["cancelled"] == 1


@pytest.mark.asyncio
async def test_cart_with_unknown_or_foreign_product_is_rejected(session_factory, world) -> None:
    pending = InMemoryPendingTransactionStore()
    async with session_factory() as session:
        bread = Product(store_id=world.other_store_id, name="Sourdough", price=Decimal("6.00"))
        session.add(bread)
        await session.commit()
        bread_id = bread.id

    unknown = [CartItem(product_id=9999, quantity=1, unit_price=Decimal("4.50"))]
    foreign = [CartItem(product_id=bread_id, quantity=1, unit_price=Decimal("6.00"))]
    async with session_factory() as session:
        processor = _processor(session, pending)
        for items in (unknown, foreign):
            with pytest.raises(ProductNotFound):
                await processor.create_pending_transaction(
                    vendor_id=world.vendor_id, store_id=world.store_id, items=items
                )
        with pytest.raises(InvalidSettlementRequest):
            await processor.create_pending_transaction(
                vendor_id=world.vendor_id,
                store_id=world.store_id,
                items=[CartItem(product_id=None, quantity=1, unit_price=Decimal("1.00"))],
            )

    for items in (unknown, foreign):
        payload = PendingPayload(
            reference_number=generate_reference_number(),
            short_code="",
            vendor_id=world.vendor_id,
            store_id=world.store_id,
            items=items,
        )
        async with session_factory() as session:
            with pytest.raises(ProductNotFound) as excinfo:
                await _processor(session, pending).settle_payload(payload.to_dict(), customer_id=world.customer_id)
        assert excinfo.value.status_code == 404

    assert await _count(session_factory, TransactionSettlement) == 0
    assert get_settlement_store().snapshot().rejections["product_not_found"] == 2


@pytest.mark.asyncio
async def test_redeemed_item_is_charged_its_catalog_cost(session_factory, world, grant_points) -> None:
    pending = InMemoryPendingTransactionStore()
    await grant_points(world.customer_id, world.store_id, "45")
    payload = PendingPayload(
        reference_number=generate_reference_number(),
        short_code="",
        vendor_id=world.vendor_id,
        store_id=world.store_id,
        items=[CartItem(product_id=world.croissant_id, quantity=1, unit_price=Decimal("0"), points_cost=Decimal("0.01"))],
    )

    async with session_factory() as session:
        result = await _processor(session, pending).settle_payload(payload.to_dict(), customer_id=world.customer_id)

    assert result.records[0].transaction_type == TransactionType.REDEMPTION
    assert result.records[0].points_delta == Decimal("-25.00")
    assert result.balance.total_points == Decimal("20.00")

    muffin = [CartItem(product_id=world.muffin_id, quantity=1, unit_price=Decimal("0"), points_cost=Decimal("5"))]
    async with session_factory() as session:
        with pytest.raises(InvalidSettlementRequest):
            await _processor(session, pending).create_pending_transaction(
                vendor_id=world.vendor_id, store_id=world.store_id, items=muffin
            )


@pytest.mark.asyncio
async def test_header_conflict_without_visible_settlement_is_a_conflict(session_factory, world, monkeypatch) -> None:
    pending = InMemoryPendingTransactionStore()

    async with session_factory() as session:
        created = await _processor(session, pending).create_pending_transaction(
            vendor_id=world.vendor_id, store_id=world.store_id, items=_lattes(world)
        )
    async with session_factory() as session:
        await _processor(session, pending).settle_payload(created.qr_payload, customer_id=world.customer_id)

    async with session_factory() as session:
        processor = _processor(session, pending)

        async def _never_visible(reference_number: str):
            return None

        monkeypatch.setattr(processor, "_load_settlement", _never_visible)
        with pytest.raises(SettlementConflict) as excinfo:
            await processor.settle_payload(created.qr_payload, customer_id=world.customer_id)

    assert excinfo.value.status_code == 409
    assert await _count(session_factory, TransactionSettlement) == 1
    assert await _count(session_factory, TransactionRecord) == 1
    assert get_settlement_store().snapshot().rejections["settlement_conflict"] == 1


@pytest.mark.asyncio
async def test_reward_redemption_spends_points_once(session_factory, world, grant_points) -> None:
    await grant_points(world.customer_id, world.store_id, "50")

    async with session_factory() as session:
        redemption = await _processor(session, InMemoryPendingTransactionStore()).redeem_reward(
            customer_id=world.customer_id, reward_id=world.free_item_reward_id, store_id=world.store_id
        )

    assert redemption.balance.total_points == Decimal("20.00")
    assert redemption.balance.redeemed_points == Decimal("30.00")
    assert redemption.settlement.vendor_id == world.vendor_id
    assert redemption.settlement.net_points == Decimal("-30.00")
    assert redemption.record.transaction_type == TransactionType.REDEMPTION
    assert redemption.record.points_delta == Decimal("-30.00")
    assert redemption.claim.reference_number == redemption.reference_number
    assert get_settlement_store().snapshot().points["spent"] == pytest.approx(30.0)

    async with session_factory() as session:
        with pytest.raises(RewardAlreadyClaimed):
            await _processor(session, InMemoryPendingTransactionStore()).redeem_reward(
                customer_id=world.customer_id, reward_id=world.free_item_reward_id, store_id=world.store_id
            )

    async with session_factory() as session:
        balance = await BalanceLedger(session).snapshot(world.customer_id, world.store_id)
    assert balance.total_points == Decimal("20.00")
    assert await _count(session_factory, RewardClaim) == 1
    assert await _count(session_factory, TransactionSettlement) == 1


@pytest.mark.asyncio
async def test_reward_redemption_validates_balance_and_store(session_factory, world, grant_points) -> None:
    await grant_points(world.customer_id, world.store_id, "10")

    async with session_factory() as session:
        processor = _processor(session, InMemoryPendingTransactionStore())
        with pytest.raises(InsufficientPoints):
            await processor.redeem_reward(
                customer_id=world.customer_id, reward_id=world.free_item_reward_id, store_id=world.store_id
            )
        with pytest.raises(RewardUnavailable):
            await processor.redeem_reward(
                customer_id=world.customer_id, reward_id=world.other_store_reward_id, store_id=world.store_id
            )
        with pytest.raises(NotACustomer):
            await processor.redeem_reward(
                customer_id=world.vendor_id, reward_id=world.free_item_reward_id, store_id=world.store_id
            )

    assert await _count(session_factory, RewardClaim) == 0
    assert await _count(session_factory, TransactionSettlement) == 0


@pytest.mark.asyncio
async def test_failed_balance_update_discards_reward_claim(session_factory, world, grant_points) -> None:
    await grant_points(world.customer_id, world.store_id, "50")

    async with session_factory() as session:
        processor = _processor(session, InMemoryPendingTransactionStore(), ledger=_ConflictingLedger(session))
        with pytest.raises(PointsUpdateFailed):
            await processor.redeem_reward(
                customer_id=world.customer_id, reward_id=world.free_item_reward_id, store_id=world.store_id
            )

    assert await _count(session_factory, RewardClaim) == 0
    assert await _count(session_factory, TransactionSettlement) == 0
    assert await _count(session_factory, TransactionRecord) == 0
    assert get_settlement_store().snapshot().settlements["compensated"] == 1

    async with session_factory() as session:
        redemption = await _processor(session, InMemoryPendingTransactionStore()).redeem_reward(
            customer_id=world.customer_id, reward_id=world.free_item_reward_id, store_id=world.store_id
        )
    assert redemption.balance.total_points == Decimal("20.00")
