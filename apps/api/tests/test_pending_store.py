import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement_api.models.pending_transaction import PendingTransaction
from settlement_api.models.reward import RewardType
from settlement_api.services.settlement import (
    CartItem,
    DatabasePendingTransactionStore,
    InMemoryPendingTransactionStore,
    InvalidSettlementRequest,
    PendingCodeExists,
    PendingPayload,
    PendingTransactionNotFound,
    RedisPendingTransactionStore,
    RewardDescriptor,
    build_pending_store,
    decode_qr_payload,
    encode_qr_payload,
)


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.expirations: dict[str, int] = {}
        self.closed = False

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self.expirations[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def delete(self, key: str) -> int:
        return 1 if self._store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


def _payload(reference: str = "TXN-20240501-AAAA0001", code: str = "ABC234") -> PendingPayload:
    return PendingPayload(
        reference_number=reference,
        short_code=code,
        vendor_id=2,
        store_id=1,
        items=[CartItem(product_id=10, quantity=2, unit_price=Decimal("4.50"), product_name="Latte")],
        reward=RewardDescriptor(reward_id=5, reward_type=RewardType.DISCOUNT, discount_value=Decimal("10")),
        total_amount=Decimal("8.10"),
        total_points=Decimal("0.81"),
    )


def test_qr_payload_survives_encoding() -> None:
    payload = _payload()

    decoded = decode_qr_payload(encode_qr_payload(payload))

    assert decoded.reference_number == payload.reference_number
    assert decoded.items[0].unit_price == Decimal("4.50")
    assert decoded.reward is not None and decoded.reward.discount_value == Decimal("10")
    assert decoded.created_at == payload.created_at


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"reference_number": "x"}'])
def test_malformed_qr_payload_is_rejected(raw: str) -> None:
    with pytest.raises(InvalidSettlementRequest):
        decode_qr_payload(raw)


@pytest.mark.parametrize("created_at", [None, "yesterday", 1714521600])
def test_payload_without_a_valid_creation_time_is_rejected(created_at) -> None:
    data = _payload().to_dict()
    if created_at is None:
        data.pop("created_at")
    else:
        data["created_at"] = created_at

    with pytest.raises(InvalidSettlementRequest):
        decode_qr_payload(json.dumps(data))


@pytest.mark.asyncio
async def test_memory_store_put_get_remove() -> None:
    store = InMemoryPendingTransactionStore(default_ttl_seconds=60)

    entry = await store.put("abc234", _payload())
    assert entry.short_code == "ABC234"

    fetched = await store.get(" abc234 ")
    assert fetched.reference_number == "TXN-20240501-AAAA0001"

    with pytest.raises(PendingCodeExists):
        await store.put("ABC234", _payload(reference="TXN-20240501-AAAA0002"))

    assert await store.remove("ABC234") is True
    assert await store.remove("ABC234") is False
    with pytest.raises(PendingTransactionNotFound):
        await store.get("ABC234")


@pytest.mark.asyncio
async def test_memory_store_hides_and_purges_expired_entries() -> None:
    store = InMemoryPendingTransactionStore(default_ttl_seconds=60)
    await store.put("ABC234", _payload())

    later = datetime.now(timezone.utc) + timedelta(seconds=120)
    assert await store.purge_expired(now=later) == 1
    assert await store.is_live("ABC234") is False


@pytest.mark.asyncio
async def test_memory_store_rejects_non_positive_ttl() -> None:
    store = InMemoryPendingTransactionStore(default_ttl_seconds=60)

    with pytest.raises(InvalidSettlementRequest):
        await store.put("ABC234", _payload(), ttl_seconds=-5)


@pytest.mark.asyncio
async def test_database_store_round_trip(session_factory) -> None:
    store = DatabasePendingTransactionStore(session_factory, default_ttl_seconds=60)

    await store.put("ABC234", _payload())
    entry = await store.get("abc234")

    assert entry.payload.items[0].product_name == "Latte"
    assert entry.payload.reward is not None and entry.payload.reward.reward_id == 5
    assert entry.expires_at > datetime.now(timezone.utc)

    with pytest.raises(PendingCodeExists):
        await store.put("ABC234", _payload(reference="TXN-20240501-AAAA0002"))

    live = await store.list_live(store_id=1)
    assert [item.short_code for item in live] == ["ABC234"]
    assert await store.list_live(store_id=99) == []

    assert await store.remove("ABC234") is True
    assert await store.is_live("ABC234") is False


@pytest.mark.asyncio
async def test_database_store_rejects_duplicate_reference(session_factory) -> None:
    store = DatabasePendingTransactionStore(session_factory, default_ttl_seconds=60)
    await store.put("ABC234", _payload())

    with pytest.raises(PendingCodeExists):
        await store.put("XYZ789", _payload(code="XYZ789"))


@pytest.mark.asyncio
async def test_database_store_expired_code_can_be_reused(session_factory) -> None:
    store = DatabasePendingTransactionStore(session_factory, default_ttl_seconds=60)
    await store.put("ABC234", _payload())

    async with session_factory() as session:
        record = await session.get(PendingTransaction, "ABC234")
        record.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        await session.commit()

    with pytest.raises(PendingTransactionNotFound):
        await store.get("ABC234")

    await store.put("ABC234", _payload(reference="TXN-20240501-AAAA0002"))
    entry = await store.get("ABC234")
    assert entry.reference_number == "TXN-20240501-AAAA0002"


@pytest.mark.asyncio
async def test_database_store_purges_expired_rows(session_factory) -> None:
    store = DatabasePendingTransactionStore(session_factory, default_ttl_seconds=60)
    await store.put("ABC234", _payload())
    await store.put("XYZ789", _payload(reference="TXN-20240501-AAAA0002", code="XYZ789"))

    purged = await store.purge_expired(now=datetime.now(timezone.utc) + timedelta(minutes=5))

    assert purged == 2
    async with session_factory() as session:
        remaining = (await session.execute(select(PendingTransaction))).scalars().all()
    assert remaining == []


@pytest.mark.asyncio
async def test_redis_store_uses_set_nx_with_ttl() -> None:
    redis = FakeRedis()
    store = RedisPendingTransactionStore(redis_client=redis, default_ttl_seconds=90)  # type: ignore[arg-type]

    await store.put("ABC234", _payload())

    assert redis.expirations["settlement:pending:ABC234"] == 90
    entry = await store.get("ABC234")
    assert entry.payload.total_amount == Decimal("8.10")

    with pytest.raises(PendingCodeExists):
        await store.put("ABC234", _payload(reference="TXN-20240501-AAAA0002"))

    assert await store.remove("ABC234") is True
    with pytest.raises(PendingTransactionNotFound):
        await store.get("ABC234")

    await store.close()
    assert redis.closed is True


@pytest.mark.asyncio
async def test_redis_store_treats_corrupt_documents_as_missing() -> None:
    redis = FakeRedis()
    store = RedisPendingTransactionStore(redis_client=redis, default_ttl_seconds=90)  # type: ignore[arg-type]
    await redis.set("settlement:pending:ABC234", "{broken")

    with pytest.raises(PendingTransactionNotFound):
        await store.get("ABC234")


@pytest.mark.asyncio
async def test_build_pending_store_selects_backend(session_factory) -> None:
    assert build_pending_store("memory").name == "memory"
    assert build_pending_store("database", session_factory=session_factory).name == "database"
    assert build_pending_store("redis", redis_client=FakeRedis()).name == "redis"  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        build_pending_store("carrier-pigeon")
