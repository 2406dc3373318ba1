"""Short-lived storage for carts awaiting settlement."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping

from loguru import logger
from redis.asyncio import Redis
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_api.core.settings import settings
from settlement_api.models.pending_transaction import PendingTransaction
from settlement_api.models.transaction import TransactionType

from .codes import normalize_short_code
from .exceptions import InvalidSettlementRequest, PendingCodeExists, PendingTransactionNotFound
from .rewards import CartItem, RewardDescriptor, to_decimal


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PendingPayload:
    """Cart and actors captured when a pending transaction is created."""

    reference_number: str
    short_code: str
    vendor_id: int
    store_id: int
    items: list[CartItem]
    reward: RewardDescriptor | None = None
    customer_id: int | None = None
    total_amount: Decimal = Decimal("0")
    total_points: Decimal = Decimal("0")
    transaction_type: TransactionType = TransactionType.PURCHASE
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference_number": self.reference_number,
            "short_code": self.short_code,
            "vendor_id": self.vendor_id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "items": [item.to_dict() for item in self.items],
            "reward": self.reward.to_dict() if self.reward is not None else None,
            "total_amount": str(self.total_amount),
            "total_points": str(self.total_points),
            "transaction_type": self.transaction_type.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingPayload":
        try:
            reference_number = str(data["reference_number"])
            vendor_id = int(data["vendor_id"])
            store_id = int(data["store_id"])
            raw_items = data["items"]
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidSettlementRequest("Transaction payload is missing required fields") from exc
        if not isinstance(raw_items, list):
            raise InvalidSettlementRequest("Transaction payload items must be a list")

        # The expiry of a scanned payload is derived from this timestamp.
        created_raw = data.get("created_at")
        if not isinstance(created_raw, str):
            raise InvalidSettlementRequest("Transaction payload is missing its creation time")
        try:
            created_at = _ensure_aware(datetime.fromisoformat(created_raw))
        except ValueError as exc:
            raise InvalidSettlementRequest("Transaction payload creation time is malformed") from exc

        reward_raw = data.get("reward")
        customer_raw = data.get("customer_id")
        return cls(
            reference_number=reference_number,
            short_code=str(data.get("short_code") or ""),
            vendor_id=vendor_id,
            store_id=store_id,
            customer_id=int(customer_raw) if customer_raw is not None else None,
            items=[CartItem.from_dict(item) for item in raw_items],
            reward=RewardDescriptor.from_dict(reward_raw) if isinstance(reward_raw, Mapping) else None,
            total_amount=to_decimal(data.get("total_amount") or 0, field_name="total_amount"),
            total_points=to_decimal(data.get("total_points") or 0, field_name="total_points"),
            transaction_type=TransactionType(data.get("transaction_type") or TransactionType.PURCHASE.value),
            created_at=created_at,
        )


def encode_qr_payload(payload: PendingPayload) -> str:
    """Serialize a payload into the string embedded in a vendor QR code."""

    return json.dumps(payload.to_dict(), separators=(",", ":"), sort_keys=True)


def decode_qr_payload(raw: str) -> PendingPayload:
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise InvalidSettlementRequest("Scanned payload is not valid JSON") from exc
    if not isinstance(data, Mapping):
        raise InvalidSettlementRequest("Scanned payload must be an object")
    return PendingPayload.from_dict(data)


@dataclass(slots=True)
class PendingEntry:
    short_code: str
    reference_number: str
    payload: PendingPayload
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) > _ensure_aware(self.expires_at)


class PendingTransactionStore(ABC):
    """Keyed store of pending carts with per-entry expiry.

    ``put`` rejects live codes, ``get`` hides expired entries and ``remove``
    is idempotent.
    """

    name = "abstract"

    def __init__(self, *, default_ttl_seconds: int | None = None) -> None:
        self._default_ttl = default_ttl_seconds or settings.pending_transaction_ttl_seconds

    def _expiry(self, ttl_seconds: int | None, now: datetime) -> tuple[int, datetime]:
        ttl = ttl_seconds or self._default_ttl
        if ttl <= 0:
            raise InvalidSettlementRequest("Pending transaction TTL must be positive")
        return ttl, now + timedelta(seconds=ttl)

    @abstractmethod
    async def put(self, short_code: str, payload: PendingPayload, *, ttl_seconds: int | None = None) -> PendingEntry:
        ...

    @abstractmethod
    async def get(self, short_code: str) -> PendingEntry:
        ...

    @abstractmethod
    async def remove(self, short_code: str) -> bool:
        ...

    @abstractmethod
    async def purge_expired(self, *, now: datetime | None = None) -> int:
        ...

    async def is_live(self, short_code: str) -> bool:
        try:
            await self.get(short_code)
        except PendingTransactionNotFound:
            return False
        return True

    async def close(self) -> None:
        return None


class InMemoryPendingTransactionStore(PendingTransactionStore):
    """Process-local store for single-instance deployments and tests."""

    name = "memory"

    def __init__(self, *, default_ttl_seconds: int | None = None) -> None:
        super().__init__(default_ttl_seconds=default_ttl_seconds)
        self._entries: dict[str, PendingEntry] = {}
        self._lock = asyncio.Lock()

    async def put(self, short_code: str, payload: PendingPayload, *, ttl_seconds: int | None = None) -> PendingEntry:
        code = normalize_short_code(short_code)
        now = _utcnow()
        _, expires_at = self._expiry(ttl_seconds, now)
        async with self._lock:
            existing = self._entries.get(code)
            if existing is not None and not existing.is_expired(now):
                raise PendingCodeExists()
            entry = PendingEntry(
                short_code=code,
                reference_number=payload.reference_number,
                payload=payload,
                created_at=now,
                expires_at=expires_at,
            )
            self._entries[code] = entry
        return entry

    async def get(self, short_code: str) -> PendingEntry:
        code = normalize_short_code(short_code)
        async with self._lock:
            entry = self._entries.get(code)
        if entry is None or entry.is_expired():
            raise PendingTransactionNotFound()
        return entry

    async def remove(self, short_code: str) -> bool:
        code = normalize_short_code(short_code)
        async with self._lock:
            return self._entries.pop(code, None) is not None

    async def purge_expired(self, *, now: datetime | None = None) -> int:
        moment = now or _utcnow()
        async with self._lock:
            expired = [code for code, entry in self._entries.items() if entry.is_expired(moment)]
            for code in expired:
                del self._entries[code]
        return len(expired)


class DatabasePendingTransactionStore(PendingTransactionStore):
    """Shared store backed by the ``pending_transactions`` table."""

    name = "database"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_ttl_seconds: int | None = None,
    ) -> None:
        super().__init__(default_ttl_seconds=default_ttl_seconds)
        self._session_factory = session_factory

    async def put(self, short_code: str, payload: PendingPayload, *, ttl_seconds: int | None = None) -> PendingEntry:
        code = normalize_short_code(short_code)
        now = _utcnow()
        _, expires_at = self._expiry(ttl_seconds, now)
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    existing = await session.get(PendingTransaction, code)
                    if existing is not None:
                        if now <= _ensure_aware(existing.expires_at):
                            raise PendingCodeExists()
                        # Expired rows linger until purged; a new cart may take the code over.
                        await session.delete(existing)
                        await session.flush()
                    session.add(
                        PendingTransaction(
                            short_code=code,
                            reference_number=payload.reference_number,
                            payload=payload.to_dict(),
                            created_at=now,
                            expires_at=expires_at,
                        )
                    )
            except IntegrityError as exc:
                logger.warning("Pending transaction insert conflicted", short_code=code)
                raise PendingCodeExists() from exc
        return PendingEntry(
            short_code=code,
            reference_number=payload.reference_number,
            payload=payload,
            created_at=now,
            expires_at=expires_at,
        )

    async def get(self, short_code: str) -> PendingEntry:
        code = normalize_short_code(short_code)
        async with self._session_factory() as session:
            record = await session.get(PendingTransaction, code)
        if record is None:
            raise PendingTransactionNotFound()
        entry = PendingEntry(
            short_code=record.short_code,
            reference_number=record.reference_number,
            payload=PendingPayload.from_dict(record.payload or {}),
            created_at=_ensure_aware(record.created_at),
            expires_at=_ensure_aware(record.expires_at),
        )
        if entry.is_expired():
            raise PendingTransactionNotFound()
        return entry

    async def remove(self, short_code: str) -> bool:
        code = normalize_short_code(short_code)
        async with self._session_factory() as session:
            result = await session.execute(delete(PendingTransaction).where(PendingTransaction.short_code == code))
            await session.commit()
        return bool(result.rowcount)

    async def purge_expired(self, *, now: datetime | None = None) -> int:
        moment = now or _utcnow()
        async with self._session_factory() as session:
            result = await session.execute(delete(PendingTransaction).where(PendingTransaction.expires_at < moment))
            await session.commit()
        return int(result.rowcount or 0)

    async def list_live(self, *, store_id: int | None = None) -> list[PendingEntry]:
        """Return unexpired entries, optionally restricted to one store."""

        now = _utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(PendingTransaction)
                .where(PendingTransaction.expires_at >= now)
                .order_by(PendingTransaction.created_at.asc())
            )
            records = list(result.scalars())
        entries = [
            PendingEntry(
                short_code=record.short_code,
                reference_number=record.reference_number,
                payload=PendingPayload.from_dict(record.payload or {}),
                created_at=_ensure_aware(record.created_at),
                expires_at=_ensure_aware(record.expires_at),
            )
            for record in records
        ]
        if store_id is not None:
            entries = [entry for entry in entries if entry.payload.store_id == store_id]
        return entries


class RedisPendingTransactionStore(PendingTransactionStore):
    """Shared store relying on Redis ``SET NX EX`` for uniqueness and expiry."""

    name = "redis"
    _KEY_PREFIX = "settlement:pending:"

    def __init__(self, redis_client: Redis | None = None, *, default_ttl_seconds: int | None = None) -> None:
        super().__init__(default_ttl_seconds=default_ttl_seconds)
        self._redis = redis_client or Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    def _key(self, code: str) -> str:
        return f"{self._KEY_PREFIX}{code}"

    async def put(self, short_code: str, payload: PendingPayload, *, ttl_seconds: int | None = None) -> PendingEntry:
        code = normalize_short_code(short_code)
        now = _utcnow()
        ttl, expires_at = self._expiry(ttl_seconds, now)
        document = {
            "short_code": code,
            "reference_number": payload.reference_number,
            "payload": payload.to_dict(),
            "created_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }
        stored = await self._redis.set(self._key(code), json.dumps(document), nx=True, ex=ttl)
        if not stored:
            raise PendingCodeExists()
        return PendingEntry(
            short_code=code,
            reference_number=payload.reference_number,
            payload=payload,
            created_at=now,
            expires_at=expires_at,
        )

    async def get(self, short_code: str) -> PendingEntry:
        code = normalize_short_code(short_code)
        raw = await self._redis.get(self._key(code))
        if not raw:
            raise PendingTransactionNotFound()
        try:
            document = json.loads(raw)
            entry = PendingEntry(
                short_code=code,
                reference_number=document["reference_number"],
                payload=PendingPayload.from_dict(document["payload"]),
                created_at=_ensure_aware(datetime.fromisoformat(document["created_at"])),
                expires_at=_ensure_aware(datetime.fromisoformat(document["expires_at"])),
            )
        except (KeyError, ValueError, json.JSONDecodeError) as exc:
            logger.warning("Failed to decode pending transaction", short_code=code)
            raise PendingTransactionNotFound() from exc
        if entry.is_expired():
            raise PendingTransactionNotFound()
        return entry

    async def remove(self, short_code: str) -> bool:
        code = normalize_short_code(short_code)
        removed = await self._redis.delete(self._key(code))
        return bool(removed)

    async def purge_expired(self, *, now: datetime | None = None) -> int:
        # Keys expire natively.
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


def build_pending_store(
    backend: str | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: Redis | None = None,
) -> PendingTransactionStore:
    """Instantiate the configured pending store backend."""

    selected = backend or settings.pending_store_backend
    if selected == "memory":
        store: PendingTransactionStore = InMemoryPendingTransactionStore()
    elif selected == "redis":
        store = RedisPendingTransactionStore(redis_client)
    elif selected == "database":
        if session_factory is None:
            from settlement_api.db.session import async_session

            session_factory = async_session
        store = DatabasePendingTransactionStore(session_factory)
    else:
        raise ValueError(f"Unknown pending store backend: {selected}")
    logger.info("Configured pending transaction store", backend=store.name)
    return store


__all__ = [
    "DatabasePendingTransactionStore",
    "InMemoryPendingTransactionStore",
    "PendingEntry",
    "PendingPayload",
    "PendingTransactionStore",
    "RedisPendingTransactionStore",
    "build_pending_store",
    "decode_qr_payload",
    "encode_qr_payload",
]
