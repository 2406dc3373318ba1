"""Reference number and short code generation."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from loguru import logger

from settlement_api.core.settings import settings

from .exceptions import InvalidSettlementRequest, ShortCodeExhausted

if TYPE_CHECKING:
    from .pending_store import PendingTransactionStore


# Uppercase letters and digits without the look-alikes 0/O and 1/I.
SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_reference_number(prefix: str | None = None, *, now: datetime | None = None) -> str:
    """Return a reference number such as ``TXN-20240501-9F2C41AB``."""

    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    suffix = secrets.token_hex(4).upper()
    return f"{prefix or settings.reference_number_prefix}-{stamp}-{suffix}"


def generate_short_code(length: int | None = None) -> str:
    size = length or settings.short_code_length
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(size))


def normalize_short_code(code: str | None) -> str:
    """Trim and upper-case a manually entered code; blank input is rejected."""

    normalized = (code or "").strip().upper()
    if not normalized:
        raise InvalidSettlementRequest("Transaction code is required")
    return normalized


async def allocate_short_code(
    store: "PendingTransactionStore",
    *,
    length: int | None = None,
    max_attempts: int | None = None,
) -> str:
    """Draw short codes until one has no live pending entry."""

    attempts = max_attempts or settings.short_code_max_attempts
    for attempt in range(1, attempts + 1):
        candidate = generate_short_code(length)
        if not await store.is_live(candidate):
            return candidate
        logger.debug("Short code collision", attempt=attempt)
    logger.error("Exhausted short code attempts", attempts=attempts)
    raise ShortCodeExhausted()


__all__ = [
    "SHORT_CODE_ALPHABET",
    "allocate_short_code",
    "generate_reference_number",
    "generate_short_code",
    "normalize_short_code",
]
