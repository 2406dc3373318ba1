"""Domain errors raised by the settlement engine."""

from __future__ import annotations

from decimal import Decimal


class SettlementError(RuntimeError):
    """Base exception for settlement failures surfaced to callers."""

    code = "settlement_error"
    status_code = 400
    default_message = "Settlement failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidSettlementRequest(SettlementError):
    """Raised when a request is missing or carries malformed fields."""

    code = "invalid_request"
    default_message = "Invalid settlement request"


class CodeInvalidOrExpired(SettlementError):
    """Raised when a code is unknown, already consumed or past its expiry."""

    code = "code_invalid_or_expired"
    default_message = "Invalid or expired code"


class CustomerNotFound(SettlementError):
    code = "customer_not_found"
    status_code = 404
    default_message = "Customer not found"


class NotACustomer(SettlementError):
    code = "not_a_customer"
    status_code = 403
    default_message = "User is not a customer"


class VendorNotFound(SettlementError):
    code = "vendor_not_found"
    status_code = 404
    default_message = "Vendor not found"


class NotAVendor(SettlementError):
    code = "not_a_vendor"
    status_code = 403
    default_message = "User is not a vendor"


class VendorStoreMismatch(SettlementError):
    code = "vendor_store_mismatch"
    status_code = 403
    default_message = "Vendor is not associated with this store"


class StoreNotFound(SettlementError):
    code = "store_not_found"
    status_code = 404
    default_message = "Store not found"


class StoreInactive(SettlementError):
    code = "store_inactive"
    default_message = "Store is not active"


class ProductNotFound(SettlementError):
    """Raised when a cart line names a product the store does not sell."""

    code = "product_not_found"
    status_code = 404
    default_message = "Product not found"


class RewardNotFound(SettlementError):
    code = "reward_not_found"
    status_code = 404
    default_message = "Reward not found"


class RewardUnavailable(SettlementError):
    """Raised when a reward is inactive, outside its window or from another store."""

    code = "reward_unavailable"
    default_message = "Reward is not available"


class RewardAlreadyClaimed(SettlementError):
    code = "reward_already_claimed"
    status_code = 409
    default_message = "Reward has already been claimed"


class InsufficientPoints(SettlementError):
    """Raised when a settlement would drive the balance below zero."""

    code = "insufficient_points"

    def __init__(self, required: Decimal, available: Decimal) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient points: need {required}, have {available}")


class PendingCodeExists(SettlementError):
    """Raised by a pending store when the short code is still live."""

    code = "pending_code_exists"
    status_code = 409
    default_message = "Pending transaction code already exists"


class PendingTransactionNotFound(SettlementError):
    """Raised when a pending transaction is absent or expired."""

    code = "pending_transaction_not_found"
    status_code = 404
    default_message = "Pending transaction not found"


class ShortCodeExhausted(SettlementError):
    code = "short_code_exhausted"
    status_code = 503
    default_message = "Unable to allocate a unique transaction code"


class SettlementConflict(SettlementError):
    """Raised when the settlement header violates a constraint other than its reference."""

    code = "settlement_conflict"
    status_code = 409
    default_message = "Transaction conflicts with existing records"


class PointsUpdateFailed(SettlementError):
    """Raised after the written rows were compensated because the balance update failed."""

    code = "points_update_failed"
    status_code = 503
    default_message = "Failed to update points balance"


__all__ = [
    "CodeInvalidOrExpired",
    "CustomerNotFound",
    "InsufficientPoints",
    "InvalidSettlementRequest",
    "NotACustomer",
    "NotAVendor",
    "PendingCodeExists",
    "PendingTransactionNotFound",
    "PointsUpdateFailed",
    "ProductNotFound",
    "RewardAlreadyClaimed",
    "RewardNotFound",
    "RewardUnavailable",
    "SettlementConflict",
    "SettlementError",
    "ShortCodeExhausted",
    "StoreInactive",
    "StoreNotFound",
    "VendorNotFound",
    "VendorStoreMismatch",
]
