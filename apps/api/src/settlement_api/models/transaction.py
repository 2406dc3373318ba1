"""Settled transaction header and line rows."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from settlement_api.db.base import Base


class TransactionType(str, Enum):
    """Classification of a transaction line."""

    PURCHASE = "Purchase"
    REDEMPTION = "Redemption"
    REWARD = "Reward"


class TransactionSettlement(Base):
    """One row per settled cart; the unique reference number is the idempotency key."""

    __tablename__ = "transaction_settlements"
    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_transaction_settlements_reference"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    reference_number = Column(String(64), nullable=False)
    short_code = Column(String(16), nullable=True)
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_points = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    net_points = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    redeemed_points = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    settled_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    records = relationship(
        "TransactionRecord",
        back_populates="settlement",
        order_by="TransactionRecord.line_number",
        cascade="all, delete-orphan",
    )


class TransactionRecord(Base):
    """Immutable line of a settled transaction."""

    __tablename__ = "transaction_records"
    __table_args__ = (
        UniqueConstraint("reference_number", "line_number", name="uq_transaction_records_reference_line"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    reference_number = Column(
        String(64),
        ForeignKey("transaction_settlements.reference_number", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number = Column(Integer, nullable=False)
    transaction_type = Column(SqlEnum(TransactionType, name="transaction_type"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    points_delta = Column(Numeric(12, 2), nullable=False, default=0)
    is_reward_line = Column(Boolean, nullable=False, default=False, server_default="false")
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    settlement = relationship("TransactionSettlement", back_populates="records")
