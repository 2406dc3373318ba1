"""Per-customer, per-store points balance."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from settlement_api.db.base import Base


class PointsBalance(Base):
    """Materialized view of a customer's points at one store.

    `version` increments on every write and guards concurrent updates.
    """

    __tablename__ = "points_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "store_id", name="uq_points_balances_user_store"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    total_points = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    redeemed_points = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
