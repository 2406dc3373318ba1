"""Per-customer reward claims backing standalone redemptions."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from settlement_api.db.base import Base


class RewardClaim(Base):
    """A reward a customer bought with points; each reward is claimable once per customer."""

    __tablename__ = "reward_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", name="uq_reward_claims_user_reward"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = Column(Integer, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    reference_number = Column(
        String(64),
        ForeignKey("transaction_settlements.reference_number", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    points_spent = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    is_redeemed = Column(Boolean, nullable=False, default=False, server_default="false")
    claimed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
