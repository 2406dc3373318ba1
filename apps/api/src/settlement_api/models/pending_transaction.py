from sqlalchemy import JSON, Column, DateTime, String, UniqueConstraint, func

from settlement_api.db.base import Base


class PendingTransaction(Base):
    """Short-lived cart awaiting settlement, keyed by its short code."""

    __tablename__ = "pending_transactions"
    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_pending_transactions_reference"),
    )

    short_code = Column(String(16), primary_key=True)
    reference_number = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
