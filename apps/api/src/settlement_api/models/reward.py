"""Reward and promotion catalog rows."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)

from settlement_api.db.base import Base


class RewardType(str, Enum):
    """Supported reward mechanics."""

    DISCOUNT = "discount"
    FREE_ITEM = "free_item"
    BUY_X_GET_Y = "buy_x_get_y"


class Reward(Base):
    """Store reward; only the fields relevant to `reward_type` are meaningful."""

    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    reward_type = Column(SqlEnum(RewardType, name="reward_type"), nullable=False)
    points_cost = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    discount_value = Column(Numeric(12, 4), nullable=True)
    free_item_product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    buy_x_product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    buy_x_quantity = Column(Integer, nullable=True)
    get_y_product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    get_y_quantity = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
