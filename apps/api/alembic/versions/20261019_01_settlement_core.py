"""Settlement engine tables.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


reward_type_enum = sa.Enum("DISCOUNT", "FREE_ITEM", "BUY_X_GET_Y", name="reward_type")
transaction_type_enum = sa.Enum("PURCHASE", "REDEMPTION", "REWARD", name="transaction_type")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_stores_owner_id", "stores", ["owner_id"])

    role_check = sa.CheckConstraint("role IN ('customer','vendor','admin')", name="ck_users_role_valid")
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="customer"),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        role_check,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("points_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_products_store_id", "products", ["store_id"])

    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reward_type", reward_type_enum, nullable=False),
        sa.Column("points_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_value", sa.Numeric(12, 4), nullable=True),
        sa.Column("free_item_product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("buy_x_product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("buy_x_quantity", sa.Integer(), nullable=True),
        sa.Column("get_y_product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("get_y_quantity", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_rewards_store_id", "rewards", ["store_id"])

    op.create_table(
        "transaction_settlements",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reference_number", sa.String(length=64), nullable=False),
        sa.Column("short_code", sa.String(length=16), nullable=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_points", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("net_points", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("redeemed_points", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("settled_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("reference_number", name="uq_transaction_settlements_reference"),
    )
    op.create_index("ix_transaction_settlements_customer_id", "transaction_settlements", ["customer_id"])
    op.create_index("ix_transaction_settlements_store_id", "transaction_settlements", ["store_id"])

    op.create_table(
        "transaction_records",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "reference_number",
            sa.String(length=64),
            sa.ForeignKey("transaction_settlements.reference_number", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_delta", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_reward_line", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("reference_number", "line_number", name="uq_transaction_records_reference_line"),
    )
    op.create_index("ix_transaction_records_reference_number", "transaction_records", ["reference_number"])
    op.create_index("ix_transaction_records_customer_id", "transaction_records", ["customer_id"])
    op.create_index("ix_transaction_records_store_id", "transaction_records", ["store_id"])

    op.create_table(
        "reward_claims",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "reference_number",
            sa.String(length=64),
            sa.ForeignKey("transaction_settlements.reference_number", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("points_spent", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("claimed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "reward_id", name="uq_reward_claims_user_reward"),
        sa.UniqueConstraint("reference_number", name="uq_reward_claims_reference"),
    )
    op.create_index("ix_reward_claims_user_id", "reward_claims", ["user_id"])
    op.create_index("ix_reward_claims_store_id", "reward_claims", ["store_id"])

    op.create_table(
        "points_balances",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
        sa.Column("total_points", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("redeemed_points", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "store_id", name="uq_points_balances_user_store"),
    )
    op.create_index("ix_points_balances_user_id", "points_balances", ["user_id"])
    op.create_index("ix_points_balances_store_id", "points_balances", ["store_id"])

    op.create_table(
        "pending_transactions",
        sa.Column("short_code", sa.String(length=16), primary_key=True),
        sa.Column("reference_number", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("reference_number", name="uq_pending_transactions_reference"),
    )
    op.create_index("ix_pending_transactions_expires_at", "pending_transactions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_pending_transactions_expires_at", table_name="pending_transactions")
    op.drop_table("pending_transactions")
    op.drop_index("ix_points_balances_store_id", table_name="points_balances")
    op.drop_index("ix_points_balances_user_id", table_name="points_balances")
    op.drop_table("points_balances")
    op.drop_index("ix_reward_claims_store_id", table_name="reward_claims")
    op.drop_index("ix_reward_claims_user_id", table_name="reward_claims")
    op.drop_table("reward_claims")
    op.drop_index("ix_transaction_records_store_id", table_name="transaction_records")
    op.drop_index("ix_transaction_records_customer_id", table_name="transaction_records")
    op.drop_index("ix_transaction_records_reference_number", table_name="transaction_records")
    op.drop_table("transaction_records")
    op.drop_index("ix_transaction_settlements_store_id", table_name="transaction_settlements")
    op.drop_index("ix_transaction_settlements_customer_id", table_name="transaction_settlements")
    op.drop_table("transaction_settlements")
    op.drop_index("ix_rewards_store_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_products_store_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_stores_owner_id", table_name="stores")
    op.drop_table("stores")
    transaction_type_enum.drop(op.get_bind(), checkfirst=True)
    reward_type_enum.drop(op.get_bind(), checkfirst=True)
