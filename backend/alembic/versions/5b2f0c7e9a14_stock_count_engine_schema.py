"""stock count engine schema

Revision ID: 5b2f0c7e9a14
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b2f0c7e9a14"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MOVEMENT_TYPE = sa.Enum("receipt", "issue", "adjustment", name="movement_type")
STOCK_COUNT_STATUS = sa.Enum(
    "draft", "planned", "in_progress", "completed", "validated", "cancelled",
    name="stock_count_status",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "warehouses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "categories",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("uom", sa.String(32), nullable=False),
        sa.Column("category_id", sa.BigInteger(), sa.ForeignKey("categories.id", ondelete="SET NULL")),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("unit_cost >= 0", name="ck_product_unit_cost_nonneg"),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])

    op.create_table(
        "stock_levels",
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("qty_on_hand", sa.Integer(), nullable=False),
        sa.Column("qty_reserved", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("qty_on_hand >= 0", name="ck_stock_on_hand_nonneg"),
        sa.CheckConstraint("qty_reserved >= 0", name="ck_stock_reserved_nonneg"),
        sa.CheckConstraint("qty_reserved <= qty_on_hand", name="ck_stock_reserved_le_on_hand"),
    )
    op.create_table(
        "stock_movements",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("from_warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT")),
        sa.Column("to_warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT")),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("reference", sa.String(64)),
        sa.Column("happened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference"])
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "happened_at"])

    op.create_table(
        "stock_counts",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("count_number", sa.String(64), nullable=False, unique=True),
        sa.Column("warehouse_id", sa.BigInteger(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("count_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("status", STOCK_COUNT_STATUS, nullable=False),
        *_timestamps(),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("validated_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_stock_counts_warehouse_id", "stock_counts", ["warehouse_id"])
    op.create_index("ix_stock_counts_status", "stock_counts", ["status"])

    op.create_table(
        "stock_count_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("stock_count_id", sa.BigInteger(), sa.ForeignKey("stock_counts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=False),
        sa.Column("counted_quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("stock_count_id", "product_id", name="uq_stock_count_item_product"),
        sa.CheckConstraint("expected_quantity >= 0", name="ck_stock_count_item_expected_nonneg"),
        sa.CheckConstraint("counted_quantity >= 0", name="ck_stock_count_item_counted_nonneg"),
    )
    op.create_index("ix_stock_count_items_stock_count_id", "stock_count_items", ["stock_count_id"])


def downgrade() -> None:
    op.drop_table("stock_count_items")
    op.drop_table("stock_counts")
    op.drop_table("stock_movements")
    op.drop_table("stock_levels")
    op.drop_table("products")
    op.drop_table("categories")
    op.drop_table("warehouses")
    STOCK_COUNT_STATUS.drop(op.get_bind(), checkfirst=True)
    MOVEMENT_TYPE.drop(op.get_bind(), checkfirst=True)
