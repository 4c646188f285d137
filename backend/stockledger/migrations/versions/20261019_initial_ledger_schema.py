"""Initial inventory ledger schema

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=nullable)


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "warehouse_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_warehouse_locations_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "product_lots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("lot_number", sa.String(length=64), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "lot_number", name="uq_product_lots_product_lot_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_lots_product_id", "product_lots", ["product_id"], unique=False)

    op.create_table(
        "inventory_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("lot_id", sa.Integer(), nullable=True),
        sa.Column("lot_key", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False),
        sa.Column("quantity_allocated", sa.Integer(), nullable=False),
        _timestamp("first_movement_at"),
        sa.Column("last_counted_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_balances_on_hand_nonneg"),
        sa.CheckConstraint("quantity_allocated >= 0", name="ck_inventory_balances_allocated_nonneg"),
        sa.CheckConstraint(
            "quantity_allocated <= quantity_on_hand",
            name="ck_inventory_balances_allocated_le_on_hand",
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["lot_id"], ["product_lots.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["warehouse_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "lot_key", "location_id", name="uq_inventory_balances_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_balances_product_id", "inventory_balances", ["product_id"], unique=False)
    op.create_index("ix_inventory_balances_lot_id", "inventory_balances", ["lot_id"], unique=False)
    op.create_index("ix_inventory_balances_location_id", "inventory_balances", ["location_id"], unique=False)
    op.create_index(
        "ix_inventory_balances_product_fifo",
        "inventory_balances",
        ["product_id", "first_movement_at", "id"],
        unique=False,
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(length=16), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("lot_id", sa.Integer(), nullable=True),
        sa.Column("from_location_id", sa.Integer(), nullable=True),
        sa.Column("to_location_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        _timestamp("occurred_at"),
        _timestamp("created_at"),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        sa.CheckConstraint(
            "from_location_id IS NOT NULL OR to_location_id IS NOT NULL",
            name="ck_stock_movements_has_location",
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["lot_id"], ["product_lots.id"]),
        sa.ForeignKeyConstraint(["from_location_id"], ["warehouse_locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["warehouse_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_movement_type", "stock_movements", ["movement_type"], unique=False)
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"], unique=False)
    op.create_index("ix_stock_movements_lot_id", "stock_movements", ["lot_id"], unique=False)
    op.create_index("ix_stock_movements_from_location_id", "stock_movements", ["from_location_id"], unique=False)
    op.create_index("ix_stock_movements_to_location_id", "stock_movements", ["to_location_id"], unique=False)
    op.create_index("ix_stock_movements_actor_id", "stock_movements", ["actor_id"], unique=False)
    op.create_index("ix_stock_movements_occurred_at", "stock_movements", ["occurred_at"], unique=False)
    op.create_index(
        "ix_stock_movements_product_occurred", "stock_movements", ["product_id", "occurred_at"], unique=False
    )
    op.create_index(
        "ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"], unique=False
    )

    op.create_table(
        "stock_takes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stock_take_number", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("filter_location_id", sa.Integer(), nullable=True),
        sa.Column("filter_product_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("initiated_by", sa.Integer(), nullable=True),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("verified_by", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["filter_location_id"], ["warehouse_locations.id"]),
        sa.ForeignKeyConstraint(["filter_product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stock_take_number", name="uq_stock_takes_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_takes_status", "stock_takes", ["status"], unique=False)
    op.create_index("ix_stock_takes_status_created", "stock_takes", ["status", "created_at"], unique=False)

    op.create_table(
        "stock_take_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stock_take_id", sa.Integer(), nullable=False),
        sa.Column("balance_id", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("lot_id", sa.Integer(), nullable=True),
        sa.Column("lot_key", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=False),
        sa.Column("counted_quantity", sa.Integer(), nullable=True),
        sa.Column("discrepancy", sa.Integer(), nullable=True),
        sa.Column("reason_for_discrepancy", sa.String(length=255), nullable=True),
        sa.Column("counted_by", sa.Integer(), nullable=True),
        sa.Column("counted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("adjustment_movement_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["stock_take_id"], ["stock_takes.id"]),
        sa.ForeignKeyConstraint(["balance_id"], ["inventory_balances.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["lot_id"], ["product_lots.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["warehouse_locations.id"]),
        sa.ForeignKeyConstraint(["adjustment_movement_id"], ["stock_movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "stock_take_id", "product_id", "lot_key", "location_id",
            name="uq_stock_take_items_take_key",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_take_items_stock_take_id", "stock_take_items", ["stock_take_id"], unique=False)
    op.create_index("ix_stock_take_items_balance_id", "stock_take_items", ["balance_id"], unique=False)


def downgrade():
    op.drop_index("ix_stock_take_items_balance_id", table_name="stock_take_items")
    op.drop_index("ix_stock_take_items_stock_take_id", table_name="stock_take_items")
    op.drop_table("stock_take_items")

    op.drop_index("ix_stock_takes_status_created", table_name="stock_takes")
    op.drop_index("ix_stock_takes_status", table_name="stock_takes")
    op.drop_table("stock_takes")

    for name in (
        "ix_stock_movements_reference",
        "ix_stock_movements_product_occurred",
        "ix_stock_movements_occurred_at",
        "ix_stock_movements_actor_id",
        "ix_stock_movements_to_location_id",
        "ix_stock_movements_from_location_id",
        "ix_stock_movements_lot_id",
        "ix_stock_movements_product_id",
        "ix_stock_movements_movement_type",
    ):
        op.drop_index(name, table_name="stock_movements")
    op.drop_table("stock_movements")

    op.drop_index("ix_inventory_balances_product_fifo", table_name="inventory_balances")
    op.drop_index("ix_inventory_balances_location_id", table_name="inventory_balances")
    op.drop_index("ix_inventory_balances_lot_id", table_name="inventory_balances")
    op.drop_index("ix_inventory_balances_product_id", table_name="inventory_balances")
    op.drop_table("inventory_balances")

    op.drop_index("ix_product_lots_product_id", table_name="product_lots")
    op.drop_table("product_lots")

    op.drop_table("warehouse_locations")
    op.drop_table("products")
