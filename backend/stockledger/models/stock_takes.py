from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockTake(db.Model):
    """
    Physical count document.

    LIFECYCLE:
    1. Planning: created, expected quantities snapshotted from the ledger
    2. InProgress: counters submit counted quantities
    3. Completed: processed; on-hand overwritten and Adjustment movements posted
    4. Verified: reviewed after completion (terminal)
    5. Cancelled: abandoned from Planning or InProgress (terminal)

    Counting and reconciling are separate steps so counts can be corrected
    before they touch on-hand stock.
    """
    __tablename__ = "stock_takes"
    __table_args__ = (
        db.UniqueConstraint("stock_take_number", name="uq_stock_takes_number"),
        db.Index("ix_stock_takes_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "ST-000042"
    stock_take_number = db.Column(db.String(50), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="Planning", index=True)

    # Filters used when the count was initiated (None = all)
    filter_location_id = db.Column(db.Integer, db.ForeignKey("warehouse_locations.id"), nullable=True)
    filter_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    initiated_by = db.Column(db.Integer, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)
    verified_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockTake id={self.id} number={self.stock_take_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_take_number": self.stock_take_number,
            "status": self.status,
            "filter_location_id": self.filter_location_id,
            "filter_product_id": self.filter_product_id,
            "notes": self.notes,
            "initiated_by": self.initiated_by,
            "processed_by": self.processed_by,
            "verified_by": self.verified_by,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "verified_at": to_utc_z(self.verified_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }


class StockTakeItem(db.Model):
    """
    One (lot-or-product, location) pair on a stock take.

    expected_quantity is the ledger's on-hand at snapshot time;
    discrepancy = expected - counted (positive = shortage).
    Mutated by count submission and once by processing; immutable after.
    """
    __tablename__ = "stock_take_items"
    __table_args__ = (
        db.UniqueConstraint(
            "stock_take_id", "product_id", "lot_key", "location_id",
            name="uq_stock_take_items_take_key",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_take_id = db.Column(db.Integer, db.ForeignKey("stock_takes.id"), nullable=False, index=True)

    # Balance row snapshotted; re-resolved by key when processing
    balance_id = db.Column(db.Integer, db.ForeignKey("inventory_balances.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    lot_id = db.Column(db.Integer, db.ForeignKey("product_lots.id"), nullable=True)
    lot_key = db.Column(db.Integer, nullable=False, default=0)
    location_id = db.Column(db.Integer, db.ForeignKey("warehouse_locations.id"), nullable=False)

    expected_quantity = db.Column(db.Integer, nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=True)
    discrepancy = db.Column(db.Integer, nullable=True)
    reason_for_discrepancy = db.Column(db.String(255), nullable=True)

    counted_by = db.Column(db.Integer, nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    adjustment_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    stock_take = db.relationship(
        "StockTake",
        backref=db.backref("items", lazy=True, order_by="StockTakeItem.id"),
    )
    adjustment_movement = db.relationship("StockMovement")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_take_id": self.stock_take_id,
            "balance_id": self.balance_id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "location_id": self.location_id,
            "expected_quantity": self.expected_quantity,
            "counted_quantity": self.counted_quantity,
            "discrepancy": self.discrepancy,
            "reason_for_discrepancy": self.reason_for_discrepancy,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
            "adjustment_movement_id": self.adjustment_movement_id,
            "version_id": self.version_id,
        }
