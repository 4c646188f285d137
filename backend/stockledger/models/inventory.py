from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z
from ..services.errors import InvariantViolation


class ProductLot(db.Model):
    """
    Traceable batch of a product.

    Identity is (product_id, lot_number), enforced by a unique constraint so
    concurrent receipts of the same lot can never create two rows.
    Immutable once created except for expiration_date backfill.
    """
    __tablename__ = "product_lots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_number", name="uq_product_lots_product_lot_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False)
    expiration_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("lots", lazy=True))

    def __repr__(self) -> str:
        return f"<ProductLot id={self.id} product_id={self.product_id} lot={self.lot_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_number": self.lot_number,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryBalance(db.Model):
    """
    Mutable summary of on-hand / allocated stock for one (lot-or-product, location).

    KEYING:
    - Lot-tracked stock: lot_id set, lot_key = lot_id
    - Break-bulk stock: lot_id NULL, lot_key = 0
    lot_key exists because a UNIQUE constraint never treats NULLs as equal.

    INVARIANTS (checked in SQL, guarded again in every UPDATE):
    - 0 <= quantity_allocated <= quantity_on_hand
    - quantity_available is derived, never stored

    Rows are never deleted, only zeroed, so history stays attributable.
    All quantity writes go through services.ledger_store.
    """
    __tablename__ = "inventory_balances"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_key", "location_id", name="uq_inventory_balances_key"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_balances_on_hand_nonneg"),
        db.CheckConstraint("quantity_allocated >= 0", name="ck_inventory_balances_allocated_nonneg"),
        db.CheckConstraint("quantity_allocated <= quantity_on_hand", name="ck_inventory_balances_allocated_le_on_hand"),
        # FIFO allocation scan
        db.Index("ix_inventory_balances_product_fifo", "product_id", "first_movement_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("product_lots.id"), nullable=True, index=True)
    lot_key = db.Column(db.Integer, nullable=False, default=0)
    location_id = db.Column(db.Integer, db.ForeignKey("warehouse_locations.id"), nullable=False, index=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    quantity_allocated = db.Column(db.Integer, nullable=False, default=0)

    # Earliest business time stock was added to the row (oldest stock allocates first)
    first_movement_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_counted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    lot = db.relationship("ProductLot")
    location = db.relationship("WarehouseLocation")

    @hybrid_property
    def quantity_available(self):
        return self.quantity_on_hand - self.quantity_allocated

    def __repr__(self) -> str:
        return (
            f"<InventoryBalance id={self.id} product_id={self.product_id} lot_id={self.lot_id} "
            f"location_id={self.location_id} on_hand={self.quantity_on_hand} allocated={self.quantity_allocated}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "lot_number": self.lot.lot_number if self.lot else None,
            "location_id": self.location_id,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_allocated": self.quantity_allocated,
            "quantity_available": self.quantity_available,
            "first_movement_at": to_utc_z(self.first_movement_at),
            "last_counted_at": to_utc_z(self.last_counted_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only ledger event: one quantity change and its cause.

    quantity is always positive; direction is carried by movement_type and
    the from/to location pair:
    - Inbound:    to_location only
    - Outbound:   from_location only
    - Transfer:   both
    - Adjustment: from_location (shortage) or to_location (overage)

    Movements are never updated or deleted (ORM listeners below reject it).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint(
            "from_location_id IS NOT NULL OR to_location_id IS NOT NULL",
            name="ck_stock_movements_has_location",
        ),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("product_lots.id"), nullable=True, index=True)

    from_location_id = db.Column(db.Integer, db.ForeignKey("warehouse_locations.id"), nullable=True, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("warehouse_locations.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    # Opaque user reference; authentication lives outside the ledger
    actor_id = db.Column(db.Integer, nullable=True, index=True)

    # What caused it: Receipt, Shipment, OutboundOrder, StockTake, ...
    reference_type = db.Column(db.String(50), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Business time vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lot = db.relationship("ProductLot")

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} type={self.movement_type} product_id={self.product_id} "
            f"from={self.from_location_id} to={self.to_location_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise InvariantViolation("stock movements are append-only", movement_id=target.id)


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise InvariantViolation("stock movements are append-only", movement_id=target.id)


class ReceiptPosting(db.Model):
    """
    Record that a receipt has been applied to the ledger.

    (reference_type, reference_id) is unique, so a receipt can post once;
    a resubmission after a successful commit is rejected instead of adding
    the stock a second time.
    """
    __tablename__ = "receipt_postings"
    __table_args__ = (
        db.UniqueConstraint("reference_type", "reference_id", name="uq_receipt_postings_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference_type = db.Column(db.String(50), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)

    line_count = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ReceiptPosting id={self.id} ref={self.reference_type}:{self.reference_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "line_count": self.line_count,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "posted_at": to_utc_z(self.posted_at),
        }
