# Overview: Stock-Take Reconciler; physical counts overwrite on-hand and post Adjustment movements.

"""
Stock-Take Invariants (authoritative)

LIFECYCLE:
1. Planning: created; expected quantities snapshotted from the ledger
2. InProgress: counts submitted (and resubmitted) per item
3. Completed: processed exactly once; on-hand overwritten with counts
4. Verified: reviewed (terminal)
5. Cancelled: abandoned from Planning or InProgress (terminal)

Processing:
- Every item must be counted before processing.
- discrepancy = expected - counted (positive = shortage, negative = overage).
- The physical count is ground truth: on-hand is *overwritten* with the
  counted figure, not nudged by the discrepancy.
- When the overwrite changes on-hand, one Adjustment movement records the
  change actually applied (from_location for a shortage, to_location for an
  overage) so the movement log still reconstructs the balance. If stock moved
  between snapshot and processing, that change differs from the discrepancy.
- A count below the row's allocated quantity is an InvariantViolation; a
  missing balance row is MissingInventoryRecord. Either rolls back the whole
  stock take.
"""

from __future__ import annotations

import logging
import uuid

from ..extensions import db
from ..models import InventoryBalance, Product, StockMovement, StockTake, StockTakeItem, WarehouseLocation
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import (
    InvalidQuantity,
    LedgerError,
    MissingInventoryRecord,
    StockTakeStateError,
    UnknownReference,
)
from .ledger_store import get_balance, lot_key_for, overwrite_on_hand
from .movement_log import MOVEMENT_ADJUSTMENT, append_movement

logger = logging.getLogger(__name__)


# Stock take status constants
STATUS_PLANNING = "Planning"
STATUS_IN_PROGRESS = "InProgress"
STATUS_COMPLETED = "Completed"
STATUS_VERIFIED = "Verified"
STATUS_CANCELLED = "Cancelled"

STATUSES = {STATUS_PLANNING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_VERIFIED, STATUS_CANCELLED}

REFERENCE_STOCK_TAKE = "StockTake"


class StockTakeError(LedgerError):
    """Malformed stock take request."""
    status_code = 400


class StockTakeNotFound(LedgerError):
    status_code = 404


def _lock_stock_take(stock_take_id: int) -> StockTake:
    take = lock_for_update(db.session.query(StockTake).filter_by(id=stock_take_id)).populate_existing().first()
    if take is None:
        raise StockTakeNotFound(f"Stock take {stock_take_id} not found", stock_take_id=stock_take_id)
    return take


def _require_status(take: StockTake, allowed: set[str], action: str) -> None:
    if take.status not in allowed:
        raise StockTakeStateError(
            f"Cannot {action} stock take in {take.status} status",
            stock_take_id=take.id,
            status=take.status,
        )


def _snapshot_item(take: StockTake, balance: InventoryBalance) -> StockTakeItem:
    item = StockTakeItem(
        stock_take_id=take.id,
        balance_id=balance.id,
        product_id=balance.product_id,
        lot_id=balance.lot_id,
        lot_key=balance.lot_key,
        location_id=balance.location_id,
        expected_quantity=balance.quantity_on_hand,
    )
    db.session.add(item)
    return item


def initiate(
    *,
    location_id: int | None = None,
    product_id: int | None = None,
    initiated_by: int | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> StockTake:
    """
    Create a stock take (status: Planning) and snapshot expected quantities.

    Every balance row matching the filters becomes one item, including rows
    that are currently empty. No filters means the whole warehouse.
    """
    def _op():
        if location_id is not None and db.session.get(WarehouseLocation, location_id) is None:
            raise UnknownReference(f"Location {location_id} not found", location_id=location_id)
        if product_id is not None and db.session.get(Product, product_id) is None:
            raise UnknownReference(f"Product {product_id} not found", product_id=product_id)

        take = StockTake(
            # Placeholder until the id is known
            stock_take_number=f"PENDING-{uuid.uuid4().hex}",
            status=STATUS_PLANNING,
            filter_location_id=location_id,
            filter_product_id=product_id,
            notes=notes,
            initiated_by=initiated_by,
        )
        db.session.add(take)
        db.session.flush()
        take.stock_take_number = f"ST-{str(take.id).zfill(6)}"

        q = db.session.query(InventoryBalance)
        if location_id is not None:
            q = q.filter(InventoryBalance.location_id == location_id)
        if product_id is not None:
            q = q.filter(InventoryBalance.product_id == product_id)
        for balance in q.order_by(InventoryBalance.location_id, InventoryBalance.product_id, InventoryBalance.id):
            _snapshot_item(take, balance)

        db.session.flush()
        return take

    take = run_in_transaction(_op, commit=commit)
    logger.info("Initiated stock take %s with %s item(s)", take.stock_take_number, len(take.items))
    return take


def add_item(
    stock_take_id: int,
    location_id: int,
    product_id: int,
    lot_id: int | None = None,
    *,
    commit: bool = True,
) -> StockTakeItem:
    """Add one (lot-or-product, location) to a stock take that is not yet processed."""
    def _op():
        take = _lock_stock_take(stock_take_id)
        _require_status(take, {STATUS_PLANNING, STATUS_IN_PROGRESS}, "add items to")

        balance = get_balance(location_id, product_id, lot_id)
        if balance is None:
            raise MissingInventoryRecord(
                "No inventory record for this lot/location",
                product_id=product_id,
                lot_id=lot_id,
                location_id=location_id,
            )

        existing = db.session.query(StockTakeItem).filter_by(
            stock_take_id=stock_take_id,
            product_id=product_id,
            lot_key=lot_key_for(lot_id),
            location_id=location_id,
        ).first()
        if existing:
            raise StockTakeStateError(
                "Item already on this stock take",
                stock_take_id=stock_take_id,
                item_id=existing.id,
            )

        item = _snapshot_item(take, balance)
        db.session.flush()
        return item

    return run_in_transaction(_op, commit=commit)


def start(stock_take_id: int, *, commit: bool = True) -> StockTake:
    """Planning -> InProgress; counts are accepted from here on."""
    def _op():
        take = _lock_stock_take(stock_take_id)
        _require_status(take, {STATUS_PLANNING}, "start")
        take.status = STATUS_IN_PROGRESS
        take.started_at = utcnow()
        return take

    take = run_in_transaction(_op, commit=commit)
    logger.info("Stock take %s started", take.stock_take_number)
    return take


def submit_count(
    item_id: int,
    counted_quantity: int,
    *,
    counted_by: int | None = None,
    reason: str | None = None,
    commit: bool = True,
) -> StockTakeItem:
    """
    Record the physical count for one item.

    Args:
        item_id: Stock take item ID
        counted_quantity: Units physically found (>= 0)
        counted_by: Opaque id of the counter
        reason: Optional explanation for a discrepancy

    Raises:
        InvalidQuantity: counted_quantity is not a non-negative integer
        StockTakeStateError: the stock take is not InProgress
    """
    if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int) or counted_quantity < 0:
        raise InvalidQuantity("counted_quantity must be a non-negative integer", counted_quantity=counted_quantity)

    def _op():
        item = lock_for_update(db.session.query(StockTakeItem).filter_by(id=item_id)).populate_existing().first()
        if item is None:
            raise StockTakeNotFound(f"Stock take item {item_id} not found", item_id=item_id)
        take = _lock_stock_take(item.stock_take_id)
        _require_status(take, {STATUS_IN_PROGRESS}, "submit counts for")

        item.counted_quantity = counted_quantity
        item.counted_by = counted_by
        item.counted_at = utcnow()
        item.reason_for_discrepancy = reason.strip() if reason and reason.strip() else None
        return item

    return run_in_transaction(_op, commit=commit)


def process(stock_take_id: int, *, actor_id: int | None = None, commit: bool = True) -> StockTake:
    """
    Apply every count to the ledger (InProgress -> Completed), all or nothing.
    """
    def _op():
        take = _lock_stock_take(stock_take_id)
        _require_status(take, {STATUS_IN_PROGRESS}, "process")

        uncounted = [item.id for item in take.items if item.counted_quantity is None]
        if uncounted:
            raise StockTakeStateError(
                f"{len(uncounted)} item(s) have not been counted",
                stock_take_id=stock_take_id,
                uncounted_item_ids=uncounted,
            )

        for item in take.items:
            balance = get_balance(item.location_id, item.product_id, item.lot_id, lock=True)
            if balance is None:
                raise MissingInventoryRecord(
                    "Balance row for a counted item no longer exists",
                    stock_take_id=stock_take_id,
                    item_id=item.id,
                    product_id=item.product_id,
                    lot_id=item.lot_id,
                    location_id=item.location_id,
                )

            item.discrepancy = item.expected_quantity - item.counted_quantity
            balance, previous = overwrite_on_hand(
                balance.id, item.counted_quantity, counted_at=item.counted_at,
            )
            if previous != item.expected_quantity:
                logger.info(
                    "Stock take %s item %s: on-hand moved from %s to %s since the snapshot",
                    take.stock_take_number, item.id, item.expected_quantity, previous,
                )

            change = item.counted_quantity - previous
            if change != 0:
                movement = append_movement(
                    movement_type=MOVEMENT_ADJUSTMENT,
                    product_id=item.product_id,
                    lot_id=item.lot_id,
                    from_location_id=item.location_id if change < 0 else None,
                    to_location_id=item.location_id if change > 0 else None,
                    quantity=abs(change),
                    reason=item.reason_for_discrepancy or (
                        f"Stock take {take.stock_take_number}: "
                        f"expected {item.expected_quantity}, counted {item.counted_quantity}"
                    ),
                    actor_id=actor_id,
                    reference_type=REFERENCE_STOCK_TAKE,
                    reference_id=take.id,
                    occurred_at=item.counted_at,
                )
                item.adjustment_movement_id = movement.id

            if item.discrepancy:
                logger.warning(
                    "Stock take %s discrepancy: product %s lot %s location %s expected %s counted %s",
                    take.stock_take_number, item.product_id, item.lot_id, item.location_id,
                    item.expected_quantity, item.counted_quantity,
                )

        take.status = STATUS_COMPLETED
        take.completed_at = utcnow()
        take.processed_by = actor_id
        return take

    take = run_in_transaction(_op, commit=commit)
    logger.info("Stock take %s processed", take.stock_take_number)
    return take


def verify(stock_take_id: int, verified_by: int | None = None, *, commit: bool = True) -> StockTake:
    def _op():
        take = _lock_stock_take(stock_take_id)
        _require_status(take, {STATUS_COMPLETED}, "verify")
        take.status = STATUS_VERIFIED
        take.verified_at = utcnow()
        take.verified_by = verified_by
        return take

    return run_in_transaction(_op, commit=commit)


def cancel(stock_take_id: int, reason: str, *, commit: bool = True) -> StockTake:
    """Abandon a stock take before processing. Nothing in the ledger changes."""
    if not (reason and str(reason).strip()):
        raise StockTakeError("reason is required to cancel a stock take")

    def _op():
        take = _lock_stock_take(stock_take_id)
        if take.status not in {STATUS_PLANNING, STATUS_IN_PROGRESS}:
            raise StockTakeStateError(
                f"Cannot cancel stock take in {take.status} status. "
                f"Stock takes can only be cancelled before processing.",
                stock_take_id=take.id,
                status=take.status,
            )
        take.status = STATUS_CANCELLED
        take.cancelled_at = utcnow()
        take.cancellation_reason = str(reason).strip()
        return take

    take = run_in_transaction(_op, commit=commit)
    logger.info("Stock take %s cancelled: %s", take.stock_take_number, take.cancellation_reason)
    return take


def get_stock_take_summary(stock_take_id: int) -> dict:
    """Stock take with its items and discrepancy totals."""
    take = db.session.get(StockTake, stock_take_id)
    if take is None:
        raise StockTakeNotFound(f"Stock take {stock_take_id} not found", stock_take_id=stock_take_id)

    items = list(take.items)
    counted = [i for i in items if i.counted_quantity is not None]
    discrepancies = [i.expected_quantity - i.counted_quantity for i in counted]
    return {
        **take.to_dict(),
        "items": [item.to_dict() for item in items],
        "totals": {
            "item_count": len(items),
            "counted_count": len(counted),
            "shortage_units": sum(d for d in discrepancies if d > 0),
            "overage_units": -sum(d for d in discrepancies if d < 0),
        },
    }


def list_stock_takes(
    status: str | None = None,
    *,
    limit: int = 100,
    offset: int = 0,
) -> tuple[int, list[StockTake]]:
    q = StockTake.query
    if status is not None:
        if status not in STATUSES:
            raise StockTakeError(f"Invalid status: {status}")
        q = q.filter(StockTake.status == status)
    total = q.count()
    rows = q.order_by(StockTake.created_at.desc(), StockTake.id.desc()).offset(offset).limit(limit).all()
    return total, rows


def adjustment_movements(stock_take_id: int) -> list[StockMovement]:
    """Adjustment movements posted when the stock take was processed."""
    if db.session.get(StockTake, stock_take_id) is None:
        raise StockTakeNotFound(f"Stock take {stock_take_id} not found", stock_take_id=stock_take_id)
    return (
        StockMovement.query
        .filter_by(reference_type=REFERENCE_STOCK_TAKE, reference_id=stock_take_id)
        .order_by(StockMovement.id)
        .all()
    )
