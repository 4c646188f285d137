# Overview: Append-only movement log; the authoritative audit trail behind every balance.

"""
Movement Log Invariants (authoritative)

- append_movement() only inserts. It never reads or writes balance rows;
  the caller writes the balance and the movement inside one transaction.
- Validation here is limited to required-field presence. Business checks
  (enough stock, valid reason) belong to the caller and run before append.
- quantity is always positive; direction lives in movement_type and the
  from/to location pair.
- For any balance row: SUM(movements into it) - SUM(movements out of it)
  == quantity_on_hand. verify_ledger() reports rows where that fails.
- occurred_at is business time; created_at is system time (DB default).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..extensions import db
from ..models import InventoryBalance, StockMovement
from ..time_utils import normalize_datetime
from .errors import InvalidQuantity, LedgerError


MOVEMENT_INBOUND = "Inbound"
MOVEMENT_OUTBOUND = "Outbound"
MOVEMENT_TRANSFER = "Transfer"
MOVEMENT_ADJUSTMENT = "Adjustment"

MOVEMENT_TYPES = {MOVEMENT_INBOUND, MOVEMENT_OUTBOUND, MOVEMENT_TRANSFER, MOVEMENT_ADJUSTMENT}


class MovementValidationError(LedgerError):
    """A movement is missing a required field."""
    status_code = 400


def append_movement(
    *,
    movement_type: str,
    product_id: int,
    quantity: int,
    lot_id: int | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    reason: str | None = None,
    actor_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Append one immutable movement. Flushes (to assign the id), never commits.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise MovementValidationError(f"Invalid movement_type: {movement_type}")
    if product_id is None:
        raise MovementValidationError("product_id is required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity("movement quantity must be a positive integer", quantity=quantity)
    if from_location_id is None and to_location_id is None:
        raise MovementValidationError("a movement needs a source or a destination location")
    if movement_type == MOVEMENT_TRANSFER and (from_location_id is None or to_location_id is None):
        raise MovementValidationError("a Transfer movement needs both locations")
    if movement_type == MOVEMENT_ADJUSTMENT and not (reason and reason.strip()):
        raise MovementValidationError("reason is required for an Adjustment movement")

    movement = StockMovement(
        movement_type=movement_type,
        product_id=product_id,
        lot_id=lot_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=quantity,
        reason=reason.strip() if reason else None,
        actor_id=actor_id,
        reference_type=reference_type,
        reference_id=reference_id,
        occurred_at=normalize_datetime(occurred_at),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def get_movement(movement_id: int) -> StockMovement | None:
    return db.session.get(StockMovement, movement_id)


def _lot_filter(lot_id: int | None):
    if lot_id is None:
        return StockMovement.lot_id.is_(None)
    return StockMovement.lot_id == lot_id


def list_movements(
    *,
    product_id: int | None = None,
    lot_id: int | None = None,
    location_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[int, list[StockMovement]]:
    """
    Filtered movement history, newest first. Date bounds are inclusive.

    location_id matches either side of the movement.
    """
    q = StockMovement.query
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if lot_id is not None:
        q = q.filter(StockMovement.lot_id == lot_id)
    if location_id is not None:
        q = q.filter(
            (StockMovement.from_location_id == location_id) | (StockMovement.to_location_id == location_id)
        )
    if movement_type is not None:
        if movement_type not in MOVEMENT_TYPES:
            raise MovementValidationError(f"Invalid movement_type: {movement_type}")
        q = q.filter(StockMovement.movement_type == movement_type)
    if reference_type is not None:
        q = q.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(StockMovement.reference_id == reference_id)
    if start is not None:
        q = q.filter(StockMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(StockMovement.occurred_at <= end)

    total = q.count()
    rows = (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return total, rows


def net_quantity_for_balance(balance: InventoryBalance) -> int:
    """Reconstruct a balance row's on-hand figure from the log alone."""
    signed = case(
        (StockMovement.to_location_id == balance.location_id, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    q = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
        StockMovement.product_id == balance.product_id,
        _lot_filter(balance.lot_id),
        (StockMovement.to_location_id == balance.location_id)
        | (StockMovement.from_location_id == balance.location_id),
    )
    return int(q.scalar() or 0)


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Compare every balance row against its movement history.

    Returns one entry per inconsistent row; an empty list means the
    materialized balances are fully explained by the log.
    """
    q = InventoryBalance.query
    if product_id is not None:
        q = q.filter(InventoryBalance.product_id == product_id)

    problems = []
    for balance in q.order_by(InventoryBalance.id).all():
        reconstructed = net_quantity_for_balance(balance)
        if reconstructed != balance.quantity_on_hand:
            problems.append({
                "balance_id": balance.id,
                "product_id": balance.product_id,
                "lot_id": balance.lot_id,
                "location_id": balance.location_id,
                "quantity_on_hand": balance.quantity_on_hand,
                "reconstructed_on_hand": reconstructed,
            })
    return problems
