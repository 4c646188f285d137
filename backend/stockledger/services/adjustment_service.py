# Overview: Manual stock corrections (damage, write-off, found stock) outside a stock take.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Product, ProductLot, StockMovement, WarehouseLocation
from ..time_utils import normalize_datetime
from .concurrency import run_in_transaction
from .errors import InsufficientStock, InvalidQuantity, LedgerError, MissingInventoryRecord, UnknownReference
from .ledger_store import apply_delta, apply_delta_to_row, get_balance
from .lot_resolver import assert_keying_scheme
from .movement_log import MOVEMENT_ADJUSTMENT, append_movement

logger = logging.getLogger(__name__)

REFERENCE_MANUAL = "ManualAdjustment"


class AdjustmentError(LedgerError):
    """Adjustment request is missing its justification."""
    status_code = 400


def _require_references(product_id, lot_id, location_id) -> None:
    product = db.session.get(Product, product_id) if isinstance(product_id, int) else None
    if product is None:
        raise UnknownReference(f"Product {product_id} not found", product_id=product_id)
    location = db.session.get(WarehouseLocation, location_id) if isinstance(location_id, int) else None
    if location is None or not location.is_active:
        raise UnknownReference(f"Location {location_id} not found or inactive", location_id=location_id)
    if lot_id is not None:
        lot = db.session.get(ProductLot, lot_id)
        if lot is None or lot.product_id != product_id:
            raise UnknownReference(f"Lot {lot_id} not found for product {product_id}", lot_id=lot_id)


def adjust(
    product_id: int,
    lot_id: int | None,
    location_id: int,
    quantity_delta: int,
    reason: str,
    *,
    actor_id: int | None = None,
    reference_type: str = REFERENCE_MANUAL,
    reference_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> StockMovement:
    """
    Apply a signed on-hand correction and log it as an Adjustment.

    Positive deltas may create the balance row; negative deltas need an
    existing row with enough unallocated stock.
    """
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta == 0:
        raise InvalidQuantity("quantity_delta must be a non-zero integer", quantity_delta=quantity_delta)
    if not (reason and str(reason).strip()):
        raise AdjustmentError("reason is required for an adjustment")
    occurred_dt = normalize_datetime(occurred_at)

    def _op():
        _require_references(product_id, lot_id, location_id)

        if quantity_delta > 0:
            assert_keying_scheme(product_id, lot_id is not None)
            apply_delta(location_id, product_id, lot_id, quantity_delta, 0, occurred_at=occurred_dt)
            from_location_id, to_location_id = None, location_id
        else:
            balance = get_balance(location_id, product_id, lot_id, lock=True)
            if balance is None:
                raise MissingInventoryRecord(
                    "No inventory record for this lot/location",
                    product_id=product_id,
                    lot_id=lot_id,
                    location_id=location_id,
                )
            if balance.quantity_on_hand < -quantity_delta:
                raise InsufficientStock(
                    "Adjustment exceeds quantity on hand",
                    balance_id=balance.id,
                    quantity_on_hand=balance.quantity_on_hand,
                    quantity_delta=quantity_delta,
                )
            # Dipping into allocated stock surfaces as InvariantViolation
            apply_delta_to_row(balance.id, quantity_delta, 0)
            from_location_id, to_location_id = location_id, None

        return append_movement(
            movement_type=MOVEMENT_ADJUSTMENT,
            product_id=product_id,
            lot_id=lot_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=abs(quantity_delta),
            reason=reason,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            occurred_at=occurred_dt,
        )

    movement = run_in_transaction(_op, commit=commit)
    logger.info(
        "Adjusted product %s (lot %s) at location %s by %+d: %s",
        product_id, lot_id, location_id, quantity_delta, reason,
    )
    return movement
