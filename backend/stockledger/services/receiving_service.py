# Overview: Receiving Processor; applies a finalized receipt to the ledger in one transaction.

"""
Receiving Invariants (authoritative)

- One receipt == one transaction. Either every line's on-hand increase and
  Inbound movement commits, or none does; downstream allocation must never
  see half a receipt.
- All lines are validated before the first write.
- Receiving only ever touches quantity_on_hand, never quantity_allocated.
- Re-submitting a receipt after a failure is safe because failure leaves no
  partial effect.
- A receipt with a reference_id posts at most once. Its ReceiptPosting row is
  written in the same transaction as the lines, under a unique constraint, so
  a resubmission after a successful commit is rejected rather than doubling
  on-hand.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import Product, ReceiptPosting, StockMovement, WarehouseLocation
from ..time_utils import normalize_datetime, utcnow
from .concurrency import insert_ignoring_conflict, run_in_transaction
from .errors import InvalidQuantity, LedgerError, UnknownReference, require_positive_quantity
from .ledger_store import apply_delta
from .lot_resolver import assert_keying_scheme, resolve_lot
from .movement_log import MOVEMENT_INBOUND, append_movement

logger = logging.getLogger(__name__)

REFERENCE_RECEIPT = "Receipt"

# Clock skew tolerated on client-supplied business timestamps
FUTURE_TOLERANCE = timedelta(minutes=2)


class ReceivingError(LedgerError):
    """Receipt payload is malformed."""
    status_code = 400


class ReceiptAlreadyReceived(LedgerError):
    """Receipt was already applied to the ledger."""
    status_code = 409


def _require_product(product_id, *, line: int) -> Product:
    product = db.session.get(Product, product_id) if isinstance(product_id, int) else None
    if product is None:
        raise UnknownReference(f"Product {product_id} not found", product_id=product_id, line=line)
    if not product.is_active:
        raise UnknownReference(f"Product {product_id} is inactive", product_id=product_id, line=line)
    return product


def _require_location(location_id, *, line: int) -> WarehouseLocation:
    location = db.session.get(WarehouseLocation, location_id) if isinstance(location_id, int) else None
    if location is None:
        raise UnknownReference(f"Location {location_id} not found", location_id=location_id, line=line)
    if not location.is_active:
        raise UnknownReference(f"Location {location_id} is inactive", location_id=location_id, line=line)
    return location


def _validate_line(index: int, line: dict) -> dict:
    if not isinstance(line, dict):
        raise ReceivingError("receipt line must be an object", line=index)

    try:
        quantity = require_positive_quantity(line.get("quantity"))
    except InvalidQuantity as e:
        raise InvalidQuantity(e.message, line=index, **e.context)

    product = _require_product(line.get("product_id"), line=index)
    location = _require_location(line.get("location_id"), line=index)

    return {
        "product_id": product.id,
        "location_id": location.id,
        "quantity": quantity,
        "lot_number": line.get("lot_number"),
        "expiration_date": line.get("expiration_date"),
        "is_break_bulk": bool(line.get("is_break_bulk", False)),
    }


def _record_posting(reference_type: str, reference_id: int, line_count: int, actor_id, occurred_at) -> None:
    inserted = insert_ignoring_conflict(
        ReceiptPosting,
        {
            "reference_type": reference_type,
            "reference_id": reference_id,
            "line_count": line_count,
            "actor_id": actor_id,
            "occurred_at": occurred_at,
        },
        ["reference_type", "reference_id"],
    )
    if not inserted:
        posting = ReceiptPosting.query.filter_by(reference_type=reference_type, reference_id=reference_id).first()
        raise ReceiptAlreadyReceived(
            f"{reference_type} {reference_id} has already been received",
            reference_type=reference_type,
            reference_id=reference_id,
            posting_id=posting.id if posting else None,
        )


def receive(
    lines: list[dict],
    *,
    reference_type: str = REFERENCE_RECEIPT,
    reference_id: int | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> list[StockMovement]:
    """
    Apply every line of one receipt to the ledger.

    Each line: {product_id, quantity, location_id, lot_number?,
    expiration_date?, is_break_bulk?}. Returns the Inbound movements in line
    order.
    """
    if not lines:
        raise ReceivingError("Cannot receive a receipt with no line items", reference_id=reference_id)

    try:
        occurred_dt = normalize_datetime(occurred_at)
    except ValueError:
        raise ReceivingError("occurred_at must be an ISO-8601 datetime")
    if occurred_dt > utcnow() + FUTURE_TOLERANCE:
        raise ReceivingError("occurred_at cannot be in the future")

    def _op():
        validated = [_validate_line(i, line) for i, line in enumerate(lines)]
        if reference_id is not None:
            _record_posting(reference_type, reference_id, len(validated), actor_id, occurred_dt)

        movements = []
        for line in validated:
            lot = resolve_lot(
                line["product_id"],
                line["lot_number"],
                line["expiration_date"],
                line["is_break_bulk"],
            )
            lot_id = lot.id if lot else None
            assert_keying_scheme(line["product_id"], lot_tracked=lot is not None)

            apply_delta(
                line["location_id"],
                line["product_id"],
                lot_id,
                line["quantity"],
                0,
                occurred_at=occurred_dt,
            )
            movements.append(append_movement(
                movement_type=MOVEMENT_INBOUND,
                product_id=line["product_id"],
                lot_id=lot_id,
                to_location_id=line["location_id"],
                quantity=line["quantity"],
                actor_id=actor_id,
                reference_type=reference_type,
                reference_id=reference_id,
                occurred_at=occurred_dt,
            ))
        return movements

    movements = run_in_transaction(_op, commit=commit)
    logger.info(
        "%s %s received: %s line(s), %s unit(s)",
        reference_type, reference_id, len(movements), sum(m.quantity for m in movements),
    )
    return movements