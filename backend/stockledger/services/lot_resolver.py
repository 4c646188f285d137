# Overview: Find-or-create lot identities for incoming stock.

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update

from ..extensions import db
from ..models import InventoryBalance, Product, ProductLot
from ..time_utils import parse_iso_date
from .concurrency import insert_ignoring_conflict
from .errors import InvariantViolation, LedgerError

logger = logging.getLogger(__name__)

MAX_LOT_NUMBER_LENGTH = 64


class LotResolutionError(LedgerError):
    """Lot number or expiration date could not be used."""
    status_code = 400


def _normalize_lot_number(lot_number) -> str | None:
    if lot_number is None:
        return None
    value = str(lot_number).strip()
    if not value:
        return None
    if len(value) > MAX_LOT_NUMBER_LENGTH:
        raise LotResolutionError(f"lot_number exceeds max length {MAX_LOT_NUMBER_LENGTH}", lot_number=value)
    return value


def resolve_lot(
    product_id: int,
    lot_number: str | None,
    expiration_date: date | str | None = None,
    is_break_bulk: bool = False,
) -> ProductLot | None:
    """
    Resolve the lot a movement applies to.

    Returns None (key balances by product only) for break-bulk stock or a
    missing lot number. Otherwise returns the existing (product_id,
    lot_number) lot or creates it. Idempotent under concurrency: creation is
    an INSERT that defers to the unique constraint, followed by a re-read.
    """
    number = _normalize_lot_number(lot_number)
    if is_break_bulk or number is None:
        return None

    try:
        expiration = parse_iso_date(expiration_date)
    except ValueError:
        raise LotResolutionError("expiration_date must be an ISO-8601 date", expiration_date=expiration_date)

    lot = _find_lot(product_id, number)
    if lot is None:
        insert_ignoring_conflict(
            ProductLot,
            {"product_id": product_id, "lot_number": number, "expiration_date": expiration},
            ["product_id", "lot_number"],
        )
        lot = _find_lot(product_id, number)
        if lot is None:
            raise InvariantViolation("Lot could not be created", product_id=product_id, lot_number=number)
        logger.info("Resolved lot %s for product %s (id=%s)", number, product_id, lot.id)

    if expiration is not None:
        if lot.expiration_date is None:
            # Backfill is the only mutation a lot ever receives
            db.session.execute(
                update(ProductLot)
                .where(ProductLot.id == lot.id, ProductLot.expiration_date.is_(None))
                .values(expiration_date=expiration)
                .execution_options(synchronize_session=False)
            )
            lot = _find_lot(product_id, number)
        elif lot.expiration_date != expiration:
            logger.warning(
                "Lot %s for product %s already expires %s; ignoring %s",
                number, product_id, lot.expiration_date, expiration,
            )

    return lot


def _find_lot(product_id: int, lot_number: str) -> ProductLot | None:
    return (
        db.session.query(ProductLot)
        .filter_by(product_id=product_id, lot_number=lot_number)
        .populate_existing()
        .first()
    )


def _lock_product(product_id: int) -> None:
    # UPDATE rather than FOR UPDATE: SQLite only serializes writers
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(is_active=Product.is_active)
        .execution_options(synchronize_session=False)
    )


def assert_keying_scheme(product_id: int, lot_tracked: bool) -> None:
    """
    A product's stock is keyed either by lot or by product alone, never both;
    mixing would count the same units twice.

    The product row is locked for the rest of the transaction first, so two
    receipts with different schemes cannot both pass the check.
    """
    _lock_product(product_id)

    if lot_tracked:
        conflicting = InventoryBalance.lot_id.is_(None)
    else:
        conflicting = InventoryBalance.lot_id.isnot(None)

    exists = (
        db.session.query(InventoryBalance.id)
        .filter(InventoryBalance.product_id == product_id, conflicting)
        .first()
    )
    if exists is not None:
        scheme = "break-bulk" if lot_tracked else "lot-tracked"
        raise InvariantViolation(
            f"Product {product_id} is already stocked as {scheme}; keying schemes cannot be mixed",
            product_id=product_id,
        )
