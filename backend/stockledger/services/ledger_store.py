# Overview: Balance rows; the one place quantity_on_hand / quantity_allocated are written.

"""
Ledger Store Invariants (authoritative)

- One row per (product, lot_key, location); lot_key = lot_id or 0 (break-bulk).
- 0 <= quantity_allocated <= quantity_on_hand, always. A write that would
  break this raises InvariantViolation; nothing is ever clamped.
- Every write is a conditional UPDATE whose WHERE clause re-checks the
  invariant against the row's *current* values, after the row has been read
  with SELECT ... FOR UPDATE. Engines that ignore FOR UPDATE (SQLite) still
  cannot lose an update: a stale writer simply matches zero rows.
- Rows are created lazily on the first positive on-hand delta, through an
  INSERT that tolerates a concurrent creator. Rows are never deleted.
- first_movement_at is the earliest business time at which stock was added
  to the row. A back-dated positive delta moves it earlier, never later.
- Reads that follow a write use populate_existing() so the identity map
  never serves figures older than the UPDATE that just ran.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update

from ..extensions import db
from ..models import InventoryBalance, ProductLot
from ..time_utils import normalize_datetime
from .concurrency import insert_ignoring_conflict, lock_for_update
from .errors import InvalidQuantity, InvariantViolation, MissingInventoryRecord

logger = logging.getLogger(__name__)

# Compare-and-set attempts for absolute overwrites before giving up
OVERWRITE_ATTEMPTS = 5


def lot_key_for(lot_id: int | None) -> int:
    return lot_id or 0


def _key_query(location_id: int, product_id: int, lot_id: int | None):
    return db.session.query(InventoryBalance).filter_by(
        product_id=product_id,
        lot_key=lot_key_for(lot_id),
        location_id=location_id,
    )


def get_balance(
    location_id: int,
    product_id: int,
    lot_id: int | None = None,
    *,
    lock: bool = False,
) -> InventoryBalance | None:
    """Balance row for (lot-or-product, location), or None if it was never created."""
    q = _key_query(location_id, product_id, lot_id)
    if lock:
        q = lock_for_update(q)
    return q.populate_existing().first()


def get_balance_by_id(balance_id: int, *, lock: bool = False) -> InventoryBalance | None:
    q = db.session.query(InventoryBalance).filter_by(id=balance_id)
    if lock:
        q = lock_for_update(q)
    return q.populate_existing().first()


def require_balance_by_id(balance_id: int, *, lock: bool = False) -> InventoryBalance:
    balance = get_balance_by_id(balance_id, lock=lock)
    if balance is None:
        raise MissingInventoryRecord(f"Inventory balance {balance_id} not found", balance_id=balance_id)
    return balance


def _create_row(location_id: int, product_id: int, lot_id: int | None, occurred_at: datetime) -> None:
    insert_ignoring_conflict(
        InventoryBalance,
        {
            "product_id": product_id,
            "lot_id": lot_id,
            "lot_key": lot_key_for(lot_id),
            "location_id": location_id,
            "quantity_on_hand": 0,
            "quantity_allocated": 0,
            "first_movement_at": occurred_at,
        },
        ["product_id", "lot_key", "location_id"],
    )


def _guarded_update(balance_id: int, on_hand_delta: int, allocated_delta: int) -> bool:
    """Apply both deltas only if the resulting row still satisfies the invariants."""
    new_on_hand = InventoryBalance.quantity_on_hand + on_hand_delta
    new_allocated = InventoryBalance.quantity_allocated + allocated_delta
    stmt = (
        update(InventoryBalance)
        .where(
            InventoryBalance.id == balance_id,
            new_on_hand >= 0,
            new_allocated >= 0,
            new_allocated <= new_on_hand,
        )
        .values(quantity_on_hand=new_on_hand, quantity_allocated=new_allocated)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def _backdate_first_movement(balance_id: int, occurred_at: datetime) -> None:
    db.session.execute(
        update(InventoryBalance)
        .where(InventoryBalance.id == balance_id, InventoryBalance.first_movement_at > occurred_at)
        .values(first_movement_at=occurred_at)
        .execution_options(synchronize_session=False)
    )


def apply_delta_to_row(balance_id: int, on_hand_delta: int, allocated_delta: int = 0) -> InventoryBalance:
    """
    Apply signed deltas to an existing row under its row lock.

    Raises MissingInventoryRecord if the row is gone and InvariantViolation
    if the result would break 0 <= allocated <= on_hand.
    """
    if on_hand_delta == 0 and allocated_delta == 0:
        raise InvalidQuantity("delta must change on-hand or allocated", balance_id=balance_id)

    require_balance_by_id(balance_id, lock=True)

    if not _guarded_update(balance_id, on_hand_delta, allocated_delta):
        current = require_balance_by_id(balance_id)
        raise InvariantViolation(
            "Balance update would violate 0 <= allocated <= on_hand",
            balance_id=balance_id,
            quantity_on_hand=current.quantity_on_hand,
            quantity_allocated=current.quantity_allocated,
            on_hand_delta=on_hand_delta,
            allocated_delta=allocated_delta,
        )

    balance = require_balance_by_id(balance_id)
    logger.debug(
        "balance %s: on_hand %+d allocated %+d -> on_hand=%s allocated=%s",
        balance_id, on_hand_delta, allocated_delta, balance.quantity_on_hand, balance.quantity_allocated,
    )
    return balance


def apply_delta(
    location_id: int,
    product_id: int,
    lot_id: int | None,
    on_hand_delta: int,
    allocated_delta: int = 0,
    *,
    occurred_at=None,
) -> InventoryBalance:
    """
    The ledger's core write: find (or, for a positive on-hand delta, create)
    the balance row for (lot-or-product, location) and apply both deltas.

    Never commits; callers append the matching movement in the same
    transaction.
    """
    occurred_dt = normalize_datetime(occurred_at)
    balance = get_balance(location_id, product_id, lot_id, lock=True)
    if balance is None:
        if on_hand_delta <= 0:
            raise MissingInventoryRecord(
                "No inventory record for this lot/location",
                product_id=product_id,
                lot_id=lot_id,
                location_id=location_id,
            )
        _create_row(location_id, product_id, lot_id, occurred_dt)
        balance = get_balance(location_id, product_id, lot_id, lock=True)
        if balance is None:
            raise InvariantViolation(
                "Balance row could not be created",
                product_id=product_id,
                lot_id=lot_id,
                location_id=location_id,
            )

    if on_hand_delta > 0:
        _backdate_first_movement(balance.id, occurred_dt)

    return apply_delta_to_row(balance.id, on_hand_delta, allocated_delta)


def try_reserve(balance_id: int, quantity: int) -> bool:
    """
    Increase quantity_allocated if the row still has that much available.

    Returns False instead of raising when a concurrent writer got there
    first; the allocator re-reads and carries on.
    """
    return _guarded_update(balance_id, 0, quantity)


def overwrite_on_hand(
    balance_id: int,
    new_on_hand: int,
    *,
    counted_at=None,
) -> tuple[InventoryBalance, int]:
    """
    Set quantity_on_hand to an absolute value (physical count is ground truth).

    Compare-and-set on the previous figure so the caller can log exactly the
    change that was applied. Returns (balance, previous_on_hand).
    """
    if isinstance(new_on_hand, bool) or not isinstance(new_on_hand, int) or new_on_hand < 0:
        raise InvalidQuantity("on-hand must be a non-negative integer", balance_id=balance_id, quantity=new_on_hand)

    counted_dt = normalize_datetime(counted_at)

    for _ in range(OVERWRITE_ATTEMPTS):
        balance = require_balance_by_id(balance_id, lock=True)
        previous = balance.quantity_on_hand
        if new_on_hand < balance.quantity_allocated:
            raise InvariantViolation(
                "Counted quantity is below the quantity already allocated",
                balance_id=balance_id,
                quantity_allocated=balance.quantity_allocated,
                counted_quantity=new_on_hand,
            )

        stmt = (
            update(InventoryBalance)
            .where(
                InventoryBalance.id == balance_id,
                InventoryBalance.quantity_on_hand == previous,
                InventoryBalance.quantity_allocated <= new_on_hand,
            )
            .values(quantity_on_hand=new_on_hand, last_counted_at=counted_dt)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 1:
            return require_balance_by_id(balance_id), previous

    raise InvariantViolation(
        "Balance kept changing while applying a count overwrite",
        balance_id=balance_id,
    )


def list_balances(
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    lot_id: int | None = None,
    lot_number: str | None = None,
    only_available: bool = False,
    include_empty: bool = True,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[int, list[InventoryBalance]]:
    q = InventoryBalance.query
    if product_id is not None:
        q = q.filter(InventoryBalance.product_id == product_id)
    if location_id is not None:
        q = q.filter(InventoryBalance.location_id == location_id)
    if lot_id is not None:
        q = q.filter(InventoryBalance.lot_id == lot_id)
    if lot_number is not None:
        q = (
            q.join(ProductLot, InventoryBalance.lot_id == ProductLot.id)
            .filter(ProductLot.lot_number == lot_number.strip())
        )
    if only_available:
        q = q.filter(InventoryBalance.quantity_available > 0)
    if not include_empty:
        q = q.filter(InventoryBalance.quantity_on_hand > 0)

    total = q.count()
    q = q.order_by(InventoryBalance.product_id, InventoryBalance.location_id, InventoryBalance.id).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return total, q.all()


def allocatable_rows(product_id: int) -> list[InventoryBalance]:
    """Rows with stock to spare, oldest first (first movement, then id)."""
    return (
        db.session.query(InventoryBalance)
        .filter(
            InventoryBalance.product_id == product_id,
            InventoryBalance.quantity_available > 0,
        )
        .order_by(InventoryBalance.first_movement_at.asc(), InventoryBalance.id.asc())
        .populate_existing()
        .all()
    )
