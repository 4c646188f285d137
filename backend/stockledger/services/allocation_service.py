# Overview: Allocation Engine; reserves stock for outbound demand and moves stock between locations.

"""
Allocation & Transfer Invariants (authoritative)

Allocation policy:
- An allocation is pinned to the balance row it was taken from: the
  reserved units live in that row's quantity_allocated. Row selection is
  product-wide (every lot and location), oldest stock first:
  ORDER BY first_movement_at, id.
- allocate() never reserves more than a row's quantity_available. It returns
  {allocated, shortfall}; deciding whether a shortfall is acceptable is the
  caller's job. Each call is one atomic step; the engine does not assume
  all-or-nothing across the products of an order.
- A reservation that loses a race (another writer changed the row between
  read and UPDATE) re-reads the row and continues with what is left.

Transfers:
- Move on-hand between two locations for the same (product, lot). They never
  touch quantity_allocated, so only *unallocated* units can leave a row; the
  source must satisfy on_hand >= quantity and available >= quantity.
- One Transfer movement carries both locations.

Issue (shipping):
- Consumes an allocation: on_hand and allocated both drop by the quantity,
  and an Outbound movement is appended.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..models import InventoryBalance, Product, StockMovement, WarehouseLocation
from ..time_utils import normalize_datetime
from .concurrency import lock_for_update, run_in_transaction
from .errors import (
    InsufficientStock,
    InvalidQuantity,
    MissingInventoryRecord,
    UnknownReference,
    require_positive_quantity,
)
from .ledger_store import (
    allocatable_rows,
    apply_delta,
    apply_delta_to_row,
    get_balance_by_id,
    lot_key_for,
    require_balance_by_id,
    try_reserve,
)
from .movement_log import MOVEMENT_OUTBOUND, MOVEMENT_TRANSFER, append_movement

logger = logging.getLogger(__name__)

# Re-reads of a single row after losing a reservation race
RESERVE_ATTEMPTS = 5

REFERENCE_SHIPMENT = "Shipment"


@dataclass
class AllocationPick:
    balance_id: int
    location_id: int
    lot_id: int | None
    quantity: int

    def to_dict(self) -> dict:
        return {
            "balance_id": self.balance_id,
            "location_id": self.location_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
        }


@dataclass
class AllocationResult:
    product_id: int
    requested: int
    allocated: int = 0
    picks: list[AllocationPick] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return self.requested - self.allocated

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "allocated": self.allocated,
            "shortfall": self.shortfall,
            "picks": [p.to_dict() for p in self.picks],
        }


def _require_product(product_id) -> Product:
    product = db.session.get(Product, product_id) if isinstance(product_id, int) else None
    if product is None:
        raise UnknownReference(f"Product {product_id} not found", product_id=product_id)
    return product


def _require_location(location_id) -> WarehouseLocation:
    location = db.session.get(WarehouseLocation, location_id) if isinstance(location_id, int) else None
    if location is None or not location.is_active:
        raise UnknownReference(f"Location {location_id} not found or inactive", location_id=location_id)
    return location


def _reserve_from_row(balance_id: int, wanted: int) -> tuple[InventoryBalance | None, int]:
    """Reserve up to `wanted` units on one row; returns (row, units reserved)."""
    for _ in range(RESERVE_ATTEMPTS):
        balance = get_balance_by_id(balance_id, lock=True)
        if balance is None:
            return None, 0
        take = min(wanted, balance.quantity_available)
        if take <= 0:
            return balance, 0
        if try_reserve(balance_id, take):
            return balance, take
        logger.warning("Reservation of %s on balance %s lost a race; re-reading", take, balance_id)
    return None, 0


def allocate(
    product_id: int,
    quantity_needed: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    commit: bool = True,
) -> AllocationResult:
    """
    Reserve up to quantity_needed units of a product, oldest stock first.

    Deterministic: for a fixed set of rows the same rows are picked in the
    same order every time.
    """
    require_positive_quantity(quantity_needed, "quantity")

    def _op():
        _require_product(product_id)
        result = AllocationResult(product_id=product_id, requested=quantity_needed)

        for row in allocatable_rows(product_id):
            remaining = result.shortfall
            if remaining == 0:
                break
            balance, taken = _reserve_from_row(row.id, remaining)
            if taken:
                result.allocated += taken
                result.picks.append(AllocationPick(
                    balance_id=balance.id,
                    location_id=balance.location_id,
                    lot_id=balance.lot_id,
                    quantity=taken,
                ))
        return result

    result = run_in_transaction(_op, commit=commit)

    if result.shortfall:
        logger.warning(
            "Allocation for product %s (%s %s) short by %s of %s",
            product_id, reference_type, reference_id, result.shortfall, quantity_needed,
        )
    else:
        logger.info(
            "Allocated %s of product %s for %s %s across %s row(s)",
            result.allocated, product_id, reference_type, reference_id, len(result.picks),
        )
    return result


def deallocate(balance_id: int, quantity: int, *, commit: bool = True) -> InventoryBalance:
    """Release part of a row's reservation."""
    require_positive_quantity(quantity)

    def _op():
        balance = require_balance_by_id(balance_id, lock=True)
        if quantity > balance.quantity_allocated:
            raise InvalidQuantity(
                "Deallocation would make allocated quantity negative",
                balance_id=balance_id,
                quantity_allocated=balance.quantity_allocated,
                quantity=quantity,
            )
        return apply_delta_to_row(balance_id, 0, -quantity)

    balance = run_in_transaction(_op, commit=commit)
    logger.info("Released %s allocated unit(s) on balance %s", quantity, balance_id)
    return balance


def transfer(
    product_id: int,
    lot_id: int | None,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> StockMovement:
    """Move unallocated on-hand from one location to another in one transaction."""
    require_positive_quantity(quantity)
    if from_location_id == to_location_id:
        raise InvalidQuantity(
            "Cannot transfer stock to the same location",
            from_location_id=from_location_id,
            to_location_id=to_location_id,
        )
    occurred_dt = normalize_datetime(occurred_at)

    def _op():
        _require_location(to_location_id)

        # Lock both rows in id order so opposing transfers cannot deadlock
        rows = lock_for_update(
            db.session.query(InventoryBalance)
            .filter(
                InventoryBalance.product_id == product_id,
                InventoryBalance.lot_key == lot_key_for(lot_id),
                InventoryBalance.location_id.in_([from_location_id, to_location_id]),
            )
            .order_by(InventoryBalance.id)
        ).populate_existing().all()
        source = next((r for r in rows if r.location_id == from_location_id), None)

        if source is None:
            raise MissingInventoryRecord(
                "Source inventory not found",
                product_id=product_id,
                lot_id=lot_id,
                location_id=from_location_id,
            )
        if source.quantity_on_hand < quantity:
            raise InsufficientStock(
                "Insufficient inventory at the source location",
                balance_id=source.id,
                quantity_on_hand=source.quantity_on_hand,
                requested=quantity,
            )
        if source.quantity_available < quantity:
            raise InsufficientStock(
                "Requested quantity is allocated at the source location",
                balance_id=source.id,
                quantity_on_hand=source.quantity_on_hand,
                quantity_allocated=source.quantity_allocated,
                requested=quantity,
            )

        apply_delta_to_row(source.id, -quantity, 0)
        apply_delta(to_location_id, product_id, lot_id, quantity, 0, occurred_at=occurred_dt)

        return append_movement(
            movement_type=MOVEMENT_TRANSFER,
            product_id=product_id,
            lot_id=lot_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=quantity,
            reason=reason,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            occurred_at=occurred_dt,
        )

    movement = run_in_transaction(_op, commit=commit)
    logger.info(
        "Transferred %s of product %s (lot %s) from location %s to %s",
        quantity, product_id, lot_id, from_location_id, to_location_id,
    )
    return movement


def issue(
    balance_id: int,
    quantity: int,
    *,
    actor_id: int | None = None,
    reference_type: str = REFERENCE_SHIPMENT,
    reference_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> StockMovement:
    """Ship allocated units out of the warehouse."""
    require_positive_quantity(quantity)
    occurred_dt = normalize_datetime(occurred_at)

    def _op():
        balance = require_balance_by_id(balance_id, lock=True)
        if quantity > balance.quantity_allocated:
            raise InsufficientStock(
                "Cannot issue more than the allocated quantity",
                balance_id=balance_id,
                quantity_allocated=balance.quantity_allocated,
                requested=quantity,
            )
        apply_delta_to_row(balance_id, -quantity, -quantity)

        return append_movement(
            movement_type=MOVEMENT_OUTBOUND,
            product_id=balance.product_id,
            lot_id=balance.lot_id,
            from_location_id=balance.location_id,
            quantity=quantity,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            occurred_at=occurred_dt,
        )

    movement = run_in_transaction(_op, commit=commit)
    logger.info("Issued %s unit(s) from balance %s for %s %s", quantity, balance_id, reference_type, reference_id)
    return movement
