"""
Manual adjustment tests.
"""

import pytest

from stockledger.services import adjustment_service, allocation_service, ledger_store, movement_log
from stockledger.services.errors import (
    InsufficientStock,
    InvalidQuantity,
    InvariantViolation,
    MissingInventoryRecord,
    UnknownReference,
)
from stockledger.services.adjustment_service import AdjustmentError
from stockledger.services.lot_resolver import resolve_lot
from stockledger.services.movement_log import MOVEMENT_ADJUSTMENT


class TestAdjust:

    def test_found_stock_creates_row(self, db_session, product, location_a):
        movement = adjustment_service.adjust(product.id, None, location_a.id, 6, "found behind pallet")

        balance = ledger_store.get_balance(location_a.id, product.id)
        assert balance.quantity_on_hand == 6
        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert movement.to_location_id == location_a.id
        assert movement.from_location_id is None
        assert movement.reason == "found behind pallet"

    def test_write_off(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)

        movement = adjustment_service.adjust(product.id, None, location_a.id, -3, "damaged", actor_id=4)

        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 7
        assert movement.from_location_id == location_a.id
        assert movement.quantity == 3
        assert movement_log.verify_ledger() == []

    def test_write_off_missing_row(self, db_session, product, location_a):
        with pytest.raises(MissingInventoryRecord):
            adjustment_service.adjust(product.id, None, location_a.id, -1, "damaged")

    def test_write_off_beyond_on_hand(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 2)

        with pytest.raises(InsufficientStock):
            adjustment_service.adjust(product.id, None, location_a.id, -3, "damaged")

    def test_write_off_into_allocated_stock(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)
        allocation_service.allocate(product.id, 9)

        with pytest.raises(InvariantViolation):
            adjustment_service.adjust(product.id, None, location_a.id, -2, "damaged")

        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 10

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, db_session, product, location_a, reason):
        with pytest.raises(AdjustmentError):
            adjustment_service.adjust(product.id, None, location_a.id, 1, reason)

    def test_zero_delta_rejected(self, db_session, product, location_a):
        with pytest.raises(InvalidQuantity):
            adjustment_service.adjust(product.id, None, location_a.id, 0, "noop")

    def test_lot_must_belong_to_product(self, db_session, make_product, location_a):
        p1 = make_product()
        p2 = make_product()
        lot = resolve_lot(p1.id, "L1")
        db_session.commit()

        with pytest.raises(UnknownReference):
            adjustment_service.adjust(p2.id, lot.id, location_a.id, 1, "found")
