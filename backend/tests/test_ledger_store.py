"""
Ledger store tests: the guarded balance primitive.

Verifies:
- Rows are created only by a positive on-hand delta
- 0 <= allocated <= on_hand is never broken and never clamped
- Compare-and-set overwrite used by stock takes
- FIFO ordering of allocatable rows
"""

from datetime import datetime

import pytest

from stockledger.extensions import db
from stockledger.models import InventoryBalance
from stockledger.services import ledger_store
from stockledger.services.errors import InvalidQuantity, InvariantViolation, MissingInventoryRecord


class TestApplyDelta:

    def test_positive_delta_creates_row(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 25)
        db_session.commit()

        assert balance.quantity_on_hand == 25
        assert balance.quantity_allocated == 0
        assert balance.lot_key == 0
        assert db_session.query(InventoryBalance).count() == 1

    def test_second_delta_reuses_row(self, db_session, product, location_a):
        first = ledger_store.apply_delta(location_a.id, product.id, None, 10)
        second = ledger_store.apply_delta(location_a.id, product.id, None, 5)
        db_session.commit()

        assert first.id == second.id
        assert second.quantity_on_hand == 15

    def test_negative_delta_on_missing_row_raises(self, db_session, product, location_a):
        with pytest.raises(MissingInventoryRecord) as exc:
            ledger_store.apply_delta(location_a.id, product.id, None, -1)

        assert exc.value.context["product_id"] == product.id
        assert exc.value.context["location_id"] == location_a.id
        assert db_session.query(InventoryBalance).count() == 0

    def test_on_hand_cannot_go_negative(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 5)
        db_session.commit()

        with pytest.raises(InvariantViolation) as exc:
            ledger_store.apply_delta_to_row(balance.id, -6)
        db_session.rollback()

        assert exc.value.context["quantity_on_hand"] == 5
        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 5

    def test_allocated_cannot_exceed_on_hand(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 5)

        with pytest.raises(InvariantViolation):
            ledger_store.apply_delta_to_row(balance.id, 0, 6)

    def test_on_hand_cannot_drop_below_allocated(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10, 8)
        db_session.commit()

        with pytest.raises(InvariantViolation):
            ledger_store.apply_delta_to_row(balance.id, -3)
        db_session.rollback()

        row = ledger_store.get_balance_by_id(balance.id)
        assert (row.quantity_on_hand, row.quantity_allocated) == (10, 8)

    def test_zero_delta_rejected(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 5)

        with pytest.raises(InvalidQuantity):
            ledger_store.apply_delta_to_row(balance.id, 0, 0)

    def test_available_is_derived(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10, 4)

        assert balance.quantity_available == 6
        assert balance.to_dict()["quantity_available"] == 6


class TestTryReserve:

    def test_reserves_when_available(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10)

        assert ledger_store.try_reserve(balance.id, 10) is True
        assert ledger_store.get_balance_by_id(balance.id).quantity_allocated == 10

    def test_refuses_without_raising(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10, 7)

        assert ledger_store.try_reserve(balance.id, 4) is False
        assert ledger_store.get_balance_by_id(balance.id).quantity_allocated == 7


class TestOverwriteOnHand:

    def test_returns_previous_and_sets_counted_at(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 100)
        counted_at = datetime(2026, 3, 1, 9, 30)

        row, previous = ledger_store.overwrite_on_hand(balance.id, 97, counted_at=counted_at)
        db_session.commit()

        assert previous == 100
        assert row.quantity_on_hand == 97
        assert row.last_counted_at == counted_at

    def test_rejects_count_below_allocated(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10, 6)

        with pytest.raises(InvariantViolation):
            ledger_store.overwrite_on_hand(balance.id, 5)

    def test_rejects_negative(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 10)

        with pytest.raises(InvalidQuantity):
            ledger_store.overwrite_on_hand(balance.id, -1)


class TestQueries:

    def test_allocatable_rows_oldest_first(self, db_session, product, location_a, location_b):
        newer = ledger_store.apply_delta(location_a.id, product.id, None, 5, occurred_at=datetime(2026, 2, 1))
        older = ledger_store.apply_delta(location_b.id, product.id, None, 5, occurred_at=datetime(2026, 1, 1))
        db_session.commit()

        assert [r.id for r in ledger_store.allocatable_rows(product.id)] == [older.id, newer.id]

    def test_allocatable_rows_skip_fully_allocated(self, db_session, product, location_a, location_b):
        ledger_store.apply_delta(location_a.id, product.id, None, 5, 5)
        open_row = ledger_store.apply_delta(location_b.id, product.id, None, 5)
        db_session.commit()

        assert [r.id for r in ledger_store.allocatable_rows(product.id)] == [open_row.id]

    def test_list_balances_filters(self, db_session, make_product, location_a, location_b):
        p1 = make_product()
        p2 = make_product()
        ledger_store.apply_delta(location_a.id, p1.id, None, 5)
        ledger_store.apply_delta(location_b.id, p1.id, None, 3, 3)
        ledger_store.apply_delta(location_a.id, p2.id, None, 1)
        db_session.commit()

        total, rows = ledger_store.list_balances(product_id=p1.id)
        assert total == 2

        total, rows = ledger_store.list_balances(location_id=location_a.id)
        assert {r.product_id for r in rows} == {p1.id, p2.id}

        total, rows = ledger_store.list_balances(product_id=p1.id, only_available=True)
        assert [r.location_id for r in rows] == [location_a.id]

    def test_rows_are_not_deleted_when_emptied(self, db_session, product, location_a):
        balance = ledger_store.apply_delta(location_a.id, product.id, None, 5)
        ledger_store.apply_delta_to_row(balance.id, -5)
        db_session.commit()

        assert db.session.get(InventoryBalance, balance.id).quantity_on_hand == 0
        total, _ = ledger_store.list_balances(include_empty=False)
        assert total == 0
