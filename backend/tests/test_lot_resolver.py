"""
Lot resolver tests.

Verifies:
- Break-bulk / blank lot numbers key by product only
- Find-or-create is idempotent per (product, lot_number)
- Expiration backfill and immutability
- A product's keying scheme cannot be mixed
"""

from datetime import date

import pytest

from stockledger.models import ProductLot
from stockledger.services import ledger_store
from stockledger.services.errors import InvariantViolation
from stockledger.services.lot_resolver import LotResolutionError, assert_keying_scheme, resolve_lot


class TestResolveLot:

    def test_break_bulk_returns_none(self, db_session, product):
        assert resolve_lot(product.id, "L1", is_break_bulk=True) is None
        assert db_session.query(ProductLot).count() == 0

    @pytest.mark.parametrize("lot_number", [None, "", "   "])
    def test_missing_lot_number_returns_none(self, db_session, product, lot_number):
        assert resolve_lot(product.id, lot_number) is None

    def test_same_lot_resolves_to_same_row(self, db_session, product):
        first = resolve_lot(product.id, "L1")
        second = resolve_lot(product.id, " L1 ")
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(ProductLot).count() == 1

    def test_lot_numbers_are_scoped_per_product(self, db_session, make_product):
        p1 = make_product()
        p2 = make_product()

        assert resolve_lot(p1.id, "L1").id != resolve_lot(p2.id, "L1").id

    def test_expiration_backfilled_when_missing(self, db_session, product):
        resolve_lot(product.id, "L1")
        lot = resolve_lot(product.id, "L1", "2027-06-30")
        db_session.commit()

        assert lot.expiration_date == date(2027, 6, 30)

    def test_existing_expiration_is_not_overwritten(self, db_session, product):
        resolve_lot(product.id, "L1", date(2027, 6, 30))
        lot = resolve_lot(product.id, "L1", date(2028, 1, 1))

        assert lot.expiration_date == date(2027, 6, 30)

    def test_bad_expiration_rejected(self, db_session, product):
        with pytest.raises(LotResolutionError):
            resolve_lot(product.id, "L1", "30/06/2027")

    def test_overlong_lot_number_rejected(self, db_session, product):
        with pytest.raises(LotResolutionError):
            resolve_lot(product.id, "X" * 65)


class TestKeyingScheme:

    def test_lot_tracked_product_rejects_break_bulk(self, db_session, product, location_a):
        lot = resolve_lot(product.id, "L1")
        ledger_store.apply_delta(location_a.id, product.id, lot.id, 5)

        assert_keying_scheme(product.id, lot_tracked=True)
        with pytest.raises(InvariantViolation):
            assert_keying_scheme(product.id, lot_tracked=False)

    def test_break_bulk_product_rejects_lots(self, db_session, product, location_a):
        ledger_store.apply_delta(location_a.id, product.id, None, 5)

        assert_keying_scheme(product.id, lot_tracked=False)
        with pytest.raises(InvariantViolation):
            assert_keying_scheme(product.id, lot_tracked=True)
