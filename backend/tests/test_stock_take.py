"""
Stock take tests.

LIFECYCLE under test:
Planning -> InProgress -> Completed -> Verified, Cancelled before processing.

Verifies:
- Shortage and overage counts overwrite on-hand and post Adjustment movements
- Processing is all-or-nothing and happens once
- The movement log still reconstructs every balance afterwards
"""

import pytest
from sqlalchemy import delete

from stockledger.models import InventoryBalance, StockMovement
from stockledger.services import adjustment_service, allocation_service, ledger_store, movement_log
from stockledger.services import stock_take_service as st
from stockledger.services.errors import InvalidQuantity, InvariantViolation, MissingInventoryRecord, StockTakeStateError
from stockledger.services.movement_log import MOVEMENT_ADJUSTMENT
from stockledger.services.stock_take_service import StockTakeError, StockTakeNotFound


def _count_all(take, counts):
    """counts: {balance_id: counted_quantity}"""
    for item in take.items:
        st.submit_count(item.id, counts[item.balance_id], counted_by=11)


class TestInitiate:

    def test_snapshots_expected_quantities(self, db_session, product, location_a, location_b, receive):
        a = receive(product.id, location_a.id, 100, "L1")
        receive(product.id, location_b.id, 5, "L1")

        take = st.initiate(location_id=location_a.id, initiated_by=2, notes="cycle count")

        assert take.status == st.STATUS_PLANNING
        assert take.stock_take_number == f"ST-{take.id:06d}"
        assert [(i.balance_id, i.expected_quantity) for i in take.items] == [(a.id, 100)]

    def test_whole_warehouse_when_unfiltered(self, db_session, product, location_a, location_b, receive):
        receive(product.id, location_a.id, 1)
        receive(product.id, location_b.id, 2)

        take = st.initiate()

        assert len(take.items) == 2

    def test_add_item(self, db_session, make_product, location_a, receive):
        p1 = make_product()
        p2 = make_product()
        receive(p1.id, location_a.id, 4)
        extra = receive(p2.id, location_a.id, 9)
        take = st.initiate(product_id=p1.id)

        item = st.add_item(take.id, location_a.id, p2.id)

        assert item.balance_id == extra.id
        assert item.expected_quantity == 9
        with pytest.raises(StockTakeStateError):
            st.add_item(take.id, location_a.id, p2.id)

    def test_add_item_requires_balance_row(self, db_session, product, location_a):
        take = st.initiate()

        with pytest.raises(MissingInventoryRecord):
            st.add_item(take.id, location_a.id, product.id)


class TestLifecycle:

    def test_counts_only_while_in_progress(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 10)
        take = st.initiate()

        with pytest.raises(StockTakeStateError):
            st.submit_count(take.items[0].id, 10)

        st.start(take.id)
        item = st.submit_count(take.items[0].id, 9, reason="miscount")
        item = st.submit_count(item.id, 10)

        assert item.counted_quantity == 10
        assert item.reason_for_discrepancy is None

    def test_negative_count_rejected(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 10)
        take = st.start(st.initiate().id)

        with pytest.raises(InvalidQuantity):
            st.submit_count(take.items[0].id, -1)

    def test_cannot_process_from_planning(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 10)
        take = st.initiate()

        with pytest.raises(StockTakeStateError):
            st.process(take.id)

    def test_uncounted_items_block_processing(self, db_session, product, location_a, location_b, receive):
        receive(product.id, location_a.id, 10)
        receive(product.id, location_b.id, 10)
        take = st.start(st.initiate().id)
        st.submit_count(take.items[0].id, 10)

        with pytest.raises(StockTakeStateError) as exc:
            st.process(take.id)

        assert exc.value.context["uncounted_item_ids"] == [take.items[1].id]

    def test_verify_after_completion(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {balance.id: 10})

        with pytest.raises(StockTakeStateError):
            st.verify(take.id)

        st.process(take.id, actor_id=5)
        take = st.verify(take.id, verified_by=6)

        assert take.status == st.STATUS_VERIFIED
        assert take.verified_by == 6

    def test_cancel(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 10)
        take = st.initiate()

        with pytest.raises(StockTakeError):
            st.cancel(take.id, "  ")

        take = st.cancel(take.id, "wrong zone")
        assert take.status == st.STATUS_CANCELLED
        assert take.cancellation_reason == "wrong zone"

        with pytest.raises(StockTakeStateError):
            st.start(take.id)

    def test_unknown_stock_take(self, db_session):
        with pytest.raises(StockTakeNotFound):
            st.start(999999)

    def test_list_by_status(self, db_session, product, location_a, receive):
        receive(product.id, location_a.id, 10)
        planning = st.initiate()
        running = st.start(st.initiate().id)

        total, rows = st.list_stock_takes(st.STATUS_IN_PROGRESS)

        assert total == 1
        assert rows[0].id == running.id
        assert st.list_stock_takes()[0] == 2
        assert planning.id != running.id


class TestProcess:

    def test_shortage(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 100, "L1")
        take = st.start(st.initiate(location_id=location_a.id).id)
        _count_all(take, {balance.id: 97})

        take = st.process(take.id, actor_id=5)

        assert take.status == st.STATUS_COMPLETED
        item = take.items[0]
        assert item.discrepancy == 3

        row = ledger_store.get_balance_by_id(balance.id)
        assert row.quantity_on_hand == 97
        assert row.last_counted_at is not None

        movements = st.adjustment_movements(take.id)
        assert len(movements) == 1
        movement = movements[0]
        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert movement.quantity == 3
        assert movement.from_location_id == location_a.id
        assert movement.to_location_id is None
        assert (movement.reference_type, movement.reference_id) == ("StockTake", take.id)
        assert item.adjustment_movement_id == movement.id
        assert movement_log.verify_ledger() == []

    def test_overage(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {balance.id: 12})

        take = st.process(take.id)

        assert take.items[0].discrepancy == -2
        movement = st.adjustment_movements(take.id)[0]
        assert movement.to_location_id == location_a.id
        assert movement.quantity == 2
        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 12

    def test_exact_count_posts_no_movement(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {balance.id: 10})

        take = st.process(take.id)

        assert take.items[0].discrepancy == 0
        assert take.items[0].adjustment_movement_id is None
        assert st.adjustment_movements(take.id) == []

    def test_processed_only_once(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {balance.id: 8})
        st.process(take.id)

        with pytest.raises(StockTakeStateError):
            st.process(take.id)

        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 8
        assert len(st.adjustment_movements(take.id)) == 1

    def test_count_below_allocated_rolls_back_everything(self, db_session, product, location_a, location_b, receive):
        first = receive(product.id, location_a.id, 10, day=1)
        second = receive(product.id, location_b.id, 10, day=2)
        allocation_service.allocate(product.id, 15)
        take = st.start(st.initiate().id)
        _count_all(take, {first.id: 12, second.id: 4})

        with pytest.raises(InvariantViolation):
            st.process(take.id)

        assert ledger_store.get_balance_by_id(first.id).quantity_on_hand == 10
        assert ledger_store.get_balance_by_id(second.id).quantity_on_hand == 10
        assert db_session.get(type(take), take.id).status == st.STATUS_IN_PROGRESS
        assert db_session.query(StockMovement).filter_by(reference_type="StockTake").count() == 0

    def test_missing_balance_row_rolls_back_everything(self, db_session, product, location_a, location_b, receive):
        kept = receive(product.id, location_a.id, 10)
        gone = receive(product.id, location_b.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {kept.id: 7, gone.id: 9})
        gone_item_id = next(i.id for i in take.items if i.balance_id == gone.id)
        db_session.execute(delete(InventoryBalance).where(InventoryBalance.id == gone.id))
        db_session.commit()

        with pytest.raises(MissingInventoryRecord) as exc:
            st.process(take.id)

        assert exc.value.context["stock_take_id"] == take.id
        assert exc.value.context["item_id"] == gone_item_id
        assert exc.value.context["location_id"] == location_b.id
        assert ledger_store.get_balance_by_id(kept.id).quantity_on_hand == 10
        assert db_session.get(type(take), take.id).status == st.STATUS_IN_PROGRESS
        assert db_session.query(StockMovement).filter_by(reference_type="StockTake").count() == 0

    def test_stock_moved_since_snapshot(self, db_session, product, location_a, receive):
        balance = receive(product.id, location_a.id, 100)
        take = st.start(st.initiate().id)
        adjustment_service.adjust(product.id, None, location_a.id, -10, "damaged")
        _count_all(take, {balance.id: 88})

        take = st.process(take.id)

        # Discrepancy is against the snapshot; the movement is the change applied
        assert take.items[0].discrepancy == 12
        assert st.adjustment_movements(take.id)[0].quantity == 2
        assert ledger_store.get_balance_by_id(balance.id).quantity_on_hand == 88
        assert movement_log.verify_ledger() == []

    def test_summary_totals(self, db_session, product, location_a, location_b, receive):
        a = receive(product.id, location_a.id, 10)
        b = receive(product.id, location_b.id, 10)
        take = st.start(st.initiate().id)
        _count_all(take, {a.id: 7, b.id: 11})
        st.process(take.id)

        summary = st.get_stock_take_summary(take.id)

        assert summary["status"] == st.STATUS_COMPLETED
        assert len(summary["items"]) == 2
        assert summary["totals"]["shortage_units"] == 3
        assert summary["totals"]["overage_units"] == 1
