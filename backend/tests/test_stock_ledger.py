"""Tests for the warehouse stock ledger."""

import pytest
from sqlalchemy import select

from grocery.core.errors import InconsistentReservation, InsufficientStock, InvalidQuantity, NotFound
from grocery.models.product import Product
from grocery.models.warehouse import StockMovement, Warehouse, WarehouseStock
from grocery.services.stock_ledger_service import StockLedgerService, StockReference


def _movements(db, product_id):
    return db.scalars(
        select(StockMovement).where(StockMovement.product_id == product_id).order_by(StockMovement.id)
    ).all()


def _stock(db, warehouse_id, product_id):
    return db.scalar(
        select(WarehouseStock).where(
            WarehouseStock.warehouse_id == warehouse_id,
            WarehouseStock.product_id == product_id,
        )
    )


class TestReceiveWriteoff:
    def test_receive_creates_row_lazily(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        stock = ledger.receive(warehouse.id, product_a.id, 12, reason="Delivery", actor_id=None)

        assert stock.quantity == 12
        assert stock.reserved_quantity == 0
        assert stock.reorder_min == 5
        assert stock.reorder_target == 20
        db_session.refresh(product_a)
        assert product_a.stock_quantity == 12
        assert product_a.in_stock is True

    def test_receive_then_writeoff_round_trip(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 10, reason="Delivery")
        ledger.writeoff(warehouse.id, product_a.id, 10, reason="Spoiled")

        stock = _stock(db_session, warehouse.id, product_a.id)
        assert stock.quantity == 0
        assert stock.reserved_quantity == 0

        movements = _movements(db_session, product_a.id)
        assert [(m.movement_type, m.quantity) for m in movements] == [
            ("receive", 10),
            ("writeoff", 10),
        ]
        assert movements[1].reason == "Spoiled"

        db_session.refresh(product_a)
        assert product_a.stock_quantity == 0
        assert product_a.in_stock is False

    def test_writeoff_cannot_touch_reserved_stock(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 10)
        ledger.reserve(warehouse.id, product_a.id, 8)

        with pytest.raises(InsufficientStock) as exc:
            ledger.writeoff(warehouse.id, product_a.id, 3)
        assert exc.value.context["available"] == 2
        assert exc.value.context["requested"] == 3

        stock = _stock(db_session, warehouse.id, product_a.id)
        assert stock.quantity == 10
        assert stock.reserved_quantity == 8

    def test_availability_never_forced_back_on(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 1)
        ledger.writeoff(warehouse.id, product_a.id, 1)
        ledger.receive(warehouse.id, product_a.id, 5)

        db_session.refresh(product_a)
        assert product_a.stock_quantity == 5
        assert product_a.in_stock is False


class TestReservations:
    def test_reserve_reduces_available_only(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 3)
        stock = ledger.reserve(
            warehouse.id, product_a.id, 2, reference=StockReference("pick_task", 7)
        )

        assert stock.quantity == 3
        assert stock.reserved_quantity == 2
        assert stock.available == 1

        reserve = _movements(db_session, product_a.id)[-1]
        assert reserve.movement_type == "reserve"
        assert reserve.reference_type == "pick_task"
        assert reserve.reference_id == 7

        db_session.refresh(product_a)
        assert product_a.stock_quantity == 1

    def test_insufficient_stock_leaves_state_untouched(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 3)

        with pytest.raises(InsufficientStock) as exc:
            ledger.reserve(warehouse.id, product_a.id, 5)

        assert exc.value.context["product_id"] == product_a.id
        assert exc.value.context["requested"] == 5
        assert exc.value.context["available"] == 3

        stock = _stock(db_session, warehouse.id, product_a.id)
        assert stock.quantity == 3
        assert stock.reserved_quantity == 0
        assert len(_movements(db_session, product_a.id)) == 1

    def test_release_more_than_reserved_is_inconsistent(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 5)
        ledger.reserve(warehouse.id, product_a.id, 2)

        with pytest.raises(InconsistentReservation):
            ledger.release(warehouse.id, product_a.id, 3)

        stock = _stock(db_session, warehouse.id, product_a.id)
        assert stock.reserved_quantity == 2

    def test_commit_pick_removes_reserved_stock(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 5)
        ledger.reserve(warehouse.id, product_a.id, 4)
        stock = ledger.commit_pick(warehouse.id, product_a.id, 4)

        assert stock.quantity == 1
        assert stock.reserved_quantity == 0
        assert _movements(db_session, product_a.id)[-1].movement_type == "pick"

    def test_commit_pick_without_reservation_is_inconsistent(self, db_session, warehouse, product_a):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 5)

        with pytest.raises(InconsistentReservation):
            ledger.commit_pick(warehouse.id, product_a.id, 1)


class TestValidation:
    @pytest.mark.parametrize("qty", [0, -1, True, 1.5])
    def test_quantity_must_be_positive_integer(self, db_session, warehouse, product_a, qty):
        with pytest.raises(InvalidQuantity):
            StockLedgerService(db_session).receive(warehouse.id, product_a.id, qty)

    def test_unknown_product(self, db_session, warehouse):
        with pytest.raises(NotFound):
            StockLedgerService(db_session).receive(warehouse.id, 9999, 1)

    def test_unknown_warehouse(self, db_session, product_a):
        with pytest.raises(NotFound):
            StockLedgerService(db_session).receive(9999, product_a.id, 1)


class TestAggregate:
    def test_availability_sums_all_warehouses(self, db_session, warehouse, product_a):
        second = Warehouse(code="NORTH", name="North", is_active=True)
        db_session.add(second)
        db_session.commit()

        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 4)
        ledger.receive(second.id, product_a.id, 6)
        ledger.reserve(second.id, product_a.id, 5)

        db_session.refresh(product_a)
        assert product_a.stock_quantity == 5

    def test_conservation_over_a_sequence(self, db_session, warehouse, product_a):
        """quantity equals receives minus writeoffs minus picks."""
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 20)
        ledger.writeoff(warehouse.id, product_a.id, 3)
        ledger.reserve(warehouse.id, product_a.id, 6)
        ledger.release(warehouse.id, product_a.id, 2)
        ledger.commit_pick(warehouse.id, product_a.id, 4)
        ledger.receive(warehouse.id, product_a.id, 1)

        totals = {"receive": 0, "writeoff": 0, "reserve": 0, "release": 0, "pick": 0}
        for m in _movements(db_session, product_a.id):
            totals[m.movement_type] += m.quantity

        stock = _stock(db_session, warehouse.id, product_a.id)
        assert stock.quantity == totals["receive"] - totals["writeoff"] - totals["pick"]
        assert stock.reserved_quantity == totals["reserve"] - totals["release"] - totals["pick"]
        assert 0 <= stock.reserved_quantity <= stock.quantity

    def test_uncommitted_mutations_roll_back_together(self, db_session, warehouse, product_a, product_b):
        ledger = StockLedgerService(db_session)
        ledger.receive(warehouse.id, product_a.id, 5)
        ledger.receive(warehouse.id, product_b.id, 1)

        ledger.reserve(warehouse.id, product_a.id, 5, commit=False)
        with pytest.raises(InsufficientStock):
            ledger.reserve(warehouse.id, product_b.id, 2, commit=False)
        db_session.rollback()

        assert _stock(db_session, warehouse.id, product_a.id).reserved_quantity == 0
        assert db_session.get(Product, product_a.id).stock_quantity == 5
