"""Concurrent writers against a file-backed SQLite database.

Each worker gets its own session and connection; a barrier releases them
together so their reads and writes overlap.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from grocery.core.errors import Busy, DomainError
from grocery.core.rbac import Principal, UserRole
from grocery.db.locking import busy_on_lock_timeout
from grocery.models.order import Order, OrderEvent, OrderItem
from grocery.models.pick_task import PickTask
from grocery.models.warehouse import StockMovement, Warehouse, WarehouseStock
from grocery.services.order_service import OrderService
from grocery.services.pick_task_service import PickTaskService
from grocery.services.stock_ledger_service import StockLedgerService

from conftest import make_courier, make_product, make_user

WORKERS = 4


def _race(session_factory, action, workers=WORKERS):
    """Run ``action(session, index)`` in parallel; return each worker's outcome."""
    barrier = threading.Barrier(workers)
    outcomes = [None] * workers

    def run(index):
        session = session_factory()
        try:
            barrier.wait()
            action(session, index)
            outcomes[index] = "ok"
        except DomainError as exc:
            outcomes[index] = exc.code
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


@pytest.fixture
def stocked(file_session_factory):
    """MAIN warehouse with 5 units of one product, plus a customer."""
    with file_session_factory() as db:
        warehouse = Warehouse(code="MAIN", name="Main warehouse", is_active=True)
        db.add(warehouse)
        db.commit()
        product = make_product(db, "Milk", "1.19")
        customer = make_user(db, "customer@example.com", UserRole.CUSTOMER)
        StockLedgerService(db).receive(warehouse.id, product.id, 5)
        return {"warehouse": warehouse.id, "product": product.id, "customer": customer.id}


def _stock(session_factory, ids):
    with session_factory() as db:
        stock = db.scalar(
            select(WarehouseStock).where(
                WarehouseStock.warehouse_id == ids["warehouse"],
                WarehouseStock.product_id == ids["product"],
            )
        )
        return stock.quantity, stock.reserved_quantity


def _movements(session_factory, ids, movement_type):
    with session_factory() as db:
        return list(db.scalars(
            select(StockMovement.quantity).where(
                StockMovement.product_id == ids["product"],
                StockMovement.movement_type == movement_type,
            )
        ).all())


def _order(session_factory, ids, quantity):
    with session_factory() as db:
        order = Order(
            user_id=ids["customer"],
            status="pending",
            total=Decimal("2.38"),
            delivery_address="Springfield, ул. Ленина, дом 44",
            items=[
                OrderItem(
                    product_id=ids["product"], product_name="Milk",
                    quantity=quantity, unit_price=Decimal("1.19"),
                )
            ],
        )
        db.add(order)
        db.commit()
        return order.id


class TestStockLedgerRaces:
    def test_overlapping_reserves_never_oversell(self, file_session_factory, stocked):
        def reserve(db, index):
            StockLedgerService(db).reserve(stocked["warehouse"], stocked["product"], 3)

        outcomes = _race(file_session_factory, reserve)

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {"insufficient_stock", "busy"}
        assert _stock(file_session_factory, stocked) == (5, 3)
        assert _movements(file_session_factory, stocked, "reserve") == [3]

    def test_overlapping_receipts_all_count(self, file_session_factory, stocked):
        def receive(db, index):
            StockLedgerService(db).receive(stocked["warehouse"], stocked["product"], 2)

        outcomes = _race(file_session_factory, receive)

        assert outcomes == ["ok"] * WORKERS
        assert _stock(file_session_factory, stocked) == (5 + 2 * WORKERS, 0)


class TestPickTaskRaces:
    def test_one_active_task_per_order(self, file_session_factory, stocked):
        order_id = _order(file_session_factory, stocked, 2)

        def create(db, index):
            PickTaskService(db).create(order_id)

        outcomes = _race(file_session_factory, create)

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {"duplicate_active_task", "busy"}
        with file_session_factory() as db:
            assert db.scalar(select(func.count(PickTask.id))) == 1
        assert _stock(file_session_factory, stocked) == (5, 2)

    def test_done_and_cancel_do_not_both_apply(self, file_session_factory, stocked):
        order_id = _order(file_session_factory, stocked, 2)
        with file_session_factory() as db:
            task_id = PickTaskService(db).create(order_id).id
        targets = ["done", "cancelled"]

        def finish(db, index):
            PickTaskService(db, commit_requested_qty=True).transition(task_id, targets[index])

        outcomes = _race(file_session_factory, finish, workers=2)

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {"busy", "terminal_task_immutable"}
        with file_session_factory() as db:
            status = db.get(PickTask, task_id).status
        expected = (3, 0) if status == "done" else (5, 0)
        assert _stock(file_session_factory, stocked) == expected
        assert len(_movements(file_session_factory, stocked, "pick")) + len(
            _movements(file_session_factory, stocked, "release")
        ) == 1


class TestClaimRace:
    def test_exactly_one_courier_wins(self, file_session_factory, stocked):
        order_id = _order(file_session_factory, stocked, 1)
        with file_session_factory() as db:
            couriers = [make_courier(db, f"c{i}@example.com") for i in range(WORKERS)]
            principals = [
                Principal(user_id=c.user_id, role=UserRole.COURIER) for c in couriers
            ]
            courier_ids = [c.id for c in couriers]

        def claim(db, index):
            OrderService(db).claim(order_id, principals[index])

        outcomes = _race(file_session_factory, claim)

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {"order_unavailable", "busy"}
        winner = courier_ids[outcomes.index("ok")]
        with file_session_factory() as db:
            order = db.get(Order, order_id)
            assert order.status == "assigned"
            assert order.assigned_courier_id == winner
            assigned_events = db.scalar(
                select(func.count(OrderEvent.id)).where(
                    OrderEvent.order_id == order_id, OrderEvent.status == "assigned"
                )
            )
            assert assigned_events == 1


class TestVersionConflicts:
    def test_stale_write_becomes_busy(self, db_session):
        with pytest.raises(Busy):
            with busy_on_lock_timeout(db_session):
                raise StaleDataError("expected to update 1 row(s); 0 were matched")

    def test_stale_order_status_change_is_rejected(self, file_session_factory, stocked):
        order_id = _order(file_session_factory, stocked, 1)
        stale = file_session_factory()
        try:
            order = stale.get(Order, order_id)
            with file_session_factory() as fresh:
                fresh.get(Order, order_id).status = "cancelled"
                fresh.commit()

            order.status = "assigned"
            with pytest.raises(Busy):
                with busy_on_lock_timeout(stale):
                    stale.commit()
        finally:
            stale.close()

        with file_session_factory() as db:
            assert db.get(Order, order_id).status == "cancelled"
