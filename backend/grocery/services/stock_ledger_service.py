"""Stock Ledger Service - per-warehouse stock and reservation counters.

Every mutation follows the same sequence, implemented once in ``_mutate``:

1. Create the (warehouse, product) stock row with zero stock on first
   reference.
2. Change the counters with one ``UPDATE`` whose WHERE clause carries the
   operation's precondition (enough available stock, enough reserved stock).
   The check and the write are a single statement, so two writers can never
   both pass the check against the same counters. No matching row means the
   precondition failed.
3. Append an immutable StockMovement.
4. Recompute the product's aggregate availability for the catalog.

The four steps share one transaction. Public operations commit it by default;
workflows that touch several rows (pick tasks) pass ``commit=False`` and own
the commit/rollback themselves so that a failure on any row undoes them all.

Invariant kept for every row: ``0 <= reserved_quantity <= quantity``.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from grocery.core.errors import (
    Busy,
    DomainError,
    InconsistentReservation,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
)
from grocery.db.locking import apply_lock_timeout, busy_on_lock_timeout
from grocery.models.product import Product
from grocery.models.warehouse import MovementType, StockMovement, Warehouse, WarehouseStock

logger = logging.getLogger(__name__)

Guard = Callable[[int], object]
Reject = Callable[[WarehouseStock, int], None]


@dataclass(frozen=True)
class StockReference:
    """What a movement was made for, e.g. ``StockReference("pick_task", 12)``."""

    type: str
    id: int


def _check_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity=quantity)
    return quantity


def _available_at_least(qty: int):
    return WarehouseStock.quantity - WarehouseStock.reserved_quantity >= qty


def _reserved_at_least(qty: int):
    return WarehouseStock.reserved_quantity >= qty


def _pickable(qty: int):
    return and_(WarehouseStock.quantity >= qty, WarehouseStock.reserved_quantity >= qty)


class StockLedgerService:
    """Atomic receive / writeoff / reserve / release / commit operations."""

    def __init__(self, db: Session):
        self.db = db

    # ===== PUBLIC OPERATIONS =====

    def receive(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Add physically arrived goods."""
        return self._mutate(
            MovementType.RECEIVE, warehouse_id, product_id, quantity,
            quantity_sign=1,
            reason=reason, actor_id=actor_id, commit=commit,
        )

    def writeoff(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Remove unreserved stock (spoilage, breakage, loss)."""
        return self._mutate(
            MovementType.WRITEOFF, warehouse_id, product_id, quantity,
            quantity_sign=-1, guard=_available_at_least, reject=self._require_available,
            reason=reason, actor_id=actor_id, commit=commit,
        )

    def reserve(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: Optional[str] = None,
        reference: Optional[StockReference] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Hold stock so it is no longer available, without removing it."""
        return self._mutate(
            MovementType.RESERVE, warehouse_id, product_id, quantity,
            reserved_sign=1, guard=_available_at_least, reject=self._require_available,
            reason=reason, reference=reference, actor_id=actor_id, commit=commit,
        )

    def release(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: Optional[str] = None,
        reference: Optional[StockReference] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Return reserved stock to the available pool."""

        def reject(stock: WarehouseStock, qty: int) -> None:
            if stock.reserved_quantity < qty:
                self._inconsistent(stock, MovementType.RELEASE, qty, reference)

        return self._mutate(
            MovementType.RELEASE, warehouse_id, product_id, quantity,
            reserved_sign=-1, guard=_reserved_at_least, reject=reject,
            reason=reason, reference=reference, actor_id=actor_id, commit=commit,
        )

    def commit_pick(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: Optional[str] = None,
        reference: Optional[StockReference] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Physically remove already-reserved stock."""

        def reject(stock: WarehouseStock, qty: int) -> None:
            if stock.quantity < qty or stock.reserved_quantity < qty:
                self._inconsistent(stock, MovementType.PICK, qty, reference)

        return self._mutate(
            MovementType.PICK, warehouse_id, product_id, quantity,
            quantity_sign=-1, reserved_sign=-1, guard=_pickable, reject=reject,
            reason=reason, reference=reference, actor_id=actor_id, commit=commit,
        )

    def recompute_availability(self, product_id: int) -> int:
        """Mirror warehouse stock into the catalog aggregate.

        Sets ``stock_quantity = max(sum(quantity) - sum(reserved), 0)`` and
        switches ``in_stock`` off when nothing is left. ``in_stock`` is never
        switched back on here; an operator re-enables the product.
        """
        product = self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)

        total_qty, total_reserved = self.db.execute(
            select(
                func.coalesce(func.sum(WarehouseStock.quantity), 0),
                func.coalesce(func.sum(WarehouseStock.reserved_quantity), 0),
            ).where(WarehouseStock.product_id == product_id)
        ).one()

        available = max(int(total_qty) - int(total_reserved), 0)
        product.stock_quantity = available
        if available <= 0:
            product.in_stock = False
        self.db.flush()
        return available

    # ===== READS =====

    def get_stock(self, warehouse_id: int, product_id: int) -> Optional[WarehouseStock]:
        return self.db.execute(
            select(WarehouseStock).where(
                WarehouseStock.warehouse_id == warehouse_id,
                WarehouseStock.product_id == product_id,
            )
        ).scalar_one_or_none()

    def available(self, warehouse_id: int, product_id: int) -> int:
        stock = self.get_stock(warehouse_id, product_id)
        return stock.available if stock else 0


    # ===== INTERNALS =====

    def _mutate(
        self,
        movement_type: MovementType,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        quantity_sign: int = 0,
        reserved_sign: int = 0,
        guard: Optional[Guard] = None,
        reject: Optional[Reject] = None,
        reason: Optional[str] = None,
        reference: Optional[StockReference] = None,
        actor_id: Optional[int] = None,
        commit: bool = True,
    ) -> WarehouseStock:
        """Guarded counter update on one stock row, logged and mirrored.

        ``quantity_sign`` and ``reserved_sign`` say which way each counter
        moves by ``quantity``. ``guard`` builds the SQL precondition for the
        UPDATE; when it matches no row, ``reject`` raises the domain error
        from the row's current counters.
        """
        qty = _check_quantity(quantity)
        try:
            with busy_on_lock_timeout(self.db):
                apply_lock_timeout(self.db)
                self._ensure_stock_row(warehouse_id, product_id)

                values = {}
                if quantity_sign:
                    values["quantity"] = WarehouseStock.quantity + quantity_sign * qty
                if reserved_sign:
                    values["reserved_quantity"] = WarehouseStock.reserved_quantity + reserved_sign * qty
                statement = (
                    update(WarehouseStock)
                    .where(
                        WarehouseStock.warehouse_id == warehouse_id,
                        WarehouseStock.product_id == product_id,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if guard is not None:
                    statement = statement.where(guard(qty))
                applied = self.db.execute(statement).rowcount == 1

                stock = self._load_stock(warehouse_id, product_id)
                if not applied:
                    reject(stock, qty)
                    # Counters moved again between the update and the reload
                    raise Busy(warehouse_id=warehouse_id, product_id=product_id)

                self.db.add(StockMovement(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    movement_type=movement_type.value,
                    quantity=qty,
                    reason=reason,
                    reference_type=reference.type if reference else None,
                    reference_id=reference.id if reference else None,
                    created_by=actor_id,
                ))
                self.db.flush()
                self.recompute_availability(product_id)
                if commit:
                    self.db.commit()
        except DomainError:
            if commit:
                self.db.rollback()
            raise

        logger.info(
            "Stock %s: warehouse=%s product=%s qty=%s -> quantity=%s reserved=%s",
            movement_type.value, warehouse_id, product_id, qty,
            stock.quantity, stock.reserved_quantity,
        )
        return stock

    def _ensure_stock_row(self, warehouse_id: int, product_id: int) -> None:
        if self.get_stock(warehouse_id, product_id) is not None:
            return

        if self.db.get(Warehouse, warehouse_id) is None:
            raise NotFound(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
        if self.db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)

        try:
            with self.db.begin_nested():
                self.db.add(WarehouseStock(
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    quantity=0,
                    reserved_quantity=0,
                ))
        except IntegrityError:
            # Another transaction created the row first
            logger.debug("Stock row %s/%s created concurrently", warehouse_id, product_id)

    def _load_stock(self, warehouse_id: int, product_id: int) -> WarehouseStock:
        return self.db.execute(
            select(WarehouseStock)
            .where(
                WarehouseStock.warehouse_id == warehouse_id,
                WarehouseStock.product_id == product_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()

    @staticmethod
    def _require_available(stock: WarehouseStock, qty: int) -> None:
        if stock.available < qty:
            raise InsufficientStock(
                f"Insufficient stock for product {stock.product_id}: "
                f"need {qty}, available {stock.available}",
                warehouse_id=stock.warehouse_id,
                product_id=stock.product_id,
                requested=qty,
                available=stock.available,
            )

    @staticmethod
    def _inconsistent(
        stock: WarehouseStock,
        movement_type: MovementType,
        qty: int,
        reference: Optional[StockReference],
    ) -> None:
        logger.error(
            "Inconsistent reservation on %s: warehouse=%s product=%s qty=%s "
            "quantity=%s reserved=%s reference=%s",
            movement_type.value, stock.warehouse_id, stock.product_id, qty,
            stock.quantity, stock.reserved_quantity, reference,
        )
        raise InconsistentReservation(
            warehouse_id=stock.warehouse_id,
            product_id=stock.product_id,
            requested=qty,
            quantity=stock.quantity,
            reserved=stock.reserved_quantity,
        )
