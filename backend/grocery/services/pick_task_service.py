"""Pick Task Service - turns an order's line items into warehouse work.

Lifecycle::

    new -> in_progress -> done
    new | in_progress -> cancelled

Creating a task reserves stock for every line; finishing it commits the
reservation (stock physically leaves the warehouse); cancelling it releases
the reservation. Each of these runs the ledger with ``commit=False`` and
commits once at the end, so a shortfall on any line leaves no partial
reservation behind.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from grocery.core.config import settings
from grocery.core.errors import (
    DuplicateActiveTask,
    EmptyOrder,
    InvalidQuantity,
    InvalidStatus,
    InvalidTaskTransition,
    NotFound,
    TerminalTaskImmutable,
    ValidationFailed,
)
from grocery.db.locking import apply_lock_timeout, busy_on_lock_timeout
from grocery.models.order import Order
from grocery.models.pick_task import ACTIVE_TASK_STATUSES, PickTask, PickTaskItem, PickTaskStatus
from grocery.models.user import User
from grocery.services.stock_ledger_service import StockLedgerService, StockReference
from grocery.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)

REFERENCE_TYPE = "pick_task"


def parse_task_status(value: str) -> PickTaskStatus:
    try:
        return PickTaskStatus(value)
    except ValueError:
        raise InvalidStatus(
            f"Unknown pick task status '{value}'",
            allowed=[s.value for s in PickTaskStatus],
        )


class PickTaskService:
    """Create, advance and read pick tasks."""

    def __init__(self, db: Session, commit_requested_qty: Optional[bool] = None):
        self.db = db
        self.ledger = StockLedgerService(db)
        if commit_requested_qty is None:
            commit_requested_qty = settings.pick_commit_requested_qty
        self.commit_requested_qty = commit_requested_qty

    # ===== CREATE =====

    def create(
        self,
        order_id: int,
        warehouse_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> PickTask:
        """Create a task for an order and reserve all of its lines.

        Raises:
            NotFound: unknown order or warehouse
            ValidationFailed: the assignee does not exist
            DuplicateActiveTask: the order already has a new/in_progress task
            EmptyOrder: the order has no line items
            InsufficientStock: some line cannot be reserved (nothing is reserved)
        """
        self._check_assignee(assignee_id)
        try:
            with busy_on_lock_timeout(self.db):
                apply_lock_timeout(self.db)
                order = self.db.execute(
                    select(Order)
                    .where(Order.id == order_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if order is None:
                    raise NotFound(f"Order {order_id} not found", order_id=order_id)

                warehouse = WarehouseService(self.db).resolve_warehouse(warehouse_id)

                existing_id = self._active_task_id(order.id)
                if existing_id is not None:
                    raise DuplicateActiveTask(order_id=order.id, pick_task_id=existing_id)

                if not order.items:
                    raise EmptyOrder(order_id=order.id)

                # One pick line per product
                lines: "OrderedDict[int, List]" = OrderedDict()
                for item in order.items:
                    if item.product_id in lines:
                        lines[item.product_id][1] += item.quantity
                    else:
                        lines[item.product_id] = [item.product_name, item.quantity]

                task = PickTask(
                    order_id=order.id,
                    warehouse_id=warehouse.id,
                    status=PickTaskStatus.NEW.value,
                    assigned_to=assignee_id,
                    created_by=actor_id,
                    items=[
                        PickTaskItem(product_id=pid, product_name=name, requested_qty=qty, picked_qty=0)
                        for pid, (name, qty) in lines.items()
                    ],
                )
                self.db.add(task)
                try:
                    self.db.flush()
                except IntegrityError:
                    # A concurrent create won the active-task index
                    self.db.rollback()
                    existing_id = self._active_task_id(order_id)
                    if existing_id is None:
                        raise
                    raise DuplicateActiveTask(order_id=order_id, pick_task_id=existing_id)

                reference = StockReference(REFERENCE_TYPE, task.id)
                # Touch stock rows in product order
                for item in sorted(task.items, key=lambda i: i.product_id):
                    self.ledger.reserve(
                        warehouse.id,
                        item.product_id,
                        item.requested_qty,
                        reason=f"Pick task #{task.id} for order #{order.id}",
                        reference=reference,
                        actor_id=actor_id,
                        commit=False,
                    )
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Pick task %s created for order %s in warehouse %s (%d lines)",
            task.id, order_id, task.warehouse_id, len(task.items),
        )
        return self.get(task.id)

    # ===== TRANSITION =====

    def transition(
        self,
        task_id: int,
        target: str,
        actor_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        picked: Optional[Dict[int, int]] = None,
    ) -> PickTask:
        """Move a task to ``target``.

        ``picked`` maps product id to the quantity reported as picked so far
        and is only accepted on non-terminal transitions.
        """
        status = parse_task_status(target)
        self._check_assignee(assignee_id)

        try:
            with busy_on_lock_timeout(self.db):
                task = self._lock_task(task_id)

                if task.is_terminal:
                    if status.value == task.status:
                        self.db.rollback()
                        return self.get(task_id)
                    raise TerminalTaskImmutable(
                        pick_task_id=task.id, status=task.status, requested=status.value
                    )

                if status == PickTaskStatus.NEW and task.status != PickTaskStatus.NEW.value:
                    raise InvalidTaskTransition(
                        pick_task_id=task.id, status=task.status, requested=status.value
                    )

                if assignee_id is not None:
                    task.assigned_to = assignee_id
                if picked:
                    self._record_picked(task, picked)

                now = datetime.now(timezone.utc)
                task.status = status.value
                if status == PickTaskStatus.IN_PROGRESS and task.started_at is None:
                    task.started_at = now
                elif status in (PickTaskStatus.DONE, PickTaskStatus.CANCELLED):
                    task.completed_at = now
                # Version check before stock moves; a concurrent transition loses here
                self.db.flush()

                if status == PickTaskStatus.DONE:
                    self._complete(task, actor_id)
                elif status == PickTaskStatus.CANCELLED:
                    self._cancel(task, actor_id)

                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Pick task %s -> %s by user %s", task_id, status.value, actor_id)
        return self.get(task_id)

    def _complete(self, task: PickTask, actor_id: Optional[int]) -> None:
        reference = StockReference(REFERENCE_TYPE, task.id)
        reason = f"Pick task #{task.id} done"
        for item in sorted(task.items, key=lambda i: i.product_id):
            if self.commit_requested_qty:
                # The full reservation leaves stock even if less was reported picked
                self.ledger.commit_pick(
                    task.warehouse_id, item.product_id, item.requested_qty,
                    reason=reason, reference=reference, actor_id=actor_id, commit=False,
                )
                item.picked_qty = item.requested_qty
                continue

            if item.picked_qty > 0:
                self.ledger.commit_pick(
                    task.warehouse_id, item.product_id, item.picked_qty,
                    reason=reason, reference=reference, actor_id=actor_id, commit=False,
                )
            remainder = item.requested_qty - item.picked_qty
            if remainder > 0:
                self.ledger.release(
                    task.warehouse_id, item.product_id, remainder,
                    reason=f"Pick task #{task.id} short pick", reference=reference,
                    actor_id=actor_id, commit=False,
                )

    def _cancel(self, task: PickTask, actor_id: Optional[int]) -> None:
        reference = StockReference(REFERENCE_TYPE, task.id)
        for item in sorted(task.items, key=lambda i: i.product_id):
            self.ledger.release(
                task.warehouse_id, item.product_id, item.requested_qty,
                reason=f"Pick task #{task.id} cancelled", reference=reference,
                actor_id=actor_id, commit=False,
            )

    def _check_assignee(self, assignee_id: Optional[int]) -> None:
        if assignee_id is not None and self.db.get(User, assignee_id) is None:
            raise ValidationFailed(
                f"Assignee {assignee_id} does not exist", assigned_to=assignee_id
            )

    @staticmethod
    def _record_picked(task: PickTask, picked: Dict[int, int]) -> None:
        items = {item.product_id: item for item in task.items}
        for product_id, qty in picked.items():
            item = items.get(product_id)
            if item is None:
                raise NotFound(
                    f"Product {product_id} is not part of pick task {task.id}",
                    pick_task_id=task.id, product_id=product_id,
                )
            if isinstance(qty, bool) or not isinstance(qty, int) or not 0 <= qty <= item.requested_qty:
                raise InvalidQuantity(
                    f"Picked quantity for product {product_id} must be between 0 and {item.requested_qty}",
                    product_id=product_id, quantity=qty,
                )
            item.picked_qty = qty

    # ===== READS =====

    def get(self, task_id: int) -> PickTask:
        task = self.db.execute(
            select(PickTask)
            .options(selectinload(PickTask.items))
            .where(PickTask.id == task_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if task is None:
            raise NotFound(f"Pick task {task_id} not found", pick_task_id=task_id)
        return task

    def list_tasks(
        self,
        status: Optional[str] = None,
        order_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[PickTask]:
        query = select(PickTask).options(selectinload(PickTask.items))
        if status:
            query = query.where(PickTask.status == parse_task_status(status).value)
        if order_id is not None:
            query = query.where(PickTask.order_id == order_id)
        if warehouse_id is not None:
            query = query.where(PickTask.warehouse_id == warehouse_id)
        return list(self.db.scalars(query.order_by(PickTask.id.desc()).limit(limit)).all())

    def _active_task_id(self, order_id: int) -> Optional[int]:
        return self.db.scalar(
            select(PickTask.id).where(
                PickTask.order_id == order_id,
                PickTask.status.in_(ACTIVE_TASK_STATUSES),
            )
        )

    def _lock_task(self, task_id: int) -> PickTask:
        apply_lock_timeout(self.db)
        task = self.db.execute(
            select(PickTask)
            .where(PickTask.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if task is None:
            raise NotFound(f"Pick task {task_id} not found", pick_task_id=task_id)
        return task
