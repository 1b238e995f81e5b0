"""Courier assignment policy.

Picks the least-loaded eligible courier for a pending order and flips the
order with a compare-and-swap UPDATE so an order can only ever be assigned
once, no matter how many dispatchers or couriers race for it.

Courier load is read without locking the courier set; only the order flip is
serialized.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from grocery.core.errors import (
    CourierAtCapacity,
    CourierNotEligible,
    NotFound,
    OrderUnavailable,
)
from grocery.db.locking import apply_lock_timeout, busy_on_lock_timeout
from grocery.models.courier import Courier, CourierStatus
from grocery.models.order import COURIER_ACTIVE_STATUSES, Order, OrderStatus
from grocery.services.order_event_service import OrderEventService

logger = logging.getLogger(__name__)

AUTO_ASSIGN_COMMENT = "auto-assigned"
MANUAL_CLAIM_COMMENT = "manual claim"
ADMIN_ASSIGN_COMMENT = "assigned by admin"


class CourierAssignmentService:
    """Least-loaded dispatch, manual claims and admin assignment."""

    def __init__(self, db: Session):
        self.db = db
        self.events = OrderEventService(db)

    # ===== LOAD =====

    def active_order_count(self, courier_id: int) -> int:
        """Orders assigned to the courier that are not yet delivered or cancelled."""
        return self.db.scalar(
            select(func.count(Order.id)).where(
                Order.assigned_courier_id == courier_id,
                Order.status.in_(COURIER_ACTIVE_STATUSES),
            )
        ) or 0

    def active_order_counts(self, courier_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(courier_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(Order.assigned_courier_id, func.count(Order.id))
            .where(
                Order.assigned_courier_id.in_(ids),
                Order.status.in_(COURIER_ACTIVE_STATUSES),
            )
            .group_by(Order.assigned_courier_id)
        ).all()
        return {courier_id: count for courier_id, count in rows}

    def pick_courier(self) -> Optional[Courier]:
        """Least-loaded available, eligible courier with spare capacity.

        Ties go to the lowest courier id.
        """
        couriers = self.db.scalars(
            select(Courier)
            .where(Courier.status == CourierStatus.AVAILABLE.value)
            .order_by(Courier.id.asc())
        ).all()
        eligible = [c for c in couriers if c.is_eligible]
        loads = self.active_order_counts(c.id for c in eligible)

        best: Optional[Courier] = None
        best_load = 0
        for courier in eligible:
            load = loads.get(courier.id, 0)
            if load >= courier.max_active_orders:
                continue
            if best is None or load < best_load:
                best, best_load = courier, load
        return best

    # ===== DISPATCH =====

    def assign_if_possible(self, order_id: int) -> Optional[Courier]:
        """Auto-assign a pending order to the best courier, if there is one.

        Returns the courier on success, None when there is no candidate or
        when another writer assigned the order first.
        """
        courier = self.pick_courier()
        if courier is None:
            logger.info("No courier available for order %s, leaving it pending", order_id)
            return None

        if not self._compare_and_assign(order_id, courier.id):
            self.db.rollback()
            logger.info("Order %s was taken before auto-assignment", order_id)
            return None

        self.events.record(order_id, OrderStatus.ASSIGNED.value, AUTO_ASSIGN_COMMENT)
        self.db.commit()
        logger.info("Order %s auto-assigned to courier %s", order_id, courier.id)
        return courier

    def try_assign_oldest_pending(self) -> Optional[Courier]:
        """Dispatch the oldest pending, unassigned order. At most one per call."""
        order_id = self.db.scalar(
            select(Order.id)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.assigned_courier_id.is_(None),
            )
            .order_by(Order.id.asc())
            .limit(1)
        )
        if order_id is None:
            return None
        return self.assign_if_possible(order_id)

    def claim(self, order_id: int, courier: Courier) -> Order:
        """Courier takes a pending order themselves."""
        if not courier.is_eligible:
            raise CourierNotEligible()
        active = self.active_order_count(courier.id)
        if active >= courier.max_active_orders:
            raise CourierAtCapacity(
                active_orders=active,
                max_active_orders=courier.max_active_orders,
            )

        order = self._get_order(order_id)
        if not self._compare_and_assign(order.id, courier.id):
            self.db.rollback()
            raise OrderUnavailable()

        self.events.record(order.id, OrderStatus.ASSIGNED.value, MANUAL_CLAIM_COMMENT, courier.user_id)
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s claimed by courier %s", order.id, courier.id)
        return order

    def assign_to(
        self,
        order_id: int,
        courier_id: int,
        actor_id: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Order:
        """Admin assignment of a pending order. No capacity check."""
        courier = self.db.get(Courier, courier_id)
        if courier is None:
            raise NotFound(f"Courier {courier_id} not found", courier_id=courier_id)
        if not courier.is_eligible:
            raise CourierNotEligible(courier_id=courier_id)

        order = self._get_order(order_id)
        if not self._compare_and_assign(order.id, courier.id):
            self.db.rollback()
            raise OrderUnavailable()

        self.events.record(order.id, OrderStatus.ASSIGNED.value, comment or ADMIN_ASSIGN_COMMENT, actor_id)
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s assigned to courier %s by user %s", order.id, courier.id, actor_id)
        return order

    # ===== INTERNALS =====

    def _get_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    def _compare_and_assign(self, order_id: int, courier_id: int) -> bool:
        """Flip pending/unassigned -> assigned. True only for the single winner."""
        with busy_on_lock_timeout(self.db):
            apply_lock_timeout(self.db)
            result = self.db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING.value,
                    Order.assigned_courier_id.is_(None),
                )
                .values(
                    status=OrderStatus.ASSIGNED.value,
                    assigned_courier_id=courier_id,
                    version=Order.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1
