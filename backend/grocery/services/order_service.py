"""Order Service - order creation and the role-gated order state machine.

State machine::

    pending --(auto/manual assign)--> assigned
    assigned --(courier)--> picked_up --(courier)--> on_the_way --(courier)--> delivered
    {pending, assigned, picked_up, on_the_way} --(customer or admin)--> cancelled

Who may do what:

* customers: cancel their own active order
* couriers: advance their assigned order along the courier path while eligible
* admins and staff with ``manage_orders``: assign a pending order to a named
  courier, cancel any active order

Dispatch after order creation and after a terminal transition is best-effort:
a failure is logged and never undoes the order change that triggered it.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, selectinload

from grocery.core.config import settings
from grocery.core.errors import (
    CourierNotEligible,
    EmptyCart,
    Forbidden,
    ForbiddenTransition,
    InvalidStatus,
    NotFound,
    ValidationFailed,
)
from grocery.core.rbac import Permission, Principal, UserRole
from grocery.core.validators import parse_delivery_address, validate_coordinates
from grocery.db.locking import apply_lock_timeout, busy_on_lock_timeout
from grocery.models.courier import Courier
from grocery.models.order import (
    ACTIVE_STATUSES,
    COURIER_ACTIVE_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
)
from grocery.models.product import CartItem
from grocery.models.user import User
from grocery.services.courier_assignment_service import CourierAssignmentService
from grocery.services.order_event_service import OrderEventService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Courier path: current status -> the only status a courier may move it to
COURIER_NEXT_STATUS = {
    OrderStatus.ASSIGNED.value: OrderStatus.PICKED_UP.value,
    OrderStatus.PICKED_UP.value: OrderStatus.ON_THE_WAY.value,
    OrderStatus.ON_THE_WAY.value: OrderStatus.DELIVERED.value,
}


def parse_order_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(
            f"Unknown order status '{value}'",
            allowed=[s.value for s in OrderStatus],
        )


def get_courier_for_user(db: Session, user_id: int) -> Optional[Courier]:
    return db.scalar(select(Courier).where(Courier.user_id == user_id))


class OrderService:
    """Order creation, status transitions and role-scoped reads."""

    def __init__(self, db: Session):
        self.db = db
        self.events = OrderEventService(db)
        self.assignment = CourierAssignmentService(db)

    # ===== CREATE =====

    def create_order(
        self,
        user_id: int,
        delivery_address: Optional[str] = None,
        delivery_lat: Optional[float] = None,
        delivery_lng: Optional[float] = None,
    ) -> Order:
        """Turn the user's cart into a pending order, then try to dispatch it."""
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)

        cart = self.db.scalars(
            select(CartItem)
            .options(joinedload(CartItem.product))
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
        ).all()
        if not cart:
            raise EmptyCart()

        address = " ".join((delivery_address or user.address or "").split())
        parse_delivery_address(address)
        lat, lng = validate_coordinates(delivery_lat, delivery_lng)

        total = sum(
            (Decimal(str(item.product.price)) * item.quantity for item in cart),
            Decimal("0"),
        ).quantize(CENT, rounding=ROUND_HALF_UP)

        try:
            order = Order(
                user_id=user_id,
                status=OrderStatus.PENDING.value,
                total=total,
                delivery_address=address,
                delivery_lat=lat,
                delivery_lng=lng,
                items=[
                    OrderItem(
                        product_id=item.product_id,
                        product_name=item.product.name,
                        quantity=item.quantity,
                        unit_price=item.product.price,
                    )
                    for item in cart
                ],
            )
            self.db.add(order)
            self.db.flush()

            for item in cart:
                self.db.delete(item)
            self.events.record(order.id, OrderStatus.PENDING.value, "created", user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        order_id = order.id
        logger.info("Order %s created by user %s, total %s", order_id, user_id, total)

        self._dispatch_best_effort(
            lambda: self.assignment.assign_if_possible(order_id),
            f"creating order {order_id}",
        )
        return self.get_order(order_id)

    # ===== TRANSITIONS =====

    def set_status(
        self,
        order_id: int,
        new_status: str,
        principal: Principal,
        comment: Optional[str] = None,
        courier_id: Optional[int] = None,
    ) -> Order:
        """Apply a status change on behalf of ``principal``.

        Raises:
            InvalidStatus: unknown status string
            NotFound: unknown order
            CourierNotEligible: courier without approved verification
            ForbiddenTransition: the principal may not make this change
        """
        status = parse_order_status(new_status)

        try:
            with busy_on_lock_timeout(self.db):
                order = self._lock_order(order_id)
                previous = order.status

                if principal.has_permission(Permission.MANAGE_ORDERS):
                    if status == OrderStatus.ASSIGNED:
                        return self._admin_assign(order, principal, courier_id, comment)
                    self._check_admin_transition(order, status)
                elif principal.role == UserRole.COURIER:
                    self._check_courier_transition(order, status, principal)
                else:
                    self._check_customer_transition(order, status, principal)

                order.status = status.value
                self.events.record(order.id, status.value, comment, principal.user_id)
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Order %s: %s -> %s by user %s (%s)",
            order_id, previous, status.value, principal.user_id, principal.role.value,
        )

        if status.value in (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value):
            self._dispatch_best_effort(
                self.assignment.try_assign_oldest_pending,
                f"order {order_id} became {status.value}",
            )
        return self.get_order(order_id)

    def _admin_assign(
        self,
        order: Order,
        principal: Principal,
        courier_id: Optional[int],
        comment: Optional[str],
    ) -> Order:
        if courier_id is None:
            raise ValidationFailed("courier_id is required to assign an order", order_id=order.id)
        if order.status != OrderStatus.PENDING.value:
            raise ForbiddenTransition(
                order_id=order.id, status=order.status, requested=OrderStatus.ASSIGNED.value
            )
        return self.assignment.assign_to(order.id, courier_id, principal.user_id, comment)

    @staticmethod
    def _check_admin_transition(order: Order, status: OrderStatus) -> None:
        if status == OrderStatus.CANCELLED and order.status in ACTIVE_STATUSES:
            return
        raise ForbiddenTransition(order_id=order.id, status=order.status, requested=status.value)

    def _check_courier_transition(self, order: Order, status: OrderStatus, principal: Principal) -> None:
        courier = get_courier_for_user(self.db, principal.user_id)
        if courier is None:
            raise Forbidden("Courier profile not found")
        if not courier.is_eligible:
            raise CourierNotEligible()
        if order.assigned_courier_id != courier.id:
            raise ForbiddenTransition(
                "Order is not assigned to this courier",
                order_id=order.id, status=order.status, requested=status.value,
            )
        if COURIER_NEXT_STATUS.get(order.status) != status.value:
            raise ForbiddenTransition(order_id=order.id, status=order.status, requested=status.value)

    @staticmethod
    def _check_customer_transition(order: Order, status: OrderStatus, principal: Principal) -> None:
        if order.user_id != principal.user_id:
            raise ForbiddenTransition(
                "Order belongs to another customer",
                order_id=order.id, status=order.status, requested=status.value,
            )
        if status != OrderStatus.CANCELLED or order.status not in ACTIVE_STATUSES:
            raise ForbiddenTransition(order_id=order.id, status=order.status, requested=status.value)

    def claim(self, order_id: int, principal: Principal) -> Order:
        courier = get_courier_for_user(self.db, principal.user_id)
        if courier is None:
            raise Forbidden("Courier profile not found")
        return self.assignment.claim(order_id, courier)

    # ===== READS =====

    def get_order(self, order_id: int) -> Order:
        order = self.db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    def list_my(self, user_id: int) -> List[Order]:
        return self._list(
            select(Order).where(Order.user_id == user_id).order_by(Order.id.desc())
        )

    def list_assigned(self, principal: Principal) -> List[Order]:
        courier = get_courier_for_user(self.db, principal.user_id)
        if courier is None:
            return []
        return self._list(
            select(Order)
            .where(
                Order.assigned_courier_id == courier.id,
                Order.status.in_(COURIER_ACTIVE_STATUSES),
            )
            .order_by(Order.id.asc())
        )

    def list_open(self) -> List[Order]:
        return self._list(
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.assigned_courier_id.is_(None),
            )
            .order_by(Order.id.asc())
        )

    def list_all(self, limit: Optional[int] = None) -> List[Order]:
        limit = min(limit or settings.order_list_limit, settings.order_list_limit)
        return self._list(select(Order).order_by(Order.id.desc()).limit(limit))

    def get_detail(self, order_id: int, principal: Principal) -> Tuple[Order, List[dict]]:
        """Order with its event history, if the principal may see it."""
        order = self.get_order(order_id)
        if not self._can_view(order, principal):
            raise Forbidden("Order is not accessible", order_id=order_id)
        return order, self.events.history(order.id)

    def _can_view(self, order: Order, principal: Principal) -> bool:
        if principal.has_permission(Permission.MANAGE_ORDERS):
            return True
        if order.user_id == principal.user_id:
            return True
        if principal.role == UserRole.COURIER and order.assigned_courier_id is not None:
            courier = get_courier_for_user(self.db, principal.user_id)
            return courier is not None and courier.id == order.assigned_courier_id
        return False

    # ===== INTERNALS =====

    def _list(self, query) -> List[Order]:
        return list(self.db.scalars(query.options(selectinload(Order.items))).all())

    def _lock_order(self, order_id: int) -> Order:
        apply_lock_timeout(self.db)
        order = self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    def _dispatch_best_effort(self, action: Callable[[], object], trigger: str) -> None:
        try:
            action()
        except Exception:
            logger.exception("Courier dispatch after %s failed", trigger)
            self.db.rollback()
