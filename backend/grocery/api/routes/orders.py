"""Customer order routes: creation, role-scoped lists, status changes and claims."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from grocery.core.rate_limit import ORDER_CLAIM_RATE, ORDER_CREATE_RATE, limiter
from grocery.core.rbac import CurrentPrincipal, RequireCourier, RequireOrderManager, UserRole
from grocery.core.responses import list_response
from grocery.core.validators import PositiveIntId
from grocery.db.session import DbSession
from grocery.schemas.order import (
    OrderCreate,
    OrderDetailResponse,
    OrderEventResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from grocery.services.audit_service import Audit
from grocery.services.order_service import OrderService

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=201)
@limiter.limit(ORDER_CREATE_RATE)
def create_order(
    request: Request,
    data: OrderCreate,
    db: DbSession,
    principal: CurrentPrincipal,
):
    """Place an order for everything in the caller's cart."""
    order = OrderService(db).create_order(
        principal.user_id,
        delivery_address=data.delivery_address,
        delivery_lat=data.delivery_lat,
        delivery_lng=data.delivery_lng,
    )
    return order


@router.get("/my")
def list_my_orders(db: DbSession, principal: CurrentPrincipal):
    return list_response(OrderService(db).list_my(principal.user_id), OrderResponse)


@router.get("/assigned")
def list_assigned_orders(db: DbSession, principal: RequireCourier):
    """The courier's orders that are still being delivered."""
    return list_response(OrderService(db).list_assigned(principal), OrderResponse)


@router.get("/open")
def list_open_orders(db: DbSession, principal: RequireCourier):
    """Pending, unassigned orders a courier can claim."""
    return list_response(OrderService(db).list_open(), OrderResponse)


@router.get("/all")
def list_all_orders(
    db: DbSession,
    principal: RequireOrderManager,
    limit: Optional[int] = Query(None, ge=1, le=1000),
):
    return list_response(OrderService(db).list_all(limit), OrderResponse)


@router.get("/{order_id}", response_model=OrderDetailResponse)
def get_order(order_id: PositiveIntId, db: DbSession, principal: CurrentPrincipal):
    order, history = OrderService(db).get_detail(order_id, principal)
    detail = OrderResponse.model_validate(order).model_dump()
    detail["events"] = [OrderEventResponse(**event) for event in history]
    return OrderDetailResponse(**detail)


@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: PositiveIntId,
    data: OrderStatusUpdate,
    db: DbSession,
    principal: CurrentPrincipal,
    audit: Audit,
):
    order = OrderService(db).set_status(
        order_id,
        data.status,
        principal,
        comment=data.comment,
        courier_id=data.courier_id,
    )
    if principal.role in (UserRole.ADMIN, UserRole.STAFF):
        audit.record(
            principal.user_id, "order_status", "order", order_id,
            {"status": data.status, "courier_id": data.courier_id, "comment": data.comment},
        )
    return order


@router.post("/{order_id}/claim", response_model=OrderResponse)
@limiter.limit(ORDER_CLAIM_RATE)
def claim_order(
    request: Request,
    order_id: PositiveIntId,
    db: DbSession,
    principal: RequireCourier,
):
    """Courier takes a pending order."""
    return OrderService(db).claim(order_id, principal)
