"""Courier routes: availability, verification and the admin courier list."""

from fastapi import APIRouter

from grocery.core.rbac import CurrentPrincipal, RequireCourier, RequireCourierManager
from grocery.core.responses import list_response
from grocery.core.validators import PositiveIntId
from grocery.db.session import DbSession
from grocery.schemas.courier import (
    CourierConnect,
    CourierListItem,
    CourierResponse,
    VerificationReview,
    VerificationSubmit,
)
from grocery.services.audit_service import Audit
from grocery.services.courier_service import CourierService

router = APIRouter()
admin_router = APIRouter()


@router.post("/connect", response_model=CourierResponse)
def connect_courier(
    data: CourierConnect,
    db: DbSession,
    principal: CurrentPrincipal,
    audit: Audit,
):
    """Go online or offline. Admins can connect another user as a courier."""
    courier = CourierService(db).connect(
        principal,
        status=data.status,
        vehicle_type=data.vehicle_type,
        user_id=data.user_id,
    )
    if courier.user_id != principal.user_id:
        audit.record(
            principal.user_id, "courier_connect", "courier", courier.id,
            {"user_id": courier.user_id, "status": courier.status},
        )
    return courier


@router.get("")
def list_couriers(db: DbSession, principal: RequireCourierManager):
    couriers = CourierService(db).list_couriers()
    return list_response(couriers, CourierListItem)


@router.post("/me/verification", response_model=CourierResponse)
def submit_verification(data: VerificationSubmit, db: DbSession, principal: RequireCourier):
    return CourierService(db).submit_verification(
        principal,
        transport_license=data.transport_license,
        vehicle_registration_number=data.vehicle_registration_number,
        tech_passport_image_url=data.tech_passport_image_url,
    )


@admin_router.patch("/{courier_id}/verification", response_model=CourierResponse)
def review_verification(
    courier_id: PositiveIntId,
    data: VerificationReview,
    db: DbSession,
    principal: RequireCourierManager,
    audit: Audit,
):
    courier = CourierService(db).review_verification(
        courier_id, data.approve, principal.user_id, data.comment
    )
    audit.record(
        principal.user_id, "courier_verification", "courier", courier_id,
        {"approve": data.approve, "comment": data.comment},
    )
    return courier
