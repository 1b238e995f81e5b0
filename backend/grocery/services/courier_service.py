"""Courier registry: availability, verification and the admin courier list."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from grocery.core.config import settings
from grocery.core.errors import Forbidden, NotFound, ValidationFailed
from grocery.core.rbac import Permission, Principal, UserRole
from grocery.models.courier import Courier, CourierStatus, VerificationStatus
from grocery.models.user import User
from grocery.services.courier_assignment_service import CourierAssignmentService

logger = logging.getLogger(__name__)

DEFAULT_VEHICLE_TYPE = "bike"


def parse_courier_status(value: Optional[str]) -> str:
    """Unknown or missing values mean the courier is going online."""
    try:
        return CourierStatus(value).value
    except ValueError:
        return CourierStatus.AVAILABLE.value


class CourierService:
    def __init__(self, db: Session):
        self.db = db
        self.assignment = CourierAssignmentService(db)

    def get_by_id(self, courier_id: int) -> Courier:
        courier = self.db.get(Courier, courier_id)
        if courier is None:
            raise NotFound(f"Courier {courier_id} not found", courier_id=courier_id)
        return courier

    def get_for_user(self, user_id: int) -> Optional[Courier]:
        return self.db.scalar(select(Courier).where(Courier.user_id == user_id))

    def connect(
        self,
        principal: Principal,
        status: Optional[str] = None,
        vehicle_type: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Courier:
        """Set courier availability, creating the courier profile on first use.

        Admins (and staff with ``manage_couriers``) may connect another user,
        who is promoted to the courier role.
        """
        target_id = principal.user_id
        if user_id is not None and user_id != principal.user_id:
            if not principal.has_permission(Permission.MANAGE_COURIERS):
                raise Forbidden("Only admins can connect other users as couriers")
            target_id = user_id
        elif principal.role != UserRole.COURIER and not principal.has_permission(Permission.MANAGE_COURIERS):
            raise Forbidden("Only couriers can change courier availability")

        user = self.db.get(User, target_id)
        if user is None:
            raise NotFound(f"User {target_id} not found", user_id=target_id)
        if user.role == UserRole.CUSTOMER and target_id != principal.user_id:
            user.role = UserRole.COURIER
            logger.info("User %s promoted to courier by %s", target_id, principal.user_id)

        courier = self.get_for_user(target_id)
        if courier is None:
            courier = Courier(
                user_id=target_id,
                vehicle_type=DEFAULT_VEHICLE_TYPE,
                status=CourierStatus.OFFLINE.value,
                max_active_orders=settings.default_max_active_orders,
            )
            self.db.add(courier)

        courier.status = parse_courier_status(status)
        if vehicle_type:
            courier.vehicle_type = vehicle_type.strip()[:50]
        self.db.commit()
        self.db.refresh(courier)
        logger.info("Courier %s is now %s", courier.id, courier.status)

        if courier.status == CourierStatus.AVAILABLE.value:
            try:
                self.assignment.try_assign_oldest_pending()
            except Exception:
                logger.exception("Courier dispatch after courier %s connected failed", courier.id)
                self.db.rollback()
        return courier

    def submit_verification(
        self,
        principal: Principal,
        transport_license: str,
        vehicle_registration_number: str,
        tech_passport_image_url: str,
    ) -> Courier:
        courier = self.get_for_user(principal.user_id)
        if courier is None:
            raise NotFound("Courier profile not found, connect first")

        evidence = {
            "transport_license": (transport_license or "").strip(),
            "vehicle_registration_number": (vehicle_registration_number or "").strip(),
            "tech_passport_image_url": (tech_passport_image_url or "").strip(),
        }
        missing = [name for name, value in evidence.items() if not value]
        if missing:
            raise ValidationFailed("Verification evidence is incomplete", missing=missing)

        for name, value in evidence.items():
            setattr(courier, name, value)
        courier.verification_status = VerificationStatus.SUBMITTED.value
        courier.verification_requested_at = datetime.now(timezone.utc)
        courier.verification_comment = None
        self.db.commit()
        self.db.refresh(courier)
        logger.info("Courier %s submitted verification", courier.id)
        return courier

    def review_verification(
        self,
        courier_id: int,
        approve: bool,
        reviewer_id: int,
        comment: Optional[str] = None,
    ) -> Courier:
        courier = self.get_by_id(courier_id)
        if approve:
            courier.verification_status = VerificationStatus.APPROVED.value
            courier.verified_at = datetime.now(timezone.utc)
        else:
            courier.verification_status = VerificationStatus.REJECTED.value
            courier.verified_at = None
        courier.verification_comment = comment
        courier.verification_reviewed_by = reviewer_id
        self.db.commit()
        self.db.refresh(courier)
        logger.info(
            "Courier %s verification %s by user %s",
            courier.id, courier.verification_status, reviewer_id,
        )
        return courier

    def list_couriers(self) -> List[Dict[str, Any]]:
        couriers = self.db.scalars(
            select(Courier).options(joinedload(Courier.user)).order_by(Courier.id)
        ).all()
        loads = self.assignment.active_order_counts(c.id for c in couriers)
        return [
            {
                "id": c.id,
                "user_id": c.user_id,
                "full_name": c.user.full_name if c.user else None,
                "email": c.user.email if c.user else None,
                "phone": c.user.phone if c.user else None,
                "vehicle_type": c.vehicle_type,
                "status": c.status,
                "max_active_orders": c.max_active_orders,
                "active_orders": loads.get(c.id, 0),
                "verification_status": c.verification_status,
                "is_eligible": c.is_eligible,
            }
            for c in couriers
        ]
