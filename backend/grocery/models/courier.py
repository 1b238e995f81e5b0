"""Courier model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grocery.db.base import Base


class CourierStatus(str, Enum):
    """Courier availability as set by the courier."""

    OFFLINE = "offline"
    AVAILABLE = "available"
    BUSY = "busy"


class VerificationStatus(str, Enum):
    """Review state of the courier's transport documents."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class Courier(Base):
    """Delivery courier profile, one per user."""

    __tablename__ = "couriers"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=CourierStatus.OFFLINE.value, nullable=False, index=True
    )
    max_active_orders: Mapped[int] = mapped_column(Integer, default=5, nullable=False)

    # Verification
    verification_status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING.value, nullable=False
    )
    transport_license: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    vehicle_registration_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tech_passport_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    verification_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verification_requested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_reviewed_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])

    @property
    def is_eligible(self) -> bool:
        """Approved and all three pieces of evidence on file."""
        return (
            self.verification_status == VerificationStatus.APPROVED.value
            and bool(self.transport_license)
            and bool(self.vehicle_registration_number)
            and bool(self.tech_passport_image_url)
        )


# Forward references
from grocery.models.user import User
