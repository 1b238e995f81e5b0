"""Courier schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CourierConnect(BaseModel):
    """Go online/offline. Admins may pass ``user_id`` to connect someone else."""
    status: Optional[str] = None
    vehicle_type: Optional[str] = Field(None, max_length=50)
    user_id: Optional[int] = None


class VerificationSubmit(BaseModel):
    transport_license: str = Field(..., max_length=100)
    vehicle_registration_number: str = Field(..., max_length=100)
    tech_passport_image_url: str = Field(..., max_length=500)


class VerificationReview(BaseModel):
    approve: bool
    comment: Optional[str] = Field(None, max_length=1000)


class CourierResponse(BaseModel):
    id: int
    user_id: int
    vehicle_type: Optional[str] = None
    status: str
    max_active_orders: int
    verification_status: str
    transport_license: Optional[str] = None
    vehicle_registration_number: Optional[str] = None
    tech_passport_image_url: Optional[str] = None
    verification_comment: Optional[str] = None
    verification_requested_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verification_reviewed_by: Optional[int] = None
    is_eligible: bool

    model_config = {"from_attributes": True}


class CourierListItem(BaseModel):
    """Courier with live load, as shown to admins."""
    id: int
    user_id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    vehicle_type: Optional[str] = None
    status: str
    max_active_orders: int
    active_orders: int
    verification_status: str
    is_eligible: bool
