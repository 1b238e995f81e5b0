"""Order schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderCreate(BaseModel):
    """Create an order from the current cart.

    The delivery address falls back to the user's saved address.
    """
    delivery_address: Optional[str] = Field(None, max_length=500)
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None


class OrderStatusUpdate(BaseModel):
    status: str
    comment: Optional[str] = Field(None, max_length=1000)
    # Required when an admin assigns a pending order
    courier_id: Optional[int] = None


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class OrderEventResponse(BaseModel):
    id: int
    status: str
    comment: Optional[str] = None
    created_by: Optional[int] = None
    created_by_name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    user_id: int
    status: str
    total: Decimal
    delivery_address: str
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    assigned_courier_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    events: List[OrderEventResponse] = []
