"""Pick task schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class PickTaskCreate(BaseModel):
    order_id: int
    warehouse_id: Optional[int] = None
    assigned_to: Optional[int] = None


class PickTaskUpdate(BaseModel):
    """Status change; optionally reassign and report picked quantities.

    ``picked`` maps product id to the quantity picked so far.
    """
    status: str
    assigned_to: Optional[int] = None
    picked: Optional[Dict[int, int]] = None


class PickTaskItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    requested_qty: int
    picked_qty: int

    model_config = {"from_attributes": True}


class PickTaskResponse(BaseModel):
    id: int
    order_id: int
    warehouse_id: int
    status: str
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[PickTaskItemResponse] = []

    model_config = {"from_attributes": True}
