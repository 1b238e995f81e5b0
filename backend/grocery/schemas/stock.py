"""Warehouse stock ledger schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class StockMutation(BaseModel):
    """Body for receive/writeoff/reserve/release.

    ``warehouse_id`` defaults to the main warehouse.
    """
    product_id: int
    quantity: int
    warehouse_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=500)
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_reference(self) -> "StockMutation":
        if (self.reference_type is None) != (self.reference_id is None):
            raise ValueError("reference_type and reference_id must be given together")
        return self


class StockLevelResponse(BaseModel):
    warehouse_id: int
    product_id: int
    quantity: int
    reserved_quantity: int
    available: int
    reorder_min: int
    reorder_target: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StockMovementResponse(BaseModel):
    id: int
    warehouse_id: int
    product_id: int
    movement_type: str
    quantity: int
    reason: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReorderLevelsUpdate(BaseModel):
    product_id: int
    reorder_min: int
    reorder_target: int
    warehouse_id: Optional[int] = None


class WarehouseSummary(BaseModel):
    id: int
    code: str
    name: str


class OverviewRow(BaseModel):
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    reserved_quantity: int
    available: int
    reorder_min: int
    reorder_target: int
    updated_at: Optional[datetime] = None


class LowStockRow(OverviewRow):
    order_suggestion: int


class OverviewTotals(BaseModel):
    products: int
    quantity: int
    reserved_quantity: int
    available: int
    low_stock: int


class WarehouseOverview(BaseModel):
    warehouse: WarehouseSummary
    items: List[OverviewRow]
    low_stock: List[LowStockRow]
    totals: OverviewTotals
