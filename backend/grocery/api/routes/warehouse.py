"""Admin warehouse views."""

from typing import Optional

from fastapi import APIRouter, Query

from grocery.core.rbac import RequireWarehouseManager
from grocery.db.session import DbSession
from grocery.schemas.stock import ReorderLevelsUpdate, StockLevelResponse, WarehouseOverview
from grocery.services.audit_service import Audit
from grocery.services.warehouse_service import WarehouseService

router = APIRouter()


@router.get("/overview", response_model=WarehouseOverview)
def warehouse_overview(
    db: DbSession,
    principal: RequireWarehouseManager,
    warehouse_id: Optional[int] = Query(None),
):
    """Stock levels with the low-stock reorder suggestions."""
    return WarehouseService(db).overview(warehouse_id)


@router.put("/reorder-levels", response_model=StockLevelResponse)
def set_reorder_levels(
    data: ReorderLevelsUpdate,
    db: DbSession,
    principal: RequireWarehouseManager,
    audit: Audit,
):
    row = WarehouseService(db).set_reorder_levels(
        data.product_id, data.reorder_min, data.reorder_target, data.warehouse_id
    )
    audit.record(
        principal.user_id, "reorder_levels", "warehouse_stock",
        f"{row.warehouse_id}:{row.product_id}",
        {"reorder_min": data.reorder_min, "reorder_target": data.reorder_target},
    )
    return row
