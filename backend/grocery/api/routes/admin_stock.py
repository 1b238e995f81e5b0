"""Admin stock ledger routes.

Every mutation runs under a row lock on the (warehouse, product) stock row
and writes a stock movement; see StockLedgerService.
"""

from typing import Optional

from fastapi import APIRouter, Query

from grocery.core.rbac import RequireWarehouseManager
from grocery.core.responses import list_response
from grocery.db.session import DbSession
from grocery.schemas.stock import StockLevelResponse, StockMovementResponse, StockMutation
from grocery.services.audit_service import Audit
from grocery.services.stock_ledger_service import StockLedgerService, StockReference
from grocery.services.warehouse_service import WarehouseService

router = APIRouter()


def _reference(data: StockMutation) -> Optional[StockReference]:
    if data.reference_type is None or data.reference_id is None:
        return None
    return StockReference(data.reference_type, data.reference_id)


def _audit(audit: Audit, actor_id: int, action: str, data: StockMutation, warehouse_id: int) -> None:
    audit.record(
        actor_id, action, "warehouse_stock", f"{warehouse_id}:{data.product_id}",
        {"quantity": data.quantity, "reason": data.reason},
    )


@router.post("/receive", response_model=StockLevelResponse)
def receive_stock(data: StockMutation, db: DbSession, principal: RequireWarehouseManager, audit: Audit):
    """Record goods arriving at a warehouse."""
    warehouse = WarehouseService(db).resolve_warehouse(data.warehouse_id)
    stock = StockLedgerService(db).receive(
        warehouse.id, data.product_id, data.quantity,
        reason=data.reason, actor_id=principal.user_id,
    )
    _audit(audit, principal.user_id, "stock_receive", data, warehouse.id)
    return stock


@router.post("/writeoff", response_model=StockLevelResponse)
def writeoff_stock(data: StockMutation, db: DbSession, principal: RequireWarehouseManager, audit: Audit):
    """Remove unreserved stock (spoilage, breakage, loss)."""
    warehouse = WarehouseService(db).resolve_warehouse(data.warehouse_id)
    stock = StockLedgerService(db).writeoff(
        warehouse.id, data.product_id, data.quantity,
        reason=data.reason, actor_id=principal.user_id,
    )
    _audit(audit, principal.user_id, "stock_writeoff", data, warehouse.id)
    return stock


@router.post("/reserve", response_model=StockLevelResponse)
def reserve_stock(data: StockMutation, db: DbSession, principal: RequireWarehouseManager, audit: Audit):
    warehouse = WarehouseService(db).resolve_warehouse(data.warehouse_id)
    stock = StockLedgerService(db).reserve(
        warehouse.id, data.product_id, data.quantity,
        reason=data.reason, reference=_reference(data), actor_id=principal.user_id,
    )
    _audit(audit, principal.user_id, "stock_reserve", data, warehouse.id)
    return stock


@router.post("/release", response_model=StockLevelResponse)
def release_stock(data: StockMutation, db: DbSession, principal: RequireWarehouseManager, audit: Audit):
    warehouse = WarehouseService(db).resolve_warehouse(data.warehouse_id)
    stock = StockLedgerService(db).release(
        warehouse.id, data.product_id, data.quantity,
        reason=data.reason, reference=_reference(data), actor_id=principal.user_id,
    )
    _audit(audit, principal.user_id, "stock_release", data, warehouse.id)
    return stock


@router.get("/movements")
def list_movements(
    db: DbSession,
    principal: RequireWarehouseManager,
    warehouse_id: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    """Stock movements, newest first."""
    movements = WarehouseService(db).movements(warehouse_id, product_id, limit)
    return list_response(movements, StockMovementResponse)
