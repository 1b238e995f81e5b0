"""Admin pick task routes."""

from typing import Optional

from fastapi import APIRouter, Query

from grocery.core.rbac import RequireWarehouseManager
from grocery.core.responses import list_response
from grocery.core.validators import PositiveIntId
from grocery.db.session import DbSession
from grocery.schemas.pick_task import PickTaskCreate, PickTaskResponse, PickTaskUpdate
from grocery.services.audit_service import Audit
from grocery.services.pick_task_service import PickTaskService

router = APIRouter()


@router.post("/from-order", response_model=PickTaskResponse, status_code=201)
def create_pick_task(
    data: PickTaskCreate,
    db: DbSession,
    principal: RequireWarehouseManager,
    audit: Audit,
):
    """Create a pick task for an order, reserving stock for every line."""
    task = PickTaskService(db).create(
        data.order_id,
        warehouse_id=data.warehouse_id,
        assignee_id=data.assigned_to,
        actor_id=principal.user_id,
    )
    audit.record(
        principal.user_id, "pick_task_create", "pick_task", task.id,
        {"order_id": task.order_id, "warehouse_id": task.warehouse_id},
    )
    return task


@router.get("")
def list_pick_tasks(
    db: DbSession,
    principal: RequireWarehouseManager,
    status: Optional[str] = Query(None),
    order_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    tasks = PickTaskService(db).list_tasks(status, order_id, warehouse_id, limit)
    return list_response(tasks, PickTaskResponse)


@router.get("/{task_id}", response_model=PickTaskResponse)
def get_pick_task(task_id: PositiveIntId, db: DbSession, principal: RequireWarehouseManager):
    return PickTaskService(db).get(task_id)


@router.patch("/{task_id}", response_model=PickTaskResponse)
def update_pick_task(
    task_id: PositiveIntId,
    data: PickTaskUpdate,
    db: DbSession,
    principal: RequireWarehouseManager,
    audit: Audit,
):
    task = PickTaskService(db).transition(
        task_id,
        data.status,
        actor_id=principal.user_id,
        assignee_id=data.assigned_to,
        picked=data.picked,
    )
    audit.record(
        principal.user_id, "pick_task_status", "pick_task", task_id,
        {"status": data.status, "assigned_to": data.assigned_to},
    )
    return task
