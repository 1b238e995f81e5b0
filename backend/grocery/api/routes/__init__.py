"""API routes."""

from fastapi import APIRouter

from grocery.api.routes import admin_stock, cart, couriers, orders, pick_tasks, warehouse

api_router = APIRouter()

# Customer, courier and admin order flows
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(couriers.router, prefix="/couriers", tags=["couriers"])

# Admin
api_router.include_router(couriers.admin_router, prefix="/admin/couriers", tags=["couriers", "admin"])
api_router.include_router(admin_stock.router, prefix="/admin/stock", tags=["stock", "admin"])
api_router.include_router(warehouse.router, prefix="/admin/warehouse", tags=["warehouse", "admin"])
api_router.include_router(pick_tasks.router, prefix="/admin/pick-tasks", tags=["pick-tasks", "admin"])
