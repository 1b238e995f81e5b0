"""SQLAlchemy models."""

from grocery.models.user import User
from grocery.models.product import Product, CartItem
from grocery.models.courier import Courier, CourierStatus, VerificationStatus
from grocery.models.order import Order, OrderItem, OrderEvent, OrderStatus
from grocery.models.warehouse import Warehouse, WarehouseStock, StockMovement, MovementType
from grocery.models.pick_task import PickTask, PickTaskItem, PickTaskStatus
from grocery.models.audit import AuditLogEntry

__all__ = [
    "User",
    "Product",
    "CartItem",
    "Courier",
    "CourierStatus",
    "VerificationStatus",
    "Order",
    "OrderItem",
    "OrderEvent",
    "OrderStatus",
    "Warehouse",
    "WarehouseStock",
    "StockMovement",
    "MovementType",
    "PickTask",
    "PickTaskItem",
    "PickTaskStatus",
    "AuditLogEntry",
]
