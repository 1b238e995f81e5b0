# Services module

from grocery.services.stock_ledger_service import StockLedgerService, StockReference
from grocery.services.pick_task_service import PickTaskService
from grocery.services.courier_assignment_service import CourierAssignmentService
from grocery.services.order_event_service import OrderEventService
from grocery.services.order_service import OrderService
from grocery.services.courier_service import CourierService
from grocery.services.warehouse_service import WarehouseService
from grocery.services.cart_service import CartService
from grocery.services.audit_service import AuditSink, log_action
