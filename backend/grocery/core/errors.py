"""Domain error taxonomy.

Services raise these; ``grocery.main`` maps them to JSON responses with a
single exception handler so route functions stay free of try/except blocks.

Categories:
    validation   - rejected before any write, never retried (400)
    not_found    - referenced entity does not exist (404)
    permission   - principal may not perform the action (401/403)
    conflict     - state does not allow the action right now (409)
    consistency  - ledger invariant violated, indicates a bug (500)
    transient    - lock contention, retry the whole request (503)
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400
    code: str = "domain_error"
    category: str = "validation"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        body.update(self.context)
        return body


# ============== Validation ==============

class ValidationFailed(DomainError):
    code = "validation_failed"


class InvalidAddress(ValidationFailed):
    code = "invalid_address"
    default_message = "Delivery address must contain locality, a real street name and a house number"


class InvalidCoordinates(ValidationFailed):
    code = "invalid_coordinates"
    default_message = "Delivery coordinates must be a lat/lng pair within valid ranges"


class InvalidQuantity(ValidationFailed):
    code = "invalid_quantity"
    default_message = "Quantity must be a positive integer"


class InvalidStatus(ValidationFailed):
    code = "invalid_status"
    default_message = "Unknown status"


class EmptyCart(ValidationFailed):
    code = "empty_cart"
    default_message = "Cart is empty"


class EmptyOrder(ValidationFailed):
    code = "empty_order"
    default_message = "Order has no line items"


# ============== Not found ==============

class NotFound(DomainError):
    status_code = 404
    code = "not_found"
    category = "not_found"
    default_message = "Not found"


# ============== Permission ==============

class Unauthenticated(DomainError):
    status_code = 401
    code = "unauthenticated"
    category = "permission"
    default_message = "Not authenticated"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"
    category = "permission"
    default_message = "Insufficient permissions"


class CourierNotEligible(Forbidden):
    code = "courier_not_eligible"
    default_message = "Courier verification is not approved"


# ============== Conflict ==============

class Conflict(DomainError):
    status_code = 409
    code = "conflict"
    category = "conflict"
    default_message = "Conflict"


class ForbiddenTransition(Conflict):
    status_code = 403
    code = "forbidden_transition"
    default_message = "Status transition is not allowed"


class InsufficientStock(Conflict):
    code = "insufficient_stock"
    default_message = "Insufficient stock"


class DuplicateActiveTask(Conflict):
    code = "duplicate_active_task"
    default_message = "Order already has an active pick task"


class TerminalTaskImmutable(Conflict):
    code = "terminal_task_immutable"
    default_message = "Pick task is finished and cannot change"


class InvalidTaskTransition(Conflict):
    code = "invalid_task_transition"
    default_message = "Pick task transition is not allowed"


class OrderUnavailable(Conflict):
    code = "order_unavailable"
    default_message = "Order is no longer available"


class CourierAtCapacity(Conflict):
    code = "courier_at_capacity"
    default_message = "Courier has reached the active order limit"


# ============== Consistency ==============

class InconsistentReservation(DomainError):
    status_code = 500
    code = "inconsistent_reservation"
    category = "consistency"
    default_message = "Reserved stock does not cover the requested quantity"


# ============== Transient ==============

class Busy(DomainError):
    status_code = 503
    code = "busy"
    category = "transient"
    default_message = "Resource is busy, retry shortly"
