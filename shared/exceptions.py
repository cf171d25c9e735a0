"""
Domain exceptions shared by the order pipeline services.
"""


class OrderPipelineError(Exception):
    """Base exception for the order pipeline."""

    status_code = 400

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(OrderPipelineError):
    """Raised when client input fails validation."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class NotFoundError(OrderPipelineError):
    """Raised when an entity is not found."""

    status_code = 404

    def __init__(self, entity_name: str, entity_id: str, code: str = "NOT_FOUND"):
        super().__init__(
            message=f"{entity_name} with id '{entity_id}' not found",
            code=code,
        )
        self.entity_name = entity_name
        self.entity_id = entity_id


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        super().__init__("Product", product_id, code="PRODUCT_NOT_FOUND")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        super().__init__("Order", order_id, code="ORDER_NOT_FOUND")


class ConsistencyError(OrderPipelineError):
    """Raised when submitted data contradicts authoritative state."""


class TotalMismatchError(ConsistencyError):
    """Raised when the submitted total does not match the recomputed total."""

    def __init__(self, submitted, expected):
        super().__init__(
            message=f"Order total mismatch: submitted {submitted}, expected {expected}",
            code="TOTAL_MISMATCH",
        )
        self.submitted = submitted
        self.expected = expected


class DuplicateReferenceError(ConsistencyError):
    """Raised when a payment reference is already attached to another order."""

    status_code = 409

    def __init__(self, payment_reference: str):
        super().__init__(
            message=f"Payment reference '{payment_reference}' is already attached to an order",
            code="DUPLICATE_PAYMENT_REFERENCE",
        )
        self.payment_reference = payment_reference


class StaleOrderError(ConsistencyError):
    """Raised when an order changed between read and conditional write."""

    status_code = 409

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order '{order_id}' was modified concurrently, reload and retry",
            code="STALE_ORDER",
        )
        self.order_id = order_id


class InventoryError(OrderPipelineError):
    status_code = 409


class InsufficientStockError(InventoryError):
    """Raised when a conditional stock decrement cannot be applied."""

    def __init__(self, product_id: str, requested: int, available: int | None):
        super().__init__(
            message=f"Insufficient stock for product '{product_id}': requested {requested}, available {available}",
            code="INSUFFICIENT_STOCK",
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidTransitionError(OrderPipelineError):
    """Raised when a status change is not allowed from the current state."""

    status_code = 409

    def __init__(self, field: str, current: str, target: str):
        super().__init__(
            message=f"Cannot change {field} from '{current}' to '{target}'",
            code="INVALID_TRANSITION",
        )
        self.field = field
        self.current = current
        self.target = target


class ExternalServiceError(OrderPipelineError):
    """Raised when the payment gateway or another remote service fails."""

    status_code = 502


class SettlementUnavailableError(ExternalServiceError):
    """Raised when settlement data for a payment does not exist yet."""

    def __init__(self, payment_reference: str, reason: str):
        super().__init__(
            message=f"Settlement data unavailable for '{payment_reference}': {reason}",
            code="SETTLEMENT_UNAVAILABLE",
        )
        self.payment_reference = payment_reference
        self.reason = reason


class SignatureError(OrderPipelineError):
    """Raised when a webhook payload fails signature verification."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")
