"""Domain errors for the orders core.

Every error is a ``ValueError`` whose string form is a short, stable code
(for example ``"INSUFFICIENT_STOCK"``) so callers can switch on ``str(exc)``
or on ``exc.code``. ``details()`` returns the extra fields the HTTP layer
adds to the response body next to ``detail``.
"""


def _plain(value) -> str:
    return str(getattr(value, "value", value))


class OrderError(ValueError):
    """Base class for business-rule failures raised by the orders core."""

    code = "ORDER_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(self.code)
        self.message = message or self.code

    def details(self) -> dict:
        return {}


class EmptyOrderError(OrderError):
    code = "EMPTY_ORDER"


class InvalidQuantityError(OrderError):
    code = "INVALID_QUANTITY"

    def __init__(self, product_id: str, quantity: int):
        super().__init__(f"Invalid quantity {quantity} for product {product_id}")
        self.product_id = product_id
        self.quantity = quantity

    def details(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity}


class InvalidPricingError(OrderError):
    code = "INVALID_PRICING"


class NotFoundError(OrderError):
    """A referenced product or order does not exist.

    Attributes:
        kind: ``"product"`` or ``"order"``.
        ref: The identifier that was looked up.
    """

    code = "NOT_FOUND"

    def __init__(self, kind: str, ref):
        super().__init__(f"{kind} {ref} not found")
        self.kind = kind
        self.ref = ref

    def details(self) -> dict:
        return {"kind": self.kind, "ref": str(self.ref)}


class InsufficientStockError(OrderError):
    """Requested quantity exceeds the stock available for a product."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, available: int, requested: int):
        super().__init__(f"Insufficient stock for {product_id}: available {available}, requested {requested}")
        self.product_id = product_id
        self.available = available
        self.requested = requested

    def details(self) -> dict:
        return {"product_id": self.product_id, "available": self.available, "requested": self.requested}


class InvalidPaymentMethodError(OrderError):
    code = "INVALID_PAYMENT_METHOD"

    def __init__(self, method):
        super().__init__(f"Unknown payment method {method!r}")
        self.method = method

    def details(self) -> dict:
        return {"payment_method": _plain(self.method)}


class InvalidStatusError(OrderError):
    code = "INVALID_STATUS"

    def __init__(self, status):
        super().__init__(f"Invalid status {status!r}")
        self.status = status

    def details(self) -> dict:
        return {"status": _plain(self.status)}


class InvalidTransitionError(OrderError):
    code = "INVALID_TRANSITION"

    def __init__(self, current, target):
        super().__init__(f"Cannot move order from {current} to {target}")
        self.current = current
        self.target = target

    def details(self) -> dict:
        return {"current": _plain(self.current), "target": _plain(self.target)}


class AlreadyPaidError(OrderError):
    code = "ALREADY_PAID"


class AlreadyDeliveredError(OrderError):
    code = "ALREADY_DELIVERED"


class NotCancellableError(OrderError):
    """Raised when cancelling an order outside ``pending``/``confirmed``."""

    code = "NOT_CANCELLABLE"

    def __init__(self, status):
        super().__init__(f"Order can no longer be cancelled (status: {status})")
        self.status = status

    def details(self) -> dict:
        return {"status": _plain(self.status)}


class IdentifierExhaustedError(OrderError):
    code = "IDENTIFIER_EXHAUSTED"

    def __init__(self, attempts: int):
        super().__init__(f"No free order number after {attempts} attempts")
        self.attempts = attempts


class ConcurrentUpdateError(OrderError):
    code = "CONCURRENT_UPDATE"


class DuplicateOrderNumberError(OrderError):
    """Signalled by an order store when the unique order number is taken."""

    code = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_number: str):
        super().__init__(f"Order number {order_number} already exists")
        self.order_number = order_number
