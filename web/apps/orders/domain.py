"""Domain models and ports for orders.

This module contains the dataclasses the orders core works with (orders,
line items, pricing, status history), the status/payment enums, and the
protocol definitions (ports) for the two stores the core depends on: the
product catalog and the order store. Nothing here touches Django, HTTP or a
database; concrete adapters live in ``repository``, ``http_adapters`` and
``adapters``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Protocol, List, Optional
from enum import Enum
import uuid

CENTS = Decimal("0.01")


def money(value) -> Decimal:
    """Coerce ``value`` to a Decimal rounded to two places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    ``DELIVERED`` and ``CANCELLED`` are terminal. The values are persisted and
    exposed as-is, so they are part of the public contract.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

# Edges of the lifecycle, enforced only when strict transitions are enabled
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"


class ProductTag(str, Enum):
    """Merchandising tag carried by catalog products."""

    POPULAR = "POPULAR"
    NEW = "NEW"
    PROMOTION = "PROMOTION"
    OUT_OF_STOCK = "OUT_OF_STOCK"


def derive_tag(stock: int, min_stock: int, tag: Optional[str]) -> Optional[str]:
    """Return the tag a product should carry once its stock is ``stock``.

    Stock at zero always means ``OUT_OF_STOCK``; a low stock drops any tag
    except ``PROMOTION``; a restocked product loses ``OUT_OF_STOCK``.
    """
    if stock == 0:
        return ProductTag.OUT_OF_STOCK.value
    if stock <= min_stock and tag != ProductTag.PROMOTION.value:
        return None
    if tag == ProductTag.OUT_OF_STOCK.value:
        return None
    return tag


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A requested line: which product and how many units.

    Attributes:
        product_id: Catalog identifier (SKU) of the product.
        quantity: Number of units requested, at least 1.
    """

    product_id: str
    quantity: int


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog view of a product at lookup time."""

    product_id: str
    name: dict
    price: Decimal
    stock: int
    tag: Optional[str] = None

    def display_name(self, locale: str) -> str:
        """Name in ``locale``, else the first name the product has."""
        if locale in self.name and self.name[locale]:
            return self.name[locale]
        return next((v for v in self.name.values() if v), self.product_id)


@dataclass(frozen=True)
class LineItem:
    """A reserved line, with name and price frozen at purchase time.

    The snapshot keeps historical totals stable when the catalog changes.
    """

    product_id: str
    name: str
    price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return money(self.price * self.quantity)


@dataclass
class ShippingAddress:
    full_name: str
    phone: str
    street: str
    city: str
    postal_code: Optional[str] = None
    country: str = "Bénin"
    additional_info: Optional[str] = None


@dataclass
class PaymentDetails:
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    provider: Optional[str] = None


@dataclass
class Tracking:
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None


@dataclass
class Pricing:
    """Price breakdown of an order.

    ``total`` is derived; call ``recompute`` after changing any other field.
    """

    subtotal: Decimal = Decimal("0.00")
    shipping_cost: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def recompute(self) -> "Pricing":
        self.subtotal = money(self.subtotal)
        self.shipping_cost = money(self.shipping_cost)
        self.tax = money(self.tax)
        self.discount = money(self.discount)
        self.total = money(self.subtotal + self.shipping_cost + self.tax - self.discount)
        return self


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None
    actor_id: Optional[str] = None


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier, assigned by the order store.
        order_number: Human-readable unique number, immutable once set.
        user_id: Owning user reference.
        items: Reserved line items.
        status: Current OrderStatus; change it only through OrderService.
        status_history: Append-only audit trail of status changes.
        version: Optimistic-concurrency counter maintained by the store.
    """

    user_id: str
    items: List[LineItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    pricing: Pricing = field(default_factory=Pricing)
    id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    payment_details: PaymentDetails = field(default_factory=PaymentDetails)
    tracking: Tracking = field(default_factory=Tracking)
    customer_note: Optional[str] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int = 0

    @property
    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def record(self, status: OrderStatus, at: datetime, note=None, actor_id=None) -> None:
        """Set ``status`` and append the matching history entry."""
        self.status = status
        self.status_history.append(StatusHistoryEntry(status=status, timestamp=at, note=note, actor_id=actor_id))

    def copy(self) -> "Order":
        return replace(
            self,
            items=list(self.items),
            status_history=list(self.status_history),
            pricing=replace(self.pricing),
            payment_details=replace(self.payment_details),
            tracking=replace(self.tracking),
            shipping_address=replace(self.shipping_address),
        )


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations used by the reservation engine.

    ``try_decrement`` must be atomic: check and write happen as one step at
    the store, so stock can never go below zero under concurrent callers.
    """

    def find_product(self, product_id: str) -> Optional[ProductSnapshot]:
        """Return the product, or None if it does not exist."""
        raise NotImplementedError()

    def try_decrement(self, product_id: str, quantity: int) -> bool:
        """Take ``quantity`` units out of stock if at least that many remain.

        Returns:
            True if stock was decremented, False if it was insufficient.
        """
        raise NotImplementedError()

    def increment(self, product_id: str, quantity: int) -> bool:
        """Put ``quantity`` units back. Returns False if the product is gone."""
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Port describing order persistence used by the lifecycle manager."""

    def count_created_between(self, start: datetime, end: datetime) -> int:
        """Number of orders with ``start <= created_at < end``."""
        raise NotImplementedError()

    def insert_unique(self, order: Order) -> Order:
        """Persist a new order and return it with ``id`` set.

        Raises:
            DuplicateOrderNumberError: If ``order.order_number`` is taken.
        """
        raise NotImplementedError()

    def get(self, order_id) -> Optional[Order]:
        raise NotImplementedError()

    def get_by_number(self, order_number: str) -> Optional[Order]:
        raise NotImplementedError()

    def save(self, order: Order) -> bool:
        """Persist mutable fields if the stored version equals ``order.version``.

        On success the store bumps ``order.version``. Returns False when
        another writer got there first.
        """
        raise NotImplementedError()
