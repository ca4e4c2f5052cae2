"""Domain service for the order lifecycle.

``OrderService`` places orders (reserve stock, price, number, persist),
and drives every later status change: payment, delivery, cancellation and
the generic admin transition. It does not handle HTTP or Django; it talks
to the catalog and the order store through their ports.

State machine::

    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed -> cancelled

Mutations of an existing order run in an optimistic-concurrency loop: load,
apply, ``store.save`` (conditioned on the order version). A lost race is
re-evaluated against the fresh order, so a second concurrent cancel fails
with ``NotCancellableError`` instead of restoring stock twice.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence

from .domain import (
    ALLOWED_TRANSITIONS,
    CatalogPort,
    LineItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderStorePort,
    PaymentMethod,
    Pricing,
    ShippingAddress,
)
from .errors import (
    AlreadyDeliveredError,
    AlreadyPaidError,
    ConcurrentUpdateError,
    EmptyOrderError,
    InvalidPaymentMethodError,
    InvalidPricingError,
    InvalidStatusError,
    InvalidTransitionError,
    NotCancellableError,
    NotFoundError,
)
from .numbering import OrderNumberGenerator
from .reservation import StockReservationEngine

logger = logging.getLogger("orders")

DEFAULT_CANCEL_REASON = "Cancelled by customer"


def parse_status(value) -> OrderStatus:
    """Map ``value`` onto ``OrderStatus`` or raise ``InvalidStatusError``."""
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatusError(value) from None


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise InvalidPaymentMethodError(value) from None


class OrderService:
    """Domain service responsible for the order lifecycle.

    Args:
        catalog: CatalogPort used to reserve and restore stock.
        orders: OrderStorePort used to persist orders.
        numbers: Generator for order numbers; built from ``orders`` when
            omitted.
        strict_transitions: When True, ``transition_status`` only follows
            the edges of the state machine. When False any status may follow
            any other, except that a cancelled order stays cancelled.
        clock: Returns the current (timezone-aware) time.
        locale: Locale used for the product name snapshot.
        max_conflict_retries: Attempts for a version-checked save.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        orders: OrderStorePort,
        numbers: Optional[OrderNumberGenerator] = None,
        strict_transitions: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
        locale: str = "fr",
        max_conflict_retries: int = 3,
    ):
        self.catalog = catalog
        self.orders = orders
        self.clock = clock
        self.stock = StockReservationEngine(catalog, locale=locale)
        self.numbers = numbers or OrderNumberGenerator(orders, clock=clock)
        self.strict_transitions = strict_transitions
        self.max_conflict_retries = max_conflict_retries

    # ---- creation ----
    def create(
        self,
        user_id: str,
        items: Sequence[OrderItem],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        shipping_cost: Decimal = Decimal("0"),
        tax: Decimal = Decimal("0"),
        discount: Decimal = Decimal("0"),
        customer_note: Optional[str] = None,
    ) -> Order:
        """Place an order: reserve stock, price it, number it, persist it.

        Any failure after the first successful decrement (a later item out
        of stock, a pricing error, number exhaustion, a store error) restores
        the decremented lines before the exception propagates.

        Returns:
            The persisted Order in ``pending`` status with one history entry.

        Raises:
            EmptyOrderError: If ``items`` is empty.
            InvalidPaymentMethodError: If ``payment_method`` is unknown.
            InvalidQuantityError, NotFoundError, InsufficientStockError:
                From the reservation.
            InvalidPricingError: If the total would be negative.
            IdentifierExhaustedError: If no free order number was found.
        """
        if not items:
            raise EmptyOrderError()
        payment_method = parse_payment_method(payment_method)

        committed: list[LineItem] = []
        try:
            reservation = self.stock.reserve(items, committed)

            pricing = Pricing(
                subtotal=reservation.subtotal,
                shipping_cost=shipping_cost,
                tax=tax,
                discount=discount,
            ).recompute()
            if min(pricing.shipping_cost, pricing.tax, pricing.discount) < 0 or pricing.total < 0:
                raise InvalidPricingError("Pricing components and total must be non-negative")

            now = self.clock()
            order = Order(
                user_id=str(user_id),
                items=list(reservation.lines),
                shipping_address=shipping_address,
                payment_method=payment_method,
                pricing=pricing,
                customer_note=customer_note,
                created_at=now,
            )
            order.record(OrderStatus.PENDING, now, actor_id=str(user_id))
            order = self.numbers.insert(order)
        except Exception:
            self._compensate(committed)
            raise

        logger.info(
            "order created",
            extra={"order_number": order.order_number, "order_id": str(order.id), "total": str(order.pricing.total)},
        )
        return order

    def _compensate(self, committed: list[LineItem]) -> None:
        if not committed:
            return
        logger.warning(
            "compensating reservation",
            extra={"lines": [(line.product_id, line.quantity) for line in committed]},
        )
        try:
            self.stock.restore(committed)
        except Exception:
            logger.exception(
                "compensation failed",
                extra={"lines": [(line.product_id, line.quantity) for line in committed]},
            )

    # ---- reads ----
    def get(self, order_id) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    def track(self, order_number: str) -> Order:
        order = self.orders.get_by_number(order_number)
        if order is None:
            raise NotFoundError("order", order_number)
        return order

    # ---- mutations ----
    def _mutate(self, order_id, apply: Callable[[Order, datetime], None]) -> Order:
        """Load, apply and save an order, retrying on version conflicts."""
        for _ in range(self.max_conflict_retries):
            order = self.get(order_id)
            apply(order, self.clock())
            if self.orders.save(order):
                return order
            logger.info("order version conflict", extra={"order_id": str(order_id)})
        raise ConcurrentUpdateError(f"Order {order_id} kept changing")

    def mark_paid(self, order_id, payment_info: Optional[dict] = None, actor_id=None) -> Order:
        """Record payment; a ``pending`` order moves to ``confirmed``.

        Raises:
            AlreadyPaidError: If the order is already paid.
        """
        info = {k: v for k, v in (payment_info or {}).items() if k in ("transaction_id", "provider")}

        def apply(order: Order, now: datetime) -> None:
            if order.is_paid:
                raise AlreadyPaidError()
            order.is_paid = True
            order.paid_at = now
            for key, value in info.items():
                setattr(order.payment_details, key, value)
            order.payment_details.paid_at = now
            status = OrderStatus.CONFIRMED if order.status == OrderStatus.PENDING else order.status
            order.record(status, now, note="payment recorded", actor_id=_actor(actor_id))

        return self._mutate(order_id, apply)

    def mark_delivered(self, order_id, actor_id=None) -> Order:
        """Flag the order as delivered.

        Raises:
            AlreadyDeliveredError: If the order is already delivered.
            InvalidTransitionError: If the order was cancelled.
        """

        def apply(order: Order, now: datetime) -> None:
            if order.is_delivered:
                raise AlreadyDeliveredError()
            if order.status == OrderStatus.CANCELLED:
                raise InvalidTransitionError(order.status, OrderStatus.DELIVERED)
            self._deliver(order, now)
            order.record(OrderStatus.DELIVERED, now, actor_id=_actor(actor_id))

        return self._mutate(order_id, apply)

    @staticmethod
    def _deliver(order: Order, now: datetime) -> None:
        order.is_delivered = True
        order.delivered_at = now
        order.tracking.actual_delivery = now

    def cancel(self, order_id, reason: Optional[str] = None, actor_id=None) -> Order:
        """Cancel a ``pending`` or ``confirmed`` order and restore its stock.

        The cancelled status is saved first; only the caller whose save wins
        restores stock, so stock comes back exactly once.

        Raises:
            NotCancellableError: If the order is past ``confirmed`` or
                already cancelled.
        """

        def apply(order: Order, now: datetime) -> None:
            if not order.can_be_cancelled:
                raise NotCancellableError(order.status)
            order.cancelled_at = now
            order.cancellation_reason = reason or DEFAULT_CANCEL_REASON
            order.record(OrderStatus.CANCELLED, now, note=order.cancellation_reason, actor_id=_actor(actor_id))

        order = self._mutate(order_id, apply)
        try:
            self.stock.restore(order.items)
        except Exception:
            logger.exception(
                "stock restore failed after cancellation",
                extra={"order_number": order.order_number, "lines": [(i.product_id, i.quantity) for i in order.items]},
            )
            raise
        logger.info("order cancelled", extra={"order_number": order.order_number})
        return order

    def transition_status(
        self,
        order_id,
        new_status,
        note: Optional[str] = None,
        actor_id=None,
        tracking: Optional[dict] = None,
    ) -> Order:
        """Move an order to ``new_status`` (admin path).

        ``cancelled`` goes through ``cancel`` so the cancellable check and the
        stock restore always apply. ``delivered`` also sets the delivery
        flags. Tracking fields in ``tracking`` are merged in.

        Raises:
            InvalidStatusError: If ``new_status`` is not one of the six statuses.
            InvalidTransitionError: If the move is not allowed by the
                configured policy.
        """
        target = parse_status(new_status)
        if target == OrderStatus.CANCELLED:
            return self.cancel(order_id, reason=note, actor_id=actor_id)

        tracking_fields = {
            k: v
            for k, v in (tracking or {}).items()
            if k in ("carrier", "tracking_number", "estimated_delivery") and v is not None
        }

        def apply(order: Order, now: datetime) -> None:
            self._check_transition(order.status, target)
            for key, value in tracking_fields.items():
                setattr(order.tracking, key, value)
            if target == OrderStatus.DELIVERED and not order.is_delivered:
                self._deliver(order, now)
            order.record(target, now, note=note, actor_id=_actor(actor_id))

        return self._mutate(order_id, apply)

    def _check_transition(self, current: OrderStatus, target: OrderStatus) -> None:
        if current == OrderStatus.CANCELLED:
            raise InvalidTransitionError(current, target)
        if self.strict_transitions and target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current, target)


def _actor(actor_id) -> Optional[str]:
    return None if actor_id is None else str(actor_id)
