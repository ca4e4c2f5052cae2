"""Unit tests for OrderService: placement, compensation and status changes.

The service runs against the in-memory catalog and order store with a fixed
clock, so numbers, timestamps and stock levels are deterministic.
"""

import threading
from decimal import Decimal

import pytest

from apps.orders.adapters import InMemoryOrderStore
from apps.orders.domain import OrderItem, OrderStatus
from apps.orders.errors import (
    AlreadyDeliveredError,
    AlreadyPaidError,
    ConcurrentUpdateError,
    DuplicateOrderNumberError,
    EmptyOrderError,
    IdentifierExhaustedError,
    InsufficientStockError,
    InvalidPaymentMethodError,
    InvalidPricingError,
    InvalidStatusError,
    InvalidTransitionError,
    NotCancellableError,
    NotFoundError,
)
from apps.orders.numbering import OrderNumberGenerator
from apps.orders.service import OrderService


@pytest.fixture
def place(service, address):
    def _place(*items, **kw):
        return service.create(
            user_id=kw.pop("user_id", "7"),
            items=[OrderItem(sku, qty) for sku, qty in (items or [("ESP32", 2)])],
            shipping_address=address,
            payment_method=kw.pop("payment_method", "mobile_money"),
            **kw,
        )

    return _place


def _ship(service, order):
    for status in ("confirmed", "processing", "shipped"):
        order = service.transition_status(order.id, status)
    return order


# ---- creation ----

def test_create_places_pending_order(place, catalog, clock):
    order = place(("ESP32", 2), ("RES-10K", 10), shipping_cost="2.50", tax="1", discount="0.5")

    assert order.order_number == "EB2410170001"
    assert order.status == OrderStatus.PENDING
    assert order.created_at == clock.now
    assert [(h.status, h.actor_id) for h in order.status_history] == [(OrderStatus.PENDING, "7")]
    assert order.pricing.subtotal == Decimal("26.00")
    assert order.pricing.total == Decimal("29.00")
    assert catalog.stock_of("ESP32") == 3
    assert catalog.stock_of("RES-10K") == 90


def test_create_empty_order_rejected(place, service, address):
    with pytest.raises(EmptyOrderError) as e:
        service.create("7", [], address, "card")
    assert str(e.value) == "EMPTY_ORDER"


def test_unknown_payment_method_rejected_before_reserving(place, catalog):
    with pytest.raises(InvalidPaymentMethodError) as e:
        place(("ESP32", 2), payment_method="cheque")

    assert str(e.value) == "INVALID_PAYMENT_METHOD"
    assert e.value.details() == {"payment_method": "cheque"}
    assert catalog.stock_of("ESP32") == 5


def test_second_item_failure_restores_first_item(place, catalog, store):
    with pytest.raises(InsufficientStockError):
        place(("ESP32", 2), ("LED-RED", 3))

    assert catalog.stock_of("ESP32") == 5
    assert catalog.stock_of("LED-RED") == 1
    assert store.get_by_number("EB2410170001") is None


def test_negative_total_rejected_and_compensated(place, catalog):
    with pytest.raises(InvalidPricingError):
        place(("ESP32", 1), discount="100")
    assert catalog.stock_of("ESP32") == 5


class FullStore(InMemoryOrderStore):
    def insert_unique(self, order):
        raise DuplicateOrderNumberError(order.order_number)


def test_identifier_exhaustion_restores_stock(catalog, clock, address):
    store = FullStore()
    service = OrderService(catalog, store, numbers=OrderNumberGenerator(store, max_attempts=2, clock=clock), clock=clock)

    with pytest.raises(IdentifierExhaustedError):
        service.create("7", [OrderItem("ESP32", 4)], address, "card")
    assert catalog.stock_of("ESP32") == 5


def test_reads(place, service):
    order = place()
    assert service.get(order.id).order_number == order.order_number
    assert service.track(order.order_number).id == order.id
    with pytest.raises(NotFoundError):
        service.track("EB0000000000")
    with pytest.raises(NotFoundError):
        service.get("not-a-uuid")


# ---- payment and delivery ----

def test_mark_paid_confirms_pending_order(place, service, clock):
    order = place()
    paid = service.mark_paid(order.id, {"transaction_id": "MM-889", "provider": "mtn", "extra": "x"}, actor_id=1)

    assert paid.status == OrderStatus.CONFIRMED
    assert paid.is_paid and paid.paid_at == clock.now
    assert paid.payment_details.transaction_id == "MM-889"
    assert paid.payment_details.provider == "mtn"
    assert len(paid.status_history) == 2
    assert paid.status_history[-1].actor_id == "1"

    with pytest.raises(AlreadyPaidError):
        service.mark_paid(order.id)


def test_mark_paid_keeps_later_status(place, service):
    order = place()
    service.transition_status(order.id, "processing")
    assert service.mark_paid(order.id).status == OrderStatus.PROCESSING


def test_mark_delivered(place, service, clock):
    order = _ship(service, place())
    done = service.mark_delivered(order.id)

    assert done.status == OrderStatus.DELIVERED
    assert done.is_delivered and done.delivered_at == clock.now
    assert done.tracking.actual_delivery == clock.now
    with pytest.raises(AlreadyDeliveredError):
        service.mark_delivered(order.id)


def test_cancelled_order_cannot_be_delivered(place, service):
    order = place()
    service.cancel(order.id)
    with pytest.raises(InvalidTransitionError):
        service.mark_delivered(order.id)


# ---- cancellation ----

def test_cancel_restores_stock_once(place, service, catalog):
    order = place(("ESP32", 5))
    assert catalog.tag_of("ESP32") == "OUT_OF_STOCK"

    cancelled = service.cancel(order.id, actor_id="7")

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancellation_reason == "Cancelled by customer"
    assert cancelled.cancelled_at is not None
    assert catalog.stock_of("ESP32") == 5
    assert catalog.tag_of("ESP32") is None

    with pytest.raises(NotCancellableError):
        service.cancel(order.id)
    assert catalog.stock_of("ESP32") == 5


def test_cancel_confirmed_order_with_reason(place, service):
    order = place()
    service.mark_paid(order.id)
    out = service.cancel(order.id, reason="changed my mind")
    assert out.cancellation_reason == "changed my mind"
    assert [h.status for h in out.status_history][-1] == OrderStatus.CANCELLED


def test_shipped_order_cannot_be_cancelled(place, service, catalog):
    order = _ship(service, place())

    with pytest.raises(NotCancellableError) as e:
        service.cancel(order.id)

    assert e.value.details() == {"status": "shipped"}
    assert service.get(order.id).status == OrderStatus.SHIPPED
    assert catalog.stock_of("ESP32") == 3


def test_concurrent_cancels_restore_stock_once(place, service, catalog):
    order = place(("ESP32", 4))
    results = []
    start = threading.Barrier(6)

    def worker():
        start.wait()
        try:
            service.cancel(order.id)
            results.append("ok")
        except (NotCancellableError, ConcurrentUpdateError):
            results.append("refused")

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert catalog.stock_of("ESP32") == 5


class StaleStore(InMemoryOrderStore):
    def save(self, order):
        return False


def test_persistent_version_conflict_raises(catalog, clock, address):
    store = StaleStore()
    service = OrderService(catalog, store, clock=clock, max_conflict_retries=2)
    order = service.create("7", [OrderItem("ESP32", 1)], address, "card")

    with pytest.raises(ConcurrentUpdateError):
        service.cancel(order.id)
    # status never changed, so stock stays reserved
    assert catalog.stock_of("ESP32") == 4


# ---- generic transitions ----

def test_permissive_transition_allows_skipping(place, service):
    order = place()
    out = service.transition_status(order.id, "shipped", note="sent", tracking={"carrier": "DHL", "tracking_number": "T1"})
    assert out.status == OrderStatus.SHIPPED
    assert out.tracking.carrier == "DHL" and out.tracking.tracking_number == "T1"
    assert out.status_history[-1].note == "sent"


def test_strict_transition_enforces_edges(catalog, store, clock, place):
    strict = OrderService(catalog, store, numbers=OrderNumberGenerator(store, clock=clock), strict_transitions=True, clock=clock)
    order = place()

    with pytest.raises(InvalidTransitionError) as e:
        strict.transition_status(order.id, "shipped")
    assert e.value.details() == {"current": "pending", "target": "shipped"}

    assert strict.transition_status(order.id, "confirmed").status == OrderStatus.CONFIRMED


def test_transition_to_cancelled_restores_stock(place, service, catalog):
    order = place(("ESP32", 3))
    out = service.transition_status(order.id, "cancelled", note="fraud")
    assert out.status == OrderStatus.CANCELLED
    assert out.cancellation_reason == "fraud"
    assert catalog.stock_of("ESP32") == 5


def test_cancelled_order_stays_cancelled(place, service):
    order = place()
    service.cancel(order.id)
    with pytest.raises(InvalidTransitionError):
        service.transition_status(order.id, "pending")


def test_transition_to_delivered_sets_flags(place, service, clock):
    order = place()
    out = service.transition_status(order.id, "delivered")
    assert out.is_delivered and out.delivered_at == clock.now


def test_unknown_status_rejected(place, service):
    order = place()
    with pytest.raises(InvalidStatusError) as e:
        service.transition_status(order.id, "lost")
    assert e.value.details() == {"status": "lost"}

