"""Repository layer for persisting orders.

``OrderRepository`` implements ``OrderStorePort`` on top of the Django ORM
and maps between ``OrderModel`` rows and domain ``Order`` objects, so the
domain layer is not coupled to Django details. Embedded structures (line
items, history, addresses) are stored as JSON with ISO timestamps and
decimal strings.

Two store-level guarantees the domain relies on:

- ``insert_unique`` runs in a savepoint and turns the unique-index
  violation on ``order_number`` into ``DuplicateOrderNumberError``;
- ``save`` is a conditional UPDATE on ``version``, so concurrent writers
  cannot silently overwrite each other.
"""

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.core.paginator import Paginator
from django.db import IntegrityError, transaction
from django.core.exceptions import ValidationError
from django.db.models import Count, F, Sum
from django.utils import timezone

from .domain import (
    LineItem,
    Order,
    OrderStatus,
    PaymentDetails,
    PaymentMethod,
    Pricing,
    ShippingAddress,
    StatusHistoryEntry,
    Tracking,
)
from .errors import DuplicateOrderNumberError
from .models import OrderModel


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _items_to_json(items) -> list:
    return [
        {
            "product_id": i.product_id,
            "name": i.name,
            "price": str(i.price),
            "quantity": i.quantity,
            "subtotal": str(i.subtotal),
        }
        for i in items
    ]


def _history_to_json(history) -> list:
    return [
        {
            "status": h.status.value,
            "note": h.note,
            "actor_id": h.actor_id,
            "timestamp": _dt(h.timestamp),
        }
        for h in history
    ]


def _payment_to_json(p: PaymentDetails) -> dict:
    return {"transaction_id": p.transaction_id, "paid_at": _dt(p.paid_at), "provider": p.provider}


def _tracking_to_json(t: Tracking) -> dict:
    return {
        "carrier": t.carrier,
        "tracking_number": t.tracking_number,
        "estimated_delivery": _dt(t.estimated_delivery),
        "actual_delivery": _dt(t.actual_delivery),
    }


def _mutable_fields(order: Order) -> dict:
    return {
        "status": order.status.value,
        "status_history": _history_to_json(order.status_history),
        "payment_details": _payment_to_json(order.payment_details),
        "tracking": _tracking_to_json(order.tracking),
        "subtotal": order.pricing.subtotal,
        "shipping_cost": order.pricing.shipping_cost,
        "tax": order.pricing.tax,
        "discount": order.pricing.discount,
        "total": order.pricing.total,
        "is_paid": order.is_paid,
        "paid_at": order.paid_at,
        "is_delivered": order.is_delivered,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
        "cancellation_reason": order.cancellation_reason,
    }


def to_domain(o: OrderModel) -> Order:
    """Map an ``OrderModel`` row to a domain ``Order``."""
    payment = o.payment_details or {}
    tracking = o.tracking or {}
    return Order(
        id=o.id,
        order_number=o.order_number,
        user_id=o.user_id,
        items=[
            LineItem(
                product_id=i["product_id"],
                name=i["name"],
                price=Decimal(i["price"]),
                quantity=int(i["quantity"]),
            )
            for i in o.items
        ],
        shipping_address=ShippingAddress(**o.shipping_address),
        payment_method=PaymentMethod(o.payment_method),
        pricing=Pricing(
            subtotal=o.subtotal,
            shipping_cost=o.shipping_cost,
            tax=o.tax,
            discount=o.discount,
            total=o.total,
        ),
        status=OrderStatus(o.status),
        status_history=[
            StatusHistoryEntry(
                status=OrderStatus(h["status"]),
                timestamp=_parse_dt(h["timestamp"]),
                note=h.get("note"),
                actor_id=h.get("actor_id"),
            )
            for h in o.status_history
        ],
        payment_details=PaymentDetails(
            transaction_id=payment.get("transaction_id"),
            paid_at=_parse_dt(payment.get("paid_at")),
            provider=payment.get("provider"),
        ),
        tracking=Tracking(
            carrier=tracking.get("carrier"),
            tracking_number=tracking.get("tracking_number"),
            estimated_delivery=_parse_dt(tracking.get("estimated_delivery")),
            actual_delivery=_parse_dt(tracking.get("actual_delivery")),
        ),
        customer_note=o.customer_note,
        is_paid=o.is_paid,
        paid_at=o.paid_at,
        is_delivered=o.is_delivered,
        delivered_at=o.delivered_at,
        cancelled_at=o.cancelled_at,
        cancellation_reason=o.cancellation_reason,
        created_at=o.created_at,
        version=o.version,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM.

    Implements ``OrderStorePort`` plus the read-side queries used by the
    views (paginated listings and per-status statistics).
    """

    def count_created_between(self, start: datetime, end: datetime) -> int:
        return OrderModel.objects.filter(created_at__gte=start, created_at__lt=end).count()

    def insert_unique(self, order: Order) -> Order:
        """Persist a new order record.

        Raises:
            DuplicateOrderNumberError: When the order number is already used.
        """
        try:
            # Savepoint: an IntegrityError only rolls back this block
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    order_number=order.order_number,
                    user_id=order.user_id,
                    items=_items_to_json(order.items),
                    shipping_address=asdict(order.shipping_address),
                    payment_method=order.payment_method.value,
                    customer_note=order.customer_note,
                    created_at=order.created_at,
                    version=1,
                    **_mutable_fields(order),
                )
        except IntegrityError:
            if OrderModel.objects.filter(order_number=order.order_number).exists():
                raise DuplicateOrderNumberError(order.order_number)
            raise
        order.id = obj.id
        order.version = obj.version
        return order

    def get(self, order_id) -> Optional[Order]:
        try:
            return to_domain(OrderModel.objects.get(id=order_id))
        except (OrderModel.DoesNotExist, ValidationError, ValueError):
            return None

    def get_by_number(self, order_number: str) -> Optional[Order]:
        obj = OrderModel.objects.filter(order_number=order_number).first()
        return to_domain(obj) if obj else None

    def save(self, order: Order) -> bool:
        """Write mutable fields only if nobody saved since ``order`` was read."""
        updated = OrderModel.objects.filter(id=order.id, version=order.version).update(
            version=F("version") + 1,
            updated_at=timezone.now(),
            **_mutable_fields(order),
        )
        if updated:
            order.version += 1
        return bool(updated)

    # ---- read side ----
    def page(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int, int]:
        """Return ``(orders, total_count, page_number)`` newest first."""
        qs = OrderModel.objects.order_by("-created_at")
        if user_id is not None:
            qs = qs.filter(user_id=str(user_id))
        if status:
            qs = qs.filter(status=status)
        if start:
            qs = qs.filter(created_at__gte=start)
        if end:
            qs = qs.filter(created_at__lte=end)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)
        return [to_domain(o) for o in page_obj.object_list], p.count, page_obj.number

    def stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[dict]:
        """Order count and summed totals per status."""
        qs = OrderModel.objects.all()
        if start:
            qs = qs.filter(created_at__gte=start)
        if end:
            qs = qs.filter(created_at__lte=end)
        rows = qs.values("status").annotate(count=Count("id"), total_amount=Sum("total")).order_by("status")
        return [
            {"status": r["status"], "count": r["count"], "total_amount": r["total_amount"] or Decimal("0.00")}
            for r in rows
        ]
