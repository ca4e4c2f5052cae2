"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), check who may
see or change an order, delegate to the ``OrderService`` returned by
``providers.get_order_service()`` and map the outcome to a response.

Error mapping: business failures raised by the core (``OrderError``) become
``{"detail": <CODE>, ...details}`` with the status from ``ERROR_STATUS``;
request-schema failures become 400; an unavailable catalog becomes
``503 UPSTREAM_UNAVAILABLE``.

Idempotency: when an ``Idempotency-Key`` header is provided, order creation
runs at most once per key and payload. The first request stores its
response; retries with the same payload replay it with the header
``Idempotent-Replay: true``; reusing the key with a different payload
returns 409.
"""

import logging
from datetime import datetime, time
from decimal import Decimal

from django.utils import timezone
from django.utils.dateparse import parse_date
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from . import providers
from .domain import OrderItem, OrderStatus, ShippingAddress
from .errors import (
    AlreadyDeliveredError,
    AlreadyPaidError,
    ConcurrentUpdateError,
    EmptyOrderError,
    IdentifierExhaustedError,
    InsufficientStockError,
    InvalidPaymentMethodError,
    InvalidPricingError,
    InvalidQuantityError,
    InvalidStatusError,
    InvalidTransitionError,
    NotCancellableError,
    NotFoundError,
    OrderError,
)
from .http_adapters import UPSTREAM_ERRORS
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent, scoped_key
from .repository import OrderRepository
from .schemas import CancelDTO, CreateOrderDTO, OrderReadDTO, PaymentInfoDTO, StatusUpdateDTO, TrackingReadDTO

logger = logging.getLogger("orders")

ERROR_STATUS = {
    EmptyOrderError: status.HTTP_400_BAD_REQUEST,
    InvalidQuantityError: status.HTTP_400_BAD_REQUEST,
    InvalidPaymentMethodError: status.HTTP_400_BAD_REQUEST,
    InvalidPricingError: status.HTTP_400_BAD_REQUEST,
    InvalidStatusError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InsufficientStockError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    AlreadyPaidError: status.HTTP_409_CONFLICT,
    AlreadyDeliveredError: status.HTTP_409_CONFLICT,
    NotCancellableError: status.HTTP_409_CONFLICT,
    ConcurrentUpdateError: status.HTTP_409_CONFLICT,
    IdentifierExhaustedError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

MAX_PAGE_SIZE = 100


def error_body(exc: OrderError) -> tuple[dict, int]:
    """Return ``(body, status_code)`` for a core error."""
    code = next(
        (ERROR_STATUS[k] for k in type(exc).__mro__ if k in ERROR_STATUS),
        status.HTTP_400_BAD_REQUEST,
    )
    return {"detail": exc.code, **exc.details()}, code


def run(action, success_status=status.HTTP_200_OK) -> Response:
    """Execute ``action`` and map its result or failure to a Response."""
    try:
        body = action()
    except ValidationError as e:
        return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
    except OrderError as e:
        body, code = error_body(e)
        return Response(body, status=code)
    except UPSTREAM_ERRORS:
        logger.exception("catalog unavailable")
        return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(body, status=success_status)


def order_body(order) -> dict:
    return OrderReadDTO.from_order(order).model_dump(mode="json")


def _actor(request) -> str:
    return str(request.user.pk)


def _load_for(request, order_id):
    """Load an order the requesting user owns, or any order for staff.

    Orders of other users are reported as missing so ids cannot be probed.
    """
    order = providers.get_order_service().get(order_id)
    if not request.user.is_staff and order.user_id != _actor(request):
        raise NotFoundError("order", order_id)
    return order


def _int_param(request, name: str, default: int) -> int:
    try:
        return max(1, int(request.GET.get(name, default)))
    except (TypeError, ValueError):
        return default


def _date_range(request):
    """Parse ``start_date``/``end_date`` (YYYY-MM-DD, inclusive) as aware datetimes."""
    bounds = []
    for name, at in (("start_date", time.min), ("end_date", time.max)):
        raw = request.GET.get(name)
        if not raw:
            bounds.append(None)
            continue
        day = parse_date(raw)
        if day is None:
            raise ValueError(name)
        bounds.append(timezone.make_aware(datetime.combine(day, at)))
    return tuple(bounds)


def _status_param(request):
    value = request.GET.get("status")
    if value and value not in {s.value for s in OrderStatus}:
        raise InvalidStatusError(value)
    return value or None


def _page_response(request, user_id=None) -> Response:
    try:
        start, end = _date_range(request)
    except ValueError as e:
        return Response({"detail": "INVALID_DATE", "param": str(e)}, status=status.HTTP_400_BAD_REQUEST)

    def action():
        page_size = min(_int_param(request, "page_size", 20), MAX_PAGE_SIZE)
        orders, count, number = OrderRepository().page(
            user_id=user_id,
            status=_status_param(request),
            start=start,
            end=end,
            page=_int_param(request, "page", 1),
            page_size=page_size,
        )
        return {
            "count": count,
            "page": number,
            "page_size": page_size,
            "results": [order_body(o) for o in orders],
        }

    return run(action)


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module; returns ``{"ok": true}``."""

    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List orders (staff) or place a new order (any authenticated user)."""

    def get_permissions(self):
        if self.request.method == "GET":
            return [IsAdminUser()]
        return super().get_permissions()

    def get(self, request):
        """Paginated listing, filters ``status``, ``start_date``, ``end_date``."""
        return _page_response(request)

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created.
            - 201/4xx replayed with ``Idempotent-Replay: true`` when the same
              idempotency key and payload are retried.
            - 409 with {detail: "IDEMPOTENCY_CONFLICT"} when the same key is
              reused with a different payload, or {detail:
              "IDEMPOTENCY_IN_PROGRESS"} while the first request runs.
            - 400 for DTO validation errors.
            - 404/422 when a product is unknown or out of stock.
            - 503 with {detail: "UPSTREAM_UNAVAILABLE"} when the catalog is
              unavailable.
            - 503 with {detail: "IDENTIFIER_EXHAUSTED"} when no order number
              is free.

            The idempotency key is released on 5xx outcomes and unexpected
            errors, so the client can retry with the same key.
        """
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        rec = None
        idem_key = request.headers.get("Idempotency-Key")
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(
                    scoped_key(_actor(request), idem_key), dto.model_dump(mode="json")
                )
            except IdempotencyConflict:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        service = providers.get_order_service()
        try:
            order = service.create(
                user_id=_actor(request),
                items=[OrderItem(product_id=i.product_id, quantity=i.quantity) for i in dto.items],
                shipping_address=ShippingAddress(**dto.shipping_address.model_dump()),
                payment_method=dto.payment_method,
                shipping_cost=dto.shipping_cost,
                tax=dto.tax,
                discount=dto.discount,
                customer_note=dto.customer_note,
            )
        except OrderError as e:
            body, code = error_body(e)
            if rec:
                # 5xx outcomes are transient: the same key may be retried
                if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
                    rec.delete()
                else:
                    finalize(rec, code, body)
            return Response(body, status=code)
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during order creation")
            if rec:
                rec.delete()
            return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except Exception:
            if rec:
                rec.delete()
            raise

        body = order_body(order)
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class MyOrdersView(APIView):
    """Orders of the requesting user, newest first."""

    def get(self, request):
        return _page_response(request, user_id=_actor(request))


class OrderStatsView(APIView):
    """Per-status counts and amounts with a revenue summary (staff only).

    Revenue and the average order value leave cancelled orders out.
    """

    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            start, end = _date_range(request)
        except ValueError as e:
            return Response({"detail": "INVALID_DATE", "param": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        rows = OrderRepository().stats(start, end)
        kept = [r for r in rows if r["status"] != OrderStatus.CANCELLED.value]
        revenue = sum((r["total_amount"] for r in kept), Decimal("0.00"))
        kept_count = sum(r["count"] for r in kept)
        average = (revenue / kept_count).quantize(Decimal("0.01")) if kept_count else Decimal("0.00")
        return Response(
            {
                "by_status": [
                    {"status": r["status"], "count": r["count"], "total_amount": str(r["total_amount"])}
                    for r in rows
                ],
                "summary": {
                    "total_orders": sum(r["count"] for r in rows),
                    "total_revenue": str(revenue),
                    "average_order_value": str(average),
                },
            }
        )


class TrackOrderView(APIView):
    """Public tracking by order number; owner and payment data are left out."""

    permission_classes = [AllowAny]

    def get(self, request, order_number: str):
        return run(
            lambda: TrackingReadDTO.from_order(providers.get_order_service().track(order_number)).model_dump(mode="json")
        )


class OrderDetailView(APIView):
    def get(self, request, oid):
        return run(lambda: order_body(_load_for(request, oid)))


class CancelOrderView(APIView):
    """Cancel an order; owners may cancel their own, staff any."""

    def put(self, request, oid):
        def action():
            dto = CancelDTO.model_validate(request.data or {})
            order = _load_for(request, oid)
            return order_body(
                providers.get_order_service().cancel(order.id, reason=dto.reason, actor_id=_actor(request))
            )

        return run(action)


class PayOrderView(APIView):
    permission_classes = [IsAdminUser]

    def put(self, request, oid):
        def action():
            dto = PaymentInfoDTO.model_validate(request.data or {})
            order = providers.get_order_service().mark_paid(
                oid, payment_info=dto.model_dump(exclude_none=True), actor_id=_actor(request)
            )
            return order_body(order)

        return run(action)


class DeliverOrderView(APIView):
    permission_classes = [IsAdminUser]

    def put(self, request, oid):
        return run(lambda: order_body(providers.get_order_service().mark_delivered(oid, actor_id=_actor(request))))


class OrderStatusView(APIView):
    """Generic status change (staff), with optional note and tracking info."""

    permission_classes = [IsAdminUser]

    def put(self, request, oid):
        def action():
            dto = StatusUpdateDTO.model_validate(request.data or {})
            order = providers.get_order_service().transition_status(
                oid,
                dto.status,
                note=dto.note,
                actor_id=_actor(request),
                tracking=dto.tracking.model_dump(exclude_none=True) if dto.tracking else None,
            )
            return order_body(order)

        return run(action)
