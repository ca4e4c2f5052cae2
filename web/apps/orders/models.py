import uuid
from django.db import models
from django.utils import timezone


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-readable number, e.g. EB2410170004; the unique index is the
    # backstop for racing creations on the same day
    order_number = models.CharField(max_length=32, unique=True, editable=False)

    # Non-owning reference to the user
    user_id = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentMethod(models.TextChoices):
        CASH_ON_DELIVERY = "cash_on_delivery"
        MOBILE_MONEY = "mobile_money"
        BANK_TRANSFER = "bank_transfer"
        CARD = "card"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    items = models.JSONField(default=list)
    shipping_address = models.JSONField(default=dict)
    payment_method = models.CharField(max_length=32, choices=PaymentMethod.choices)
    payment_details = models.JSONField(default=dict)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    status_history = models.JSONField(default=list)
    tracking = models.JSONField(default=dict)
    customer_note = models.TextField(null=True, blank=True)

    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    is_delivered = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    # Set from the domain clock so the same-day count and the number agree
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user_id", "-created_at"], name="orders_user_created_idx"),
            models.Index(fields=["status", "-created_at"], name="orders_status_created_idx"),
        ]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
