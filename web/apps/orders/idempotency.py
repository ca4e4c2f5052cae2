"""Idempotent order creation.

A client that retries ``POST /api/orders/`` with the same ``Idempotency-Key``
must not reserve stock twice. The first request claims the key and, once the
order is placed (or refused), stores the response; retries with the same
payload replay it. Keys are scoped per user, so two users cannot collide on
the same client-generated key.
"""

import hashlib
import json
from typing import Optional

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(ValueError):
    """The key was already used with a different payload."""

    def __init__(self):
        super().__init__("IDEMPOTENCY_CONFLICT")


def scoped_key(user_id, key: str) -> str:
    return f"{user_id}:{key}"


def _hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict) -> tuple[bool, IdempotencyKey]:
    """Claim ``key`` for ``payload`` or return the record already holding it.

    The create runs in a nested savepoint so an ``IntegrityError`` only rolls
    back that block; the existing record is then read with
    ``SELECT ... FOR UPDATE``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``; ``existing`` is False
        when this call created the record and must finalize it.

    Raises:
        IdempotencyConflict: If the key exists with a different payload hash.
    """
    h = _hash(payload)
    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id: Optional[str] = None) -> None:
    """Store the final response so retries can short-circuit."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
