"""Order number generation.

Numbers look like ``EB2410170004``: a prefix, the creation day as
``YYMMDD`` and a four-digit sequence counting the orders created that
local day. The sequence comes from the order store, not process memory, so
it stays correct across workers; the unique index on the order number
catches racing creations and the generator retries with a fresh count.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from .domain import Order, OrderStorePort
from .errors import DuplicateOrderNumberError, IdentifierExhaustedError

logger = logging.getLogger("orders")

MAX_SEQUENCE = 9999


def day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the calendar day containing ``moment``."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def format_order_number(prefix: str, day: datetime, sequence: int) -> str:
    return f"{prefix}{day:%y%m%d}{sequence:04d}"


class OrderNumberGenerator:
    """Assign date-scoped order numbers with a bounded collision retry.

    Args:
        store: Order store used for the same-day count and the unique insert.
        prefix: Leading letters of every number.
        max_attempts: Inserts tried before giving up.
        clock: Returns the current local time (timezone-aware).
    """

    def __init__(
        self,
        store: OrderStorePort,
        prefix: str = "EB",
        max_attempts: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ):
        self.store = store
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.clock = clock

    def next_sequence(self, now: datetime) -> int:
        start, end = day_bounds(now)
        return self.store.count_created_between(start, end) + 1

    def generate(self, now: datetime | None = None) -> str:
        now = now or self.clock()
        sequence = self.next_sequence(now)
        if sequence > MAX_SEQUENCE:
            raise IdentifierExhaustedError(0)
        return format_order_number(self.prefix, now, sequence)

    def insert(self, order: Order) -> Order:
        """Number ``order`` and persist it through ``store.insert_unique``.

        ``order.created_at`` anchors the day; it is set from the clock when
        missing. On a duplicate number the count is re-read; the next
        attempt never reuses a sequence already tried.

        Raises:
            IdentifierExhaustedError: After ``max_attempts`` collisions, or
                once the day has used all ``MAX_SEQUENCE`` numbers.
        """
        if order.created_at is None:
            order.created_at = self.clock()
        last_tried = 0
        for attempt in range(1, self.max_attempts + 1):
            sequence = max(self.next_sequence(order.created_at), last_tried + 1)
            if sequence > MAX_SEQUENCE:
                logger.error("daily order numbers used up", extra={"day": f"{order.created_at:%y%m%d}"})
                break
            order.order_number = format_order_number(self.prefix, order.created_at, sequence)
            try:
                return self.store.insert_unique(order)
            except DuplicateOrderNumberError:
                logger.warning(
                    "order number collision",
                    extra={"order_number": order.order_number, "attempt": attempt},
                )
                last_tried = sequence
        order.order_number = None
        raise IdentifierExhaustedError(self.max_attempts)
