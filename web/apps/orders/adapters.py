"""In-process adapters for the orders domain ports.

These implement ``CatalogPort`` and ``OrderStorePort`` in memory, without
any network or database. ``InMemoryCatalog`` backs local development when
the HTTP catalog client is disabled; both are used by the unit tests where
deterministic behavior is useful.
"""

import threading
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from .domain import CatalogPort, Order, OrderStorePort, ProductSnapshot, derive_tag, money
from .errors import DuplicateOrderNumberError


class InMemoryCatalog(CatalogPort):
    """Thread-safe catalog held in a dict.

    ``try_decrement`` checks and writes under one lock, mirroring the
    conditional UPDATE the catalog service performs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._products: Dict[str, dict] = {}

    def add(self, product_id: str, price, stock: int, name: Optional[dict] = None, min_stock: int = 5, tag=None):
        """Register a product (test and dev seeding helper)."""
        with self._lock:
            self._products[product_id] = {
                "name": dict(name or {"fr": product_id}),
                "price": money(price),
                "stock": stock,
                "min_stock": min_stock,
                "tag": derive_tag(stock, min_stock, tag) if stock == 0 else tag,
                "sales": 0,
            }

    def stock_of(self, product_id: str) -> int:
        with self._lock:
            return self._products[product_id]["stock"]

    def tag_of(self, product_id: str) -> Optional[str]:
        with self._lock:
            return self._products[product_id]["tag"]

    def sales_of(self, product_id: str) -> int:
        with self._lock:
            return self._products[product_id]["sales"]

    def find_product(self, product_id: str) -> Optional[ProductSnapshot]:
        with self._lock:
            p = self._products.get(product_id)
            if p is None:
                return None
            return ProductSnapshot(
                product_id=product_id,
                name=dict(p["name"]),
                price=Decimal(p["price"]),
                stock=p["stock"],
                tag=p["tag"],
            )

    def try_decrement(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            p = self._products.get(product_id)
            if p is None or p["stock"] < quantity:
                return False
            p["stock"] -= quantity
            p["sales"] += quantity
            p["tag"] = derive_tag(p["stock"], p["min_stock"], p["tag"])
            return True

    def increment(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            p = self._products.get(product_id)
            if p is None:
                return False
            p["stock"] += quantity
            p["tag"] = derive_tag(p["stock"], p["min_stock"], p["tag"])
            return True


class InMemoryOrderStore(OrderStorePort):
    """Order store held in a dict, with a unique order number and versioning.

    Orders are copied on the way in and out so callers never share state
    with the store, just like rows loaded from a database.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[uuid.UUID, Order] = {}

    def count_created_between(self, start: datetime, end: datetime) -> int:
        with self._lock:
            return sum(1 for o in self._orders.values() if start <= o.created_at < end)

    def insert_unique(self, order: Order) -> Order:
        with self._lock:
            if any(o.order_number == order.order_number for o in self._orders.values()):
                raise DuplicateOrderNumberError(order.order_number)
            order.id = order.id or uuid.uuid4()
            order.version = 1
            self._orders[order.id] = order.copy()
            return order

    def get(self, order_id) -> Optional[Order]:
        with self._lock:
            o = self._orders.get(_as_uuid(order_id))
            return o.copy() if o else None

    def get_by_number(self, order_number: str) -> Optional[Order]:
        with self._lock:
            o = next((o for o in self._orders.values() if o.order_number == order_number), None)
            return o.copy() if o else None

    def save(self, order: Order) -> bool:
        with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.version != order.version:
                return False
            order.version += 1
            self._orders[order.id] = order.copy()
            return True


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
