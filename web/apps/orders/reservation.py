"""Stock reservation engine.

Moves inventory between "available" and "committed" as orders are placed
or cancelled. Every stock write goes through the catalog port's atomic
``try_decrement``/``increment``; no other code path touches stock.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Sequence

from .domain import CatalogPort, LineItem, OrderItem, money
from .errors import InsufficientStockError, InvalidQuantityError, NotFoundError

logger = logging.getLogger("orders")


@dataclass(frozen=True)
class Reservation:
    """Outcome of a successful ``reserve`` call."""

    lines: tuple
    subtotal: Decimal


class StockReservationEngine:
    """Reserve and restore stock against a ``CatalogPort``.

    ``reserve`` applies each decrement eagerly and does not undo earlier
    lines when a later one fails. The caller passes a ``committed`` list
    that receives each line as soon as its decrement lands, and restores
    those lines itself before surfacing the error.
    """

    def __init__(self, catalog: CatalogPort, locale: str = "fr"):
        self.catalog = catalog
        self.locale = locale

    def reserve(self, items: Sequence[OrderItem], committed: List[LineItem]) -> Reservation:
        """Decrement stock for every item, in order.

        Args:
            items: Requested products and quantities.
            committed: Receives a ``LineItem`` for every decrement that
                succeeded, including when this method raises.

        Returns:
            Reservation with the snapshot lines and their accumulated subtotal.

        Raises:
            InvalidQuantityError: If any quantity is below 1 (checked before
                anything is decremented).
            NotFoundError: If a product does not exist.
            InsufficientStockError: If a product has fewer units than asked.
        """
        for item in items:
            if item.quantity < 1:
                raise InvalidQuantityError(item.product_id, item.quantity)

        for item in items:
            product = self.catalog.find_product(item.product_id)
            if product is None:
                raise NotFoundError("product", item.product_id)

            if not self.catalog.try_decrement(item.product_id, item.quantity):
                current = self.catalog.find_product(item.product_id)
                available = current.stock if current is not None else 0
                logger.info(
                    "reservation refused",
                    extra={"product_id": item.product_id, "requested": item.quantity, "available": available},
                )
                raise InsufficientStockError(item.product_id, available=available, requested=item.quantity)

            committed.append(
                LineItem(
                    product_id=product.product_id,
                    name=product.display_name(self.locale),
                    price=money(product.price),
                    quantity=item.quantity,
                )
            )

        return Reservation(lines=tuple(committed), subtotal=self.subtotal(committed))

    def restore(self, lines: Iterable[LineItem]) -> None:
        """Put the quantities of ``lines`` back into stock.

        A pure increment per line: it never fails on business grounds and is
        not idempotent, so call it at most once per cancellation or
        compensation. Products that no longer exist are skipped.
        """
        for line in lines:
            if not self.catalog.increment(line.product_id, line.quantity):
                logger.warning(
                    "restore skipped, product missing",
                    extra={"product_id": line.product_id, "quantity": line.quantity},
                )

    @staticmethod
    def subtotal(lines: Iterable[LineItem]) -> Decimal:
        return money(sum((line.subtotal for line in lines), Decimal("0")))
