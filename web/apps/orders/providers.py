"""Service provider helpers for wiring OrderService with ports.

``get_order_service`` returns an ``OrderService`` backed by the Django
``OrderRepository`` and by the catalog returned from ``get_catalog``: the
HTTP catalog client when ``settings.USE_HTTP_ADAPTERS`` is truthy, or a
process-wide in-memory catalog for local development otherwise.
"""

from django.conf import settings
from django.utils import timezone

from .adapters import InMemoryCatalog
from .domain import CatalogPort
from .http_adapters import HttpCatalogClient
from .numbering import OrderNumberGenerator
from .repository import OrderRepository
from .service import OrderService

_local_catalog = InMemoryCatalog()


def get_catalog() -> CatalogPort:
    """Return the catalog port selected by settings."""
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpCatalogClient()
    return _local_catalog


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Order numbers and timestamps use ``timezone.localtime`` so the day in the
    number follows ``settings.TIME_ZONE``.

    Returns:
        OrderService: A service instance with appropriate ports.
    """
    repo = OrderRepository()
    numbers = OrderNumberGenerator(
        repo,
        prefix=settings.ORDER_NUMBER_PREFIX,
        max_attempts=settings.ORDER_NUMBER_MAX_ATTEMPTS,
        clock=timezone.localtime,
    )
    return OrderService(
        catalog=get_catalog(),
        orders=repo,
        numbers=numbers,
        strict_transitions=settings.ORDER_STRICT_TRANSITIONS,
        clock=timezone.localtime,
        locale=settings.ORDER_DEFAULT_LOCALE,
    )
