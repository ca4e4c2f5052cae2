from datetime import datetime, timedelta, timezone

import pytest
from django.test import Client

from apps.orders.adapters import InMemoryCatalog, InMemoryOrderStore
from apps.orders.domain import ShippingAddress
from apps.orders.numbering import OrderNumberGenerator
from apps.orders.service import OrderService

ADDRESS = {
    "full_name": "Awa Dossou",
    "phone": "+22997000000",
    "street": "Rue 12.145",
    "city": "Cotonou",
}


def seeded_catalog() -> InMemoryCatalog:
    catalog = InMemoryCatalog()
    catalog.add("ESP32", "12.50", 5, name={"fr": "Carte ESP32", "en": "ESP32 board"}, min_stock=2)
    catalog.add("RES-10K", "0.10", 100, name={"fr": "Résistance 10k"}, min_stock=10, tag="POPULAR")
    catalog.add("LED-RED", "0.25", 1, name={"fr": "LED rouge"}, min_stock=0)
    return catalog


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def catalog(settings, monkeypatch):
    """In-process catalog wired into the views for every test."""
    from apps.orders import providers

    settings.USE_HTTP_ADAPTERS = False
    cat = seeded_catalog()
    monkeypatch.setattr(providers, "get_catalog", lambda: cat)
    return cat


@pytest.fixture(autouse=True)
def closed_circuit():
    from apps.orders.http_adapters import _catalog_cb

    _catalog_cb.record_success()
    yield
    _catalog_cb.record_success()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 10, 17, 9, 30, tzinfo=timezone(timedelta(hours=1))))


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def service(catalog, store, clock):
    return OrderService(
        catalog=catalog,
        orders=store,
        numbers=OrderNumberGenerator(store, prefix="EB", clock=clock),
        clock=clock,
    )


@pytest.fixture
def address():
    return ShippingAddress(**ADDRESS)


@pytest.fixture
def order_payload():
    def _payload(*items, **extra):
        body = {
            "items": [{"product_id": sku, "quantity": qty} for sku, qty in (items or [("ESP32", 2)])],
            "shipping_address": dict(ADDRESS),
            "payment_method": "cash_on_delivery",
        }
        body.update(extra)
        return body

    return _payload


@pytest.fixture
def customer(django_user_model):
    return django_user_model.objects.create_user(username="awa", password="pw-awa")


@pytest.fixture
def other_customer(django_user_model):
    return django_user_model.objects.create_user(username="kofi", password="pw-kofi")


@pytest.fixture
def staff(django_user_model):
    return django_user_model.objects.create_user(username="admin", password="pw-admin", is_staff=True)


def _logged_in(user) -> Client:
    c = Client()
    c.force_login(user)
    return c


@pytest.fixture
def customer_client(customer):
    return _logged_in(customer)


@pytest.fixture
def other_client(other_customer):
    return _logged_in(other_customer)


@pytest.fixture
def staff_client(staff):
    return _logged_in(staff)
