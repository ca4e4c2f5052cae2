"""Unit tests for the HTTP catalog client.

``httpx.Client.request`` is monkeypatched so the client's status mapping,
retry policy, circuit breaker and header propagation can be checked without
a running catalog service.
"""

from decimal import Decimal

import httpx
import pytest

from apps.orders.errors import NotFoundError
from apps.orders import http_adapters
from apps.orders.http_adapters import CircuitBreaker, CircuitOpenError, HttpCatalogClient, _catalog_cb
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._json


PRODUCT = {"sku": "ESP32", "name": {"fr": "Carte ESP32"}, "price": "12.50", "stock": 4, "tag": None}


@pytest.fixture
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 2
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


@pytest.fixture
def scripted(monkeypatch):
    """Replay ``outcomes`` (responses or exceptions) and record each call."""
    calls = []

    def install(*outcomes):
        queue = list(outcomes)

        def fake_request(self, method, url, json=None, headers=None, **kw):
            calls.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
        return calls

    return install


def test_find_product_maps_snapshot(scripted):
    calls = scripted(DummyResp(200, PRODUCT))
    p = HttpCatalogClient(base_url="http://catalog:9001").find_product("ESP32")

    assert p.product_id == "ESP32"
    assert p.price == Decimal("12.50") and p.stock == 4
    assert p.display_name("fr") == "Carte ESP32"
    assert calls[0]["method"] == "GET"
    assert calls[0]["url"] == "http://catalog:9001/products/ESP32"


def test_find_product_404_is_none(scripted):
    scripted(DummyResp(404, {"detail": "NOT_FOUND"}))
    assert HttpCatalogClient().find_product("NOPE-1") is None


def test_try_decrement_status_mapping(scripted):
    calls = scripted(DummyResp(200, {"reserved": True, "stock": 2}))
    assert HttpCatalogClient().try_decrement("ESP32", 2) is True
    assert calls[0]["json"] == {"quantity": 2}

    scripted(DummyResp(422, {"detail": {"reserved": False, "detail": "INSUFFICIENT_STOCK", "available": 1}}))
    assert HttpCatalogClient().try_decrement("ESP32", 5) is False

    scripted(DummyResp(404))
    with pytest.raises(NotFoundError):
        HttpCatalogClient().try_decrement("NOPE-1", 1)


def test_increment_missing_product_is_false(scripted):
    scripted(DummyResp(404))
    assert HttpCatalogClient().increment("NOPE-1", 1) is False


def test_request_id_is_propagated(scripted):
    calls = scripted(DummyResp(200, PRODUCT))
    token = REQUEST_ID_CTX.set("rid-abc")
    try:
        HttpCatalogClient().find_product("ESP32")
    finally:
        REQUEST_ID_CTX.reset(token)

    assert calls[0]["headers"]["X-Request-ID"] == "rid-abc"
    assert calls[0]["headers"]["X-Retry-Count"] == "0"


def test_read_retries_on_5xx(scripted, fast_retries):
    calls = scripted(DummyResp(500), DummyResp(200, PRODUCT))
    assert HttpCatalogClient().find_product("ESP32").stock == 4
    assert len(calls) == 2
    assert calls[1]["headers"]["X-Retry-Count"] == "1"


def test_read_gives_up_after_max_retries(scripted, fast_retries):
    calls = scripted(httpx.ReadTimeout("slow"))
    with pytest.raises(httpx.ReadTimeout):
        HttpCatalogClient().find_product("ESP32")
    assert len(calls) == 3


def test_decrement_not_retried_on_5xx(scripted, fast_retries):
    calls = scripted(DummyResp(500))
    with pytest.raises(httpx.HTTPStatusError):
        HttpCatalogClient().try_decrement("ESP32", 1)
    assert len(calls) == 1


def test_decrement_not_retried_after_read_timeout(scripted, fast_retries):
    calls = scripted(httpx.ReadTimeout("slow"))
    with pytest.raises(httpx.ReadTimeout):
        HttpCatalogClient().try_decrement("ESP32", 1)
    assert len(calls) == 1


def test_decrement_retried_when_connection_failed(scripted, fast_retries):
    calls = scripted(httpx.ConnectError("refused"), DummyResp(200, {"reserved": True, "stock": 3}))
    assert HttpCatalogClient().try_decrement("ESP32", 1) is True
    assert len(calls) == 2


def test_open_circuit_short_circuits_calls(scripted):
    calls = scripted(DummyResp(200, PRODUCT))
    for _ in range(_catalog_cb.fail_threshold):
        _catalog_cb.record_failure()

    with pytest.raises(CircuitOpenError):
        HttpCatalogClient().find_product("ESP32")
    assert calls == []


def test_circuit_breaker_half_open_probe():
    cb = CircuitBreaker("test", fail_threshold=2, reset_timeout=0.0)
    cb.record_failure()
    assert cb.state == "CLOSED"
    cb.record_failure()

    # reset_timeout elapsed: one probe allowed, a second one is refused
    assert cb.allow() == "HALF_OPEN"
    with pytest.raises(CircuitOpenError):
        cb.allow()

    cb.record_success()
    assert cb.state == "CLOSED"


def test_closed_call_does_not_free_probe_slot(monkeypatch):
    cb = CircuitBreaker("catalog", fail_threshold=2, reset_timeout=0.0)
    monkeypatch.setattr(http_adapters, "_catalog_cb", cb)

    def trip_then_crash(self, method, url, **kw):
        # meanwhile the circuit opens and another caller takes the probe
        cb.record_failure()
        cb.record_failure()
        assert cb.allow() == "HALF_OPEN"
        raise ValueError("bad payload")

    monkeypatch.setattr(httpx.Client, "request", trip_then_crash, raising=True)
    with pytest.raises(ValueError):
        HttpCatalogClient().find_product("ESP32")

    with pytest.raises(CircuitOpenError):
        cb.allow()


@pytest.mark.django_db
def test_open_circuit_maps_to_503(customer_client, order_payload, settings, monkeypatch):
    from apps.orders import providers

    settings.USE_HTTP_ADAPTERS = True
    monkeypatch.setattr(providers, "get_catalog", HttpCatalogClient)
    for _ in range(_catalog_cb.fail_threshold):
        _catalog_cb.record_failure()

    r = customer_client.post("/api/orders/", data=order_payload(), content_type="application/json")
    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"
