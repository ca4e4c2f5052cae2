"""API tests for the catalog service endpoints."""

import pytest
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


PRODUCT = {
    "sku": "ESP32",
    "name": {"fr": "Carte ESP32", "en": "ESP32 board"},
    "description": {"fr": "Microcontrôleur WiFi", "en": "WiFi microcontroller"},
    "price": "12.5",
    "stock": 2,
    "min_stock": 1,
    "category": "Microcontrôleurs",
}


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["X-Request-ID"] == "abc-123"


def test_create_and_get_product(client):
    r = client.post("/products", json=PRODUCT)
    assert r.status_code == 201
    assert r.json()["price"] == "12.50"

    r = client.get("/products/ESP32", params={"lang": "en"})
    assert r.status_code == 200
    assert r.json()["name"] == "ESP32 board"


def test_create_duplicate_sku_returns_409(client):
    client.post("/products", json=PRODUCT)
    r = client.post("/products", json=PRODUCT)
    assert r.status_code == 409
    assert r.json()["detail"] == "SKU_EXISTS"


def test_create_rejects_unknown_category(client):
    r = client.post("/products", json={**PRODUCT, "category": "Jouets"})
    assert r.status_code == 422


def test_get_unknown_product_returns_404(client):
    r = client.get("/products/NOPE1")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_view_counter_only_when_asked(client):
    client.post("/products", json=PRODUCT)
    client.get("/products/ESP32")
    client.get("/products/ESP32", params={"count_view": "true"})
    assert client.get("/products/ESP32").json()["views"] == 1


def test_decrement_then_insufficient(client):
    client.post("/products", json=PRODUCT)
    r = client.post("/products/ESP32/decrement", json={"quantity": 2})
    assert r.status_code == 200
    assert r.json() == {"reserved": True, "stock": 0}

    r = client.post("/products/ESP32/decrement", json={"quantity": 1})
    assert r.status_code == 422
    assert r.json()["detail"] == {"reserved": False, "detail": "INSUFFICIENT_STOCK", "available": 0}

    r = client.get("/products/ESP32")
    assert r.json()["tag"] == "OUT_OF_STOCK"


def test_decrement_unknown_returns_404(client):
    r = client.post("/products/NOPE1/decrement", json={"quantity": 1})
    assert r.status_code == 404


def test_decrement_rejects_non_positive_quantity(client):
    client.post("/products", json=PRODUCT)
    r = client.post("/products/ESP32/decrement", json={"quantity": 0})
    assert r.status_code == 422


def test_increment_restores_stock(client):
    client.post("/products", json=PRODUCT)
    client.post("/products/ESP32/decrement", json={"quantity": 2})
    r = client.post("/products/ESP32/increment", json={"quantity": 2})
    assert r.status_code == 200
    assert r.json() == {"stock": 2}
    assert client.get("/products/ESP32").json()["tag"] is None


def test_list_products_paginates(client):
    client.post("/products", json=PRODUCT)
    client.post("/products", json={**PRODUCT, "sku": "DHT22", "category": "Capteurs"})
    r = client.get("/products", params={"page_size": 1})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert len(body["results"]) == 1


def test_patch_edits_descriptive_fields_only(client):
    client.post("/products", json=PRODUCT)
    r = client.patch("/products/ESP32", json={"price": "9.999", "name": {"fr": "ESP32 DevKit"}, "tag": "NEW"})
    assert r.status_code == 200
    body = r.json()
    assert body["price"] == "10.00"
    assert body["name"] == {"fr": "ESP32 DevKit"}
    assert body["tag"] == "NEW"
    assert body["stock"] == 2

    r = client.patch("/products/ESP32", json={"stock": 50})
    assert r.status_code == 422
    assert client.get("/products/ESP32").json()["stock"] == 2


def test_patch_unknown_product_returns_404(client):
    r = client.patch("/products/NOPE1", json={"min_stock": 3})
    assert r.status_code == 404


def test_delete_hides_product_but_accepts_returned_stock(client):
    client.post("/products", json=PRODUCT)
    client.post("/products/ESP32/decrement", json={"quantity": 1})

    assert client.delete("/products/ESP32").status_code == 204
    assert client.delete("/products/ESP32").status_code == 404
    assert client.get("/products/ESP32").status_code == 404
    assert client.get("/products").json()["count"] == 0
    assert client.post("/products/ESP32/decrement", json={"quantity": 1}).status_code == 404

    r = client.post("/products/ESP32/increment", json={"quantity": 1})
    assert r.status_code == 200
    assert r.json() == {"stock": 2}


def test_availability_does_not_reserve(client):
    client.post("/products", json=PRODUCT)

    r = client.get("/products/ESP32/availability", params={"quantity": 2})
    assert r.json() == {"sku": "ESP32", "available": True, "stock": 2, "requested_quantity": 2}
    r = client.get("/products/ESP32/availability", params={"quantity": 3})
    assert r.json()["available"] is False
    assert client.get("/products/ESP32").json()["stock"] == 2

    assert client.get("/products/NOPE1/availability").status_code == 404


def test_category_stats(client):
    client.post("/products", json=PRODUCT)
    client.post("/products", json={**PRODUCT, "sku": "ESP8266", "price": "4.50"})
    client.post("/products", json={**PRODUCT, "sku": "DHT22", "price": "3", "category": "Capteurs"})

    r = client.get("/products/stats/categories")
    assert r.status_code == 200
    assert r.json()["categories"] == [
        {"category": "Microcontrôleurs", "count": 2, "avg_price": "8.50", "min_price": "4.50", "max_price": "12.50"},
        {"category": "Capteurs", "count": 1, "avg_price": "3.00", "min_price": "3.00", "max_price": "3.00"},
    ]


def test_featured_popular_sorted_by_sales(client):
    client.post("/products", json={**PRODUCT, "stock": 20, "tag": "POPULAR"})
    client.post("/products", json={**PRODUCT, "sku": "ESP8266", "stock": 20, "tag": "POPULAR"})
    client.post("/products", json={**PRODUCT, "sku": "DHT22", "stock": 20, "tag": "NEW"})
    client.post("/products/ESP8266/decrement", json={"quantity": 3})

    r = client.get("/products/featured/popular", params={"lang": "en"})
    assert r.status_code == 200
    assert [p["sku"] for p in r.json()] == ["ESP8266", "ESP32"]
    assert r.json()[0]["name"] == "ESP32 board"
    assert [p["sku"] for p in client.get("/products/featured/new").json()] == ["DHT22"]
    assert client.get("/products/featured/bestsellers").status_code == 422
