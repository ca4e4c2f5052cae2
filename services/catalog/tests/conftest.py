# The repository builds its engine at import time from CATALOG_DATABASE_URL, so the
# variable must point at a throwaway SQLite file before ``repo`` is imported.
import os
import tempfile

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="catalog-tests-")
os.environ["CATALOG_DATABASE_URL"] = f"sqlite:///{_DB_DIR}/catalog.db"

from repo import Base, CatalogRepo, engine  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def repo():
    return CatalogRepo()


@pytest.fixture
def make_product(repo):
    def _make(sku="ESP32", stock=5, price="12.50", min_stock=2, tag=None, category="Microcontrôleurs", **kw):
        return repo.create(
            sku=sku,
            name=kw.pop("name", {"fr": "Carte ESP32", "en": "ESP32 board"}),
            description=kw.pop("description", {"fr": "Microcontrôleur WiFi", "en": "WiFi microcontroller"}),
            price=price,
            stock=stock,
            category=category,
            min_stock=min_stock,
            tag=tag,
        )
    return _make
