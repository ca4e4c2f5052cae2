"""Catalog service API built with FastAPI.

This module exposes endpoints to browse, create, edit and soft-delete
products, availability and per-category statistics, and the two stock
mutations used by the orders service (decrement on reservation,
increment on compensation/cancellation). Validation is performed with
Pydantic models, while persistence is delegated to the SQLAlchemy-backed
repository in ``repo.CatalogRepo``.
"""

import uuid, logging
import os
import time
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional

from sqlalchemy import text
from fastapi import FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field, constr, field_validator
from pythonjsonlogger import jsonlogger

from repo import CATEGORIES, CatalogRepo, ProductTag, SkuExistsError, init_db, engine

app = FastAPI(title="Catalog Service")

Sku = constr(pattern=r"^[A-Z0-9_-]{3,32}$")
# logger JSON
logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


@app.on_event("startup")
def _startup_db():
    # short busy-wait until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class ProductIn(BaseModel):
    """Request body for creating a product.

    Attributes:
        sku: Product SKU matching the allowed pattern.
        name: Locale code to name mapping; must contain at least one entry.
        description: Locale code to description mapping.
        price: Non-negative unit price, rounded to two decimals.
        stock: Initial stock.
        min_stock: Low-stock threshold.
        category: One of the fixed catalog categories.
        tag: Optional merchandising tag.
    """

    sku: Sku
    name: dict[str, str] = Field(min_length=1)
    description: dict[str, str] = Field(default_factory=dict)
    price: Decimal = Field(ge=0)
    stock: int = Field(ge=0, default=0)
    min_stock: int = Field(ge=0, default=5)
    category: str
    tag: Optional[Literal["POPULAR", "NEW", "PROMOTION"]] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if v not in CATEGORIES:
            raise ValueError("Unknown category")
        return v

    @field_validator("price")
    @classmethod
    def round_price(cls, v: Decimal) -> Decimal:
        return v.quantize(Decimal("0.01"))


class ProductPatch(BaseModel):
    """Request body for editing a product; only the fields sent are changed.

    Stock is not part of it and unknown fields are rejected. ``tag: null``
    clears the tag.
    """

    model_config = ConfigDict(extra="forbid")

    name: dict[str, str] = Field(default=None, min_length=1)
    description: dict[str, str] = None
    price: Decimal = Field(default=None, ge=0)
    min_stock: int = Field(default=None, ge=0)
    category: str = None
    tag: Optional[Literal["POPULAR", "NEW", "PROMOTION"]] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if v not in CATEGORIES:
            raise ValueError("Unknown category")
        return v


class ProductOut(BaseModel):
    sku: str
    name: dict[str, str] | str | None
    description: dict[str, str] | str | None
    price: Decimal
    stock: int
    min_stock: int
    category: str
    tag: Optional[ProductTag] = None
    in_stock: bool
    low_stock: bool
    views: int
    sales: int
    is_active: bool


class ProductPage(BaseModel):
    count: int
    page: int
    page_size: int
    results: List[ProductOut]


class Availability(BaseModel):
    sku: str
    available: bool
    stock: int
    requested_quantity: int


class CategoryStats(BaseModel):
    """Product count and price spread of one category."""

    category: str
    count: int
    avg_price: Decimal
    min_price: Decimal
    max_price: Decimal


class CategoryStatsOut(BaseModel):
    categories: List[CategoryStats]


class FeaturedKind(str, Enum):
    POPULAR = "popular"
    NEW = "new"
    PROMOTIONS = "promotions"


FEATURED_TAGS = {
    FeaturedKind.POPULAR: ProductTag.POPULAR,
    FeaturedKind.NEW: ProductTag.NEW,
    FeaturedKind.PROMOTIONS: ProductTag.PROMOTION,
}


class StockChange(BaseModel):
    """Request body for stock mutations.

    Attributes:
        quantity: Positive number of units to move.
    """

    quantity: int = Field(gt=0)


class DecrementResponse(BaseModel):
    """Response body for the decrement endpoint.

    Attributes:
        reserved: Whether the units were taken out of stock.
        stock: Stock left after the decrement.
    """

    reserved: bool
    stock: int


class IncrementResponse(BaseModel):
    stock: int


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.get("/products", response_model=ProductPage)
def list_products(
    category: Optional[str] = None,
    tag: Optional[ProductTag] = None,
    in_stock: bool = False,
    search: Optional[str] = None,
    lang: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
):
    """List active products with optional filters and localisation."""
    rows, total = CatalogRepo().search(
        category=category,
        tag=tag.value if tag else None,
        in_stock=in_stock,
        text=search,
        lang=lang,
        page=page,
        page_size=page_size,
    )
    return ProductPage(count=total, page=page, page_size=page_size, results=rows)


@app.post("/products", response_model=ProductOut, status_code=201)
def create_product(req: ProductIn):
    """Create a product.

    Raises:
        HTTPException: With status 409 when the SKU already exists.
    """
    try:
        return CatalogRepo().create(**req.model_dump())
    except SkuExistsError:
        raise HTTPException(status_code=409, detail="SKU_EXISTS")


@app.get("/products/featured/{kind}", response_model=List[ProductOut])
def featured_products(kind: FeaturedKind, lang: Optional[str] = None, limit: int = Query(10, ge=1, le=100)):
    """Popular (best sellers first), new or promoted products."""
    return CatalogRepo().featured(FEATURED_TAGS[kind].value, limit=limit, lang=lang)


@app.get("/products/stats/categories", response_model=CategoryStatsOut)
def categories_stats():
    return CategoryStatsOut(categories=CatalogRepo().category_stats())


@app.get("/products/{sku}", response_model=ProductOut)
def get_product(sku: str, lang: Optional[str] = None, count_view: bool = False):
    """Return one product, optionally localised to ``lang``."""
    data = CatalogRepo().get(sku, count_view=count_view)
    if data is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    if lang:
        data["name"] = data["name"].get(lang) or next(iter(data["name"].values()), None)
        data["description"] = data["description"].get(lang) or next(iter(data["description"].values()), None)
    return data


@app.patch("/products/{sku}", response_model=ProductOut)
def update_product(sku: str, req: ProductPatch):
    """Edit descriptive fields of a product (admin).

    Stock cannot be set here; a body carrying ``stock`` is rejected with 422.

    Raises:
        HTTPException: 404 when the SKU is unknown or deleted.
    """
    data = CatalogRepo().update(sku, **req.model_dump(exclude_unset=True))
    if data is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    logger.info("product updated", extra={"sku": sku, "fields": sorted(req.model_fields_set)})
    return data


@app.delete("/products/{sku}", status_code=204)
def delete_product(sku: str):
    """Soft-delete a product (admin); its row and counters are kept."""
    if not CatalogRepo().deactivate(sku):
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    logger.info("product deleted", extra={"sku": sku})
    return Response(status_code=204)


@app.get("/products/{sku}/availability", response_model=Availability)
def check_availability(sku: str, quantity: int = Query(1, ge=1)):
    """Tell whether ``quantity`` units are in stock right now, without reserving them."""
    data = CatalogRepo().get(sku)
    if data is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return Availability(
        sku=sku, available=data["stock"] >= quantity, stock=data["stock"], requested_quantity=quantity
    )


@app.post("/products/{sku}/decrement", response_model=DecrementResponse)
def decrement_stock(sku: str, req: StockChange, request: Request):
    """Take units out of stock for a reservation.

    The repository performs a single conditional UPDATE, so this endpoint is
    safe under concurrent callers and never drives stock below zero.

    Raises:
        HTTPException: 404 when the SKU is unknown; 422 with
            ``{"reserved": false, "detail": "INSUFFICIENT_STOCK", "available": n}``
            when stock is lower than the requested quantity.
    """
    repo = CatalogRepo()
    if repo.try_decrement(sku, req.quantity):
        return DecrementResponse(reserved=True, stock=repo.get(sku)["stock"])

    current = repo.get(sku)
    if current is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    logger.info(
        "decrement refused",
        extra={
            "request_id": getattr(request.state, "request_id", "-"),
            "sku": sku,
            "requested": req.quantity,
            "available": current["stock"],
        },
    )
    raise HTTPException(
        status_code=422,
        detail={"reserved": False, "detail": "INSUFFICIENT_STOCK", "available": current["stock"]},
    )


@app.post("/products/{sku}/increment", response_model=IncrementResponse)
def increment_stock(sku: str, req: StockChange):
    """Put units back into stock (cancellation or compensation)."""
    repo = CatalogRepo()
    if not repo.increment(sku, req.quantity):
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return IncrementResponse(stock=repo.get(sku, include_inactive=True)["stock"])


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    # kept on state for local logs
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
