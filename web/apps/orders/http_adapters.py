"""HTTP adapter for the catalog service.

``HttpCatalogClient`` implements ``CatalogPort`` over ``httpx`` and adds:

- request correlation: ``X-Request-ID`` is forwarded from the ContextVar set
  by the gateway middleware;
- a circuit breaker shared by all catalog calls, so an unhealthy catalog is
  not hammered; after ``reset_timeout`` one probe call is let through;
- retries with capped exponential backoff. Reads retry on transport errors
  and 5xx. Stock mutations are not idempotent and only retry when the
  connection could not be established, i.e. the request never left.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import CatalogPort, ProductSnapshot
from .errors import NotFoundError

logger = logging.getLogger("orders.http")

CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a dependency whose circuit is open."""


class CircuitBreaker:
    """Thread-safe breaker for one dependency.

    ``fail_threshold`` consecutive failures open the circuit. Once
    ``reset_timeout`` seconds have passed it turns half-open and admits a
    single probe: success closes it, failure opens it again.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._state = CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._probing = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == OPEN and time.monotonic() - self._opened_at >= self.reset_timeout:
                self._state = HALF_OPEN
                self._probing = False
            return self._state

    def allow(self) -> str:
        """Admit a call and return the state it was admitted in.

        Raises:
            CircuitOpenError: While open, or while a half-open probe runs.
        """
        with self._lock:
            current = self.state
            if current == OPEN:
                raise CircuitOpenError(f"{self.name}: circuit open")
            if current == HALF_OPEN:
                if self._probing:
                    raise CircuitOpenError(f"{self.name}: probe in flight")
                self._probing = True
            return current

    def record_success(self) -> None:
        with self._lock:
            self._state = CLOSED
            self._failures = 0
            self._probing = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._probing = False
            if self._state == HALF_OPEN or (self._state == CLOSED and self._failures >= self.fail_threshold):
                self._state = OPEN
                self._opened_at = time.monotonic()
                logger.warning("circuit opened", extra={"service": self.name, "failures": self._failures})

    def release(self) -> None:
        """End a half-open probe that neither succeeded nor failed."""
        with self._lock:
            self._probing = False


# Failures of the catalog dependency itself, as opposed to business refusals
UPSTREAM_ERRORS = (httpx.HTTPError, CircuitOpenError)

_catalog_cb = CircuitBreaker(
    "catalog",
    fail_threshold=getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    reset_timeout=getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def _backoff(attempt: int) -> float:
    base = getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15)
    return min(base * 2 ** (attempt - 1), getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5))


def _retryable(resp: Optional[httpx.Response], exc: Optional[Exception], idempotent: bool) -> bool:
    if exc is not None:
        return idempotent or isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
    return idempotent and resp is not None and resp.status_code >= 500


class HttpCatalogClient(CatalogPort):
    """Catalog client mapping HTTP statuses onto ``CatalogPort`` results.

    Business outcomes, which never count against the circuit:

    - ``GET /products/{sku}``: 404 → ``None``
    - ``POST .../decrement``: 422 → ``False``; 404 → ``NotFoundError``
    - ``POST .../increment``: 404 → ``False``
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def find_product(self, product_id: str) -> Optional[ProductSnapshot]:
        resp = self._send("GET", f"/products/{product_id}", expected=(200, 404), idempotent=True)
        if resp.status_code == 404:
            return None
        data = resp.json()
        return ProductSnapshot(
            product_id=data["sku"],
            name=data.get("name") or {},
            price=Decimal(str(data["price"])),
            stock=int(data["stock"]),
            tag=data.get("tag"),
        )

    def try_decrement(self, product_id: str, quantity: int) -> bool:
        resp = self._send(
            "POST", f"/products/{product_id}/decrement", body={"quantity": quantity}, expected=(200, 404, 422)
        )
        if resp.status_code == 404:
            raise NotFoundError("product", product_id)
        return resp.status_code == 200 and bool(resp.json().get("reserved"))

    def increment(self, product_id: str, quantity: int) -> bool:
        resp = self._send("POST", f"/products/{product_id}/increment", body={"quantity": quantity}, expected=(200, 404))
        return resp.status_code == 200

    def _send(self, method: str, path: str, expected: tuple, idempotent: bool = False, body=None) -> httpx.Response:
        """One logical call: circuit check, then up to ``HTTP_RETRY_MAX`` retries.

        Returns:
            httpx.Response: A response whose status is in ``expected``.

        Raises:
            CircuitOpenError: If the circuit does not admit the call.
            httpx.RequestError: Transport failure that was not (or no longer) retried.
            httpx.HTTPStatusError: Any other status.
        """
        max_retries = getattr(settings, "HTTP_RETRY_MAX", 3)
        state = _catalog_cb.allow()
        headers = {"X-Circuit-State": state}
        rid = REQUEST_ID_CTX.get()
        if rid and rid != "-":
            headers["X-Request-ID"] = rid

        try:
            with httpx.Client(timeout=self.timeout) as client:
                for attempt in range(max_retries + 1):
                    headers["X-Retry-Count"] = str(attempt)
                    resp, exc = None, None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=body, headers=headers)
                    except httpx.RequestError as e:
                        exc = e
                    else:
                        if resp.status_code in expected:
                            _catalog_cb.record_success()
                            return resp

                    if attempt == max_retries or not _retryable(resp, exc, idempotent):
                        _catalog_cb.record_failure()
                        if exc is not None:
                            raise exc
                        resp.raise_for_status()
                        # a 1xx/3xx outside ``expected``
                        raise httpx.HTTPStatusError(
                            f"unexpected status {resp.status_code}", request=resp.request, response=resp
                        )

                    logger.info(
                        "retrying catalog call",
                        extra={"path": path, "attempt": attempt + 1, "status": getattr(resp, "status_code", None)},
                    )
                    time.sleep(_backoff(attempt + 1))
        finally:
            # only the probe owns the half-open slot
            if state == HALF_OPEN:
                _catalog_cb.release()
