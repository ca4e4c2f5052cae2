import logging

import httpx
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger("orders")


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except DatabaseError:
        logger.warning("health check: database unreachable")
        return False


def _catalog_ok() -> bool:
    try:
        resp = httpx.get(f"{settings.CATALOG_BASE_URL}/health", timeout=settings.HTTP_TIMEOUT_SECS)
        return resp.status_code == 200
    except httpx.HTTPError:
        logger.warning("health check: catalog unreachable")
        return False


def health_view(_request):
    """Readiness of the web app: database, plus the catalog when it is remote."""
    components = {"db": {"ok": _db_ok()}}
    if settings.USE_HTTP_ADAPTERS:
        components["catalog"] = {"ok": _catalog_ok()}

    ok = all(c["ok"] for c in components.values())
    return JsonResponse({"ok": ok, "components": components}, status=200 if ok else 503)
