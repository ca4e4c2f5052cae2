"""Gateway middleware: request correlation, access logging and body limits.

``RequestIdMiddleware`` gives every request an identifier, reused from the
incoming ``X-Request-ID`` header or generated as a UUIDv4. The id is stored
on ``request.request_id`` and in ``REQUEST_ID_CTX`` so log records and the
catalog HTTP client can pick it up without passing it around, and it is
echoed on the response. One ``request handled`` line is logged per request.

``ApiSizeLimitMiddleware`` rejects API bodies larger than
``settings.API_MAX_BYTES`` before any view parses them.
"""

import contextvars
import logging
import time
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger("orders.access")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"  # as found in request.META
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._rid_token = REQUEST_ID_CTX.set(rid)
        request._started_at = time.monotonic()

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid

        started = getattr(request, "_started_at", None)
        if started is not None:
            logger.info(
                "request handled",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )

        token = getattr(request, "_rid_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE", "max_bytes": limit}, status=413)
        return None
