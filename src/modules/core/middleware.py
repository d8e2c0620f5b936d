import time
import uuid
from contextvars import ContextVar
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger()


class CorrelationIdMiddleware:
    """Binds a correlation ID (and the idempotency key) to every log line.

    Reads the X-Request-ID header from the incoming request, generating a
    UUID4 when absent, and echoes it back in the response.  Order creation
    requests also carry their Idempotency-Key into the log context so a
    replayed checkout can be traced to the original one.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = request.META.get("HTTP_X_REQUEST_ID") or str(uuid.uuid4())
        correlation_id_var.set(cid)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)
        idempotency_key = request.META.get("HTTP_IDEMPOTENCY_KEY")
        if idempotency_key:
            structlog.contextvars.bind_contextvars(idempotency_key=idempotency_key)

        path = request.get_full_path()
        logger.info("request_started", method=request.method, path=path)
        start = time.monotonic()

        response = self.get_response(request)

        logger.info(
            "request_finished",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )

        response["X-Request-ID"] = cid
        return response
