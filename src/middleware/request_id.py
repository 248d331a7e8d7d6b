"""Request ID middleware.

Generates (or propagates) a UUID request ID for every incoming request,
stores it in ``request.state.request_id``, logs the request lifecycle with
that ID, and adds an ``X-Request-ID`` response header.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from src.middleware.error_handler import unhandled_error_response

logger = logging.getLogger(__name__)

# Caller-supplied IDs are echoed back in headers and logs, so keep them tame.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def new_request_id() -> str:
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that assigns a unique request ID to each request.

    If the incoming request already carries a well-formed ``X-Request-ID``
    header the provided value is reused; otherwise a new UUID4 is generated.

    The ID is stored in ``request.state.request_id`` and returned in the
    ``X-Request-ID`` response header.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        provided = request.headers.get("x-request-id")
        if provided and _SAFE_REQUEST_ID.match(provided):
            request_id = provided
        else:
            request_id = new_request_id()
        request.state.request_id = request_id

        start = time.monotonic()
        logger.info(
            "Incoming request %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )

        try:
            response: Response = await call_next(request)
        except Exception as exc:
            response = await unhandled_error_response(request, exc)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed %s %s",
            request.method,
            request.url.path,
            extra={
                "request_id": request_id,
                "status": response.status_code,
                "latency_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return response
