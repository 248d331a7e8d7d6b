"""Global error hierarchy and FastAPI exception handlers.

All checker-specific errors extend CheckerError. The FastAPI exception handlers
catch these errors (plus Pydantic's RequestValidationError and unhandled
exceptions) and return a consistent JSON body:
{ error: { code, message, details?, requestId? } }.

Errors also carry a tri-state ``retryable`` tag. ``None`` means "no opinion"
and lets the retry policy fall back to message heuristics.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Mapping
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class CheckerError(Exception):
    """Base error for all checker-specific errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"
    retryable: bool | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        request_id: str | None = None,
        headers: Mapping[str, str] | None = None,
        **kwargs: object,
    ) -> None:
        self.message = message or self.__class__.message
        self.request_id = request_id
        self.extra_headers = dict(headers or {})
        self.details = kwargs
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        """Serialize to the public error body."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        if self.request_id is not None:
            error["requestId"] = self.request_id
        return {"error": error}

    def headers(self) -> dict[str, str]:
        return dict(self.extra_headers)


class InvalidRequestError(CheckerError):
    """Malformed input or a URL rejected by the validation guard."""

    status_code = 400
    code = "INVALID_REQUEST"
    message = "Invalid request"
    retryable = False


class RateLimitExceededError(CheckerError):
    """Client exceeded the fixed-window request budget."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests. Please try again later."
    retryable = True

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: int = 60,
        limit: int | None = None,
        remaining: int | None = None,
        reset: int | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message, request_id=request_id)
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.reset = reset

    def to_body(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryAfter": self.retry_after,
        }
        if self.limit is not None:
            error["limit"] = self.limit
        if self.remaining is not None:
            error["remaining"] = self.remaining
        if self.reset is not None:
            error["reset"] = self.reset
        if self.request_id is not None:
            error["requestId"] = self.request_id
        return {"error": error}

    def headers(self) -> dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
        if self.remaining is not None:
            headers["X-RateLimit-Remaining"] = str(self.remaining)
        if self.reset is not None:
            headers["X-RateLimit-Reset"] = str(self.reset)
        return headers


class ServiceUnavailableError(CheckerError):
    """A dependency is temporarily unavailable."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable"


class CircuitOpenError(ServiceUnavailableError):
    """Circuit breaker open for a named dependency. Carries the breaker stats."""

    message = "Circuit breaker is open"
    retryable = False

    def __init__(self, name: str, stats: Any = None) -> None:
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name
        self.stats = stats


class QueueTimeoutError(CheckerError):
    """A queued task did not settle within the queue timeout."""

    status_code = 504
    code = "SERVICE_UNAVAILABLE"
    message = "Request queue timeout"
    retryable = True


class QueueClearedError(CheckerError):
    """A pending task was discarded before it started."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    message = "Queue cleared"
    retryable = False


class RemoteProbeError(CheckerError):
    """The remote measurement network rejected or failed a request."""

    status_code = 502
    code = "SERVICE_UNAVAILABLE"
    message = "Remote probe request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream_status: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        if retryable is None and upstream_status is not None:
            retryable = upstream_status >= 500 or upstream_status == 429
        self.retryable = retryable


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _error_response(
    status_code: int,
    body: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a JSON error response."""
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def _checker_error_handler(request: Request, exc: CheckerError) -> JSONResponse:
    """Handle CheckerError subclasses."""
    if exc.request_id is None:
        exc.request_id = _request_id(request)
    if exc.status_code >= 500:
        logger.error(
            "%s: %s",
            exc.code,
            exc.message,
            extra={"request_id": exc.request_id},
        )
    else:
        logger.warning(
            "%s: %s",
            exc.code,
            exc.message,
            extra={"request_id": exc.request_id},
        )
    return _error_response(exc.status_code, exc.to_body(), headers=exc.headers())


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (400)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    error = InvalidRequestError(
        "Invalid request parameters",
        request_id=_request_id(request),
        fields=field_errors,
    )
    return _error_response(error.status_code, error.to_body())


async def unhandled_error_response(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log traceback, return generic 500.

    Registered as the app-level handler and also called by
    ``RequestIdMiddleware`` so the 500 still carries ``X-Request-ID``.
    """
    request_id = _request_id(request)
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
        extra={"request_id": request_id},
    )
    error = CheckerError("An unexpected error occurred", request_id=request_id)
    return _error_response(500, error.to_body())


# ---------------------------------------------------------------------------
# Registration helper
# ---------------------------------------------------------------------------


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(CheckerError, _checker_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_response)  # type: ignore[arg-type]
