"""Unit tests for the error hierarchy and FastAPI exception handlers."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, Query
from fastapi.testclient import TestClient

from src.middleware.error_handler import (
    CheckerError,
    CircuitOpenError,
    InvalidRequestError,
    QueueClearedError,
    QueueTimeoutError,
    RateLimitExceededError,
    RemoteProbeError,
    ServiceUnavailableError,
    register_error_handlers,
)
from src.middleware.request_id import RequestIdMiddleware


# ---------------------------------------------------------------------------
# Test app fixture
# ---------------------------------------------------------------------------


def _make_app() -> FastAPI:
    """Build a minimal FastAPI app with error handlers registered."""
    app = FastAPI()
    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/raise-invalid")
    async def _raise_invalid():
        raise InvalidRequestError("Invalid URL", reason="INVALID_PROTOCOL")

    @app.get("/raise-rate-limit")
    async def _raise_rate_limit():
        raise RateLimitExceededError(retry_after=12, limit=100, remaining=0, reset=1_700_000_060)

    @app.get("/raise-circuit")
    async def _raise_circuit():
        raise CircuitOpenError("remote-probe")

    @app.get("/raise-unhandled")
    async def _raise_unhandled():
        raise RuntimeError("database password=hunter2 leaked")

    @app.get("/typed")
    async def _typed(count: int = Query(...)):
        return {"count": count}

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_make_app(), raise_server_exceptions=False)


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        ("error", "status", "code", "retryable"),
        [
            (CheckerError(), 500, "INTERNAL_ERROR", None),
            (InvalidRequestError(), 400, "INVALID_REQUEST", False),
            (RateLimitExceededError(), 429, "RATE_LIMIT_EXCEEDED", True),
            (ServiceUnavailableError(), 503, "SERVICE_UNAVAILABLE", None),
            (CircuitOpenError("x"), 503, "SERVICE_UNAVAILABLE", False),
            (QueueTimeoutError(), 504, "SERVICE_UNAVAILABLE", True),
            (QueueClearedError(), 503, "SERVICE_UNAVAILABLE", False),
        ],
    )
    def test_status_code_and_tags(self, error, status, code, retryable):
        assert error.status_code == status
        assert error.code == code
        assert error.retryable is retryable

    def test_circuit_open_message_names_breaker(self):
        assert CircuitOpenError("remote-probe").message == "Circuit breaker 'remote-probe' is open"

    def test_remote_probe_error_without_status_has_no_opinion(self):
        assert RemoteProbeError("odd").retryable is None

    def test_body_includes_details_and_request_id(self):
        body = InvalidRequestError("bad", request_id="r-1", reason="URL_REQUIRED").to_body()
        assert body == {
            "error": {
                "code": "INVALID_REQUEST",
                "message": "bad",
                "details": {"reason": "URL_REQUIRED"},
                "requestId": "r-1",
            }
        }

    def test_extra_headers_are_not_details(self):
        error = InvalidRequestError("bad", headers={"Retry-After": "60"}, reason="URL_REQUIRED")
        assert error.headers() == {"Retry-After": "60"}
        assert error.to_body()["error"]["details"] == {"reason": "URL_REQUIRED"}

    def test_body_omits_empty_optional_fields(self):
        assert CheckerError().to_body() == {
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}
        }


class TestHandlers:
    def test_invalid_request(self, client):
        response = client.get("/raise-invalid", headers={"X-Request-ID": "abc-123"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert error["details"] == {"reason": "INVALID_PROTOCOL"}
        assert error["requestId"] == "abc-123"
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_rate_limit_body_and_headers(self, client):
        response = client.get("/raise-rate-limit")
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["retryAfter"] == 12
        assert error["limit"] == 100
        assert error["remaining"] == 0
        assert error["reset"] == 1_700_000_060
        assert response.headers["Retry-After"] == "12"
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_circuit_open_is_503(self, client):
        response = client.get("/raise-circuit")
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_unhandled_exception_hides_internals(self, client):
        response = client.get("/raise-unhandled")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert error["message"] == "An unexpected error occurred"
        assert "hunter2" not in response.text
        assert error["requestId"]

    def test_unhandled_exception_keeps_request_id_header(self, client):
        response = client.get("/raise-unhandled", headers={"X-Request-ID": "req-500"})
        assert response.status_code == 500
        assert response.headers["X-Request-ID"] == "req-500"
        assert response.json()["error"]["requestId"] == "req-500"

    def test_request_validation_maps_to_invalid_request(self, client):
        response = client.get("/typed", params={"count": "many"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert error["details"]["fields"][0]["field"] == "query -> count"
