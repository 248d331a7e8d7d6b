"""Middleware package: error hierarchy and request ID."""

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
from src.middleware.request_id import RequestIdMiddleware, new_request_id

__all__ = [
    "CheckerError",
    "CircuitOpenError",
    "InvalidRequestError",
    "QueueClearedError",
    "QueueTimeoutError",
    "RateLimitExceededError",
    "RemoteProbeError",
    "RequestIdMiddleware",
    "ServiceUnavailableError",
    "new_request_id",
    "register_error_handlers",
]
