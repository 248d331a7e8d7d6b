"""Validators for check request inputs."""

from src.validators.url_validator import (
    UrlValidationResult,
    is_internal_host,
    is_private_ip,
    validate_url,
)

__all__ = ["UrlValidationResult", "is_internal_host", "is_private_ip", "validate_url"]
