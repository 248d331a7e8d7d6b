"""Configuration module."""

from src.config.settings import DEFAULT_USER_AGENT, CheckerSettings

__all__ = [
    "DEFAULT_USER_AGENT",
    "CheckerSettings",
]
