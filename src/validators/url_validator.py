"""URL guard for check targets: normalizes input and prevents SSRF."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

MAX_URL_LENGTH = 2048

_ALLOWED_SCHEMES = {"http", "https"}

_HAS_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z\d+\-.]*://")

# Hosts that must never be probed from inside our network
_INTERNAL_PATTERNS = [
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),  # link-local, cloud metadata
    re.compile(r"^0\.0\.0\.0$"),
    re.compile(r"^localhost$"),
    re.compile(r"^::1$"),
    re.compile(r"^fe80:"),
    re.compile(r"^fc00:", re.IGNORECASE),
    re.compile(r"^fd[0-9a-f]{2}:", re.IGNORECASE),
]

# IP literals are also checked by network, which catches spellings the
# patterns miss (IPv4-mapped IPv6, expanded zeros)
_PRIVATE_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_DANGEROUS_PATTERNS = [
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
]

_IPV4 = re.compile(
    r"^(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}$"
)
_IPV6 = re.compile(r"^[0-9a-f:]+$", re.IGNORECASE)
_DOMAIN = re.compile(r"^(?=.{1,253}$)(?!-)([a-z0-9-]{1,63}\.)+[a-z]{2,63}$", re.IGNORECASE)


@dataclass(frozen=True)
class UrlValidationResult:
    valid: bool
    sanitized: str | None = None
    error: str | None = None


def _invalid(error: str) -> UrlValidationResult:
    return UrlValidationResult(valid=False, error=error)


def is_internal_host(hostname: str) -> bool:
    """Check if a hostname points at loopback, private or link-local space."""
    host = hostname.lower().strip("[]")
    if any(pattern.search(host) for pattern in _INTERNAL_PATTERNS):
        return True
    return is_private_ip(host)


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP literal falls in a private, loopback or link-local range."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return any(addr in network for network in _PRIVATE_NETWORKS)


def _is_valid_host(hostname: str) -> bool:
    if _IPV4.match(hostname):
        return True
    if ":" in hostname and _IPV6.match(hostname):
        return True
    return bool(_DOMAIN.match(hostname))


def _ascii_host(hostname: str) -> str | None:
    if hostname.isascii():
        return hostname
    try:
        return hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return None


def validate_url(raw: str | None) -> UrlValidationResult:
    """Validate and normalize a user-supplied check target.

    Scheme-less input is treated as https. Returns the origin for bare root
    URLs (``https://example.com/`` -> ``https://example.com``), the full
    normalized URL otherwise.
    """
    value = (raw or "").strip()
    if len(value) > MAX_URL_LENGTH:
        return _invalid("URL_TOO_LONG")
    value = value.replace("\0", "")
    if not value:
        return _invalid("URL_REQUIRED")
    if any(pattern.search(value) for pattern in _DANGEROUS_PATTERNS):
        return _invalid("INVALID_URL_FORMAT")

    candidate = value if _HAS_SCHEME.match(value) else f"https://{value}"

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return _invalid("INVALID_URL_FORMAT")

    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        return _invalid("INVALID_PROTOCOL")

    if parts.username or parts.password:
        return _invalid("URL_CONTAINS_CREDENTIALS")

    if not parts.hostname:
        return _invalid("INVALID_HOSTNAME")

    hostname = _ascii_host(parts.hostname.lower())
    if hostname is None:
        return _invalid("INVALID_HOSTNAME")

    if is_internal_host(hostname):
        return _invalid("INTERNAL_ADDRESS_NOT_ALLOWED")

    if not _is_valid_host(hostname):
        return _invalid("INVALID_HOSTNAME")

    netloc = f"[{hostname}]" if ":" in hostname else hostname
    default_port = 80 if scheme == "http" else 443
    if port is not None and port != default_port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if path == "/" and not parts.query and not parts.fragment:
        return UrlValidationResult(valid=True, sanitized=f"{scheme}://{netloc}")

    return UrlValidationResult(
        valid=True,
        sanitized=urlunsplit((scheme, netloc, path, parts.query, parts.fragment)),
    )
