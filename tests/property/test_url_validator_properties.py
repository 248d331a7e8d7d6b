"""Property tests for check target validation.

Whatever the input, an accepted URL is http(s), carries no credentials, is
bounded in length, and never points at internal address space.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from hypothesis import given, settings
from hypothesis import strategies as st

from src.validators.url_validator import MAX_URL_LENGTH, is_internal_host, validate_url

labels = st.from_regex(r"[a-z0-9]{1,12}", fullmatch=True).filter(lambda s: s not in ("10", "127"))
tlds = st.sampled_from(["com", "org", "net", "io", "de"])
domains = st.builds(lambda a, b: f"{a}.{b}", labels, tlds)
paths = st.from_regex(r"(/[a-z0-9_-]{0,10}){0,3}", fullmatch=True)
private_ipv4 = st.one_of(
    st.builds(lambda a, b, c: f"10.{a}.{b}.{c}", *[st.integers(0, 255)] * 3),
    st.builds(lambda a, b: f"192.168.{a}.{b}", *[st.integers(0, 255)] * 2),
    st.builds(lambda a, b, c: f"172.{a}.{b}.{c}", st.integers(16, 31), st.integers(0, 255), st.integers(0, 255)),
    st.builds(lambda a, b, c: f"127.{a}.{b}.{c}", *[st.integers(0, 255)] * 3),
    st.builds(lambda a, b: f"169.254.{a}.{b}", *[st.integers(0, 255)] * 2),
)


@settings(max_examples=300)
@given(raw=st.text(max_size=200))
def test_accepted_urls_are_safe(raw: str) -> None:
    result = validate_url(raw)
    if not result.valid:
        assert result.error
        assert result.sanitized is None
        return

    parts = urlsplit(result.sanitized)
    assert parts.scheme in ("http", "https")
    assert parts.username is None and parts.password is None
    assert parts.hostname
    assert not is_internal_host(parts.hostname)
    assert "\0" not in result.sanitized


@settings(max_examples=200)
@given(domain=domains, path=paths, scheme=st.sampled_from(["", "http://", "https://"]))
def test_public_domains_are_accepted(domain: str, path: str, scheme: str) -> None:
    result = validate_url(f"{scheme}{domain}{path}")
    assert result.valid, result.error
    assert result.sanitized.startswith(scheme or "https://")
    assert urlsplit(result.sanitized).hostname == domain


@settings(max_examples=200)
@given(host=private_ipv4, scheme=st.sampled_from(["http://", "https://"]))
def test_private_addresses_are_rejected(host: str, scheme: str) -> None:
    result = validate_url(f"{scheme}{host}/")
    assert result.valid is False
    assert result.error == "INTERNAL_ADDRESS_NOT_ALLOWED"


@settings(max_examples=50)
@given(extra=st.integers(min_value=1, max_value=200))
def test_overlong_input_rejected(extra: int) -> None:
    raw = "https://example.com/" + "a" * (MAX_URL_LENGTH - len("https://example.com/") + extra)
    assert validate_url(raw).error == "URL_TOO_LONG"
