"""URL Resolver - Combines a base address with a per-call endpoint."""

from __future__ import annotations

import re
from typing import Any

import httpx

from flux_http.errors import NetworkError, RequestValidationError

_ABSOLUTE_SCHEMES = ("http://", "https://")
_DISPATCHABLE_SCHEMES = {"http", "https"}


def _percent_encode_control_chars(url: str) -> str:
    """Percent-encode ASCII control characters (0x00-0x1F, 0x7F).

    httpx rejects these in URLs with InvalidURL. Everything else, including
    spaces and non-ASCII text, is left for httpx to encode.
    """
    return re.sub(r'[\x00-\x1f\x7f]', lambda m: f'%{ord(m.group()):02X}', url)


def validate_endpoint(endpoint: Any) -> str:
    """Raise RequestValidationError unless endpoint is a non-empty string."""
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise RequestValidationError(f"Endpoint must be a non-empty string, got {endpoint!r}")
    return endpoint


def join_url(base_url: str, endpoint: Any) -> str:
    """Join base_url and endpoint without validating the result.

    Absolute http(s) endpoints override the base entirely. Otherwise exactly
    one trailing slash is stripped from the base and exactly one leading
    slash is ensured on the endpoint.

    Raises:
        RequestValidationError: If endpoint is empty or not a string.
    """
    validate_endpoint(endpoint)

    if endpoint.lower().startswith(_ABSOLUTE_SCHEMES):
        return endpoint

    base = base_url or ""
    if base.endswith("/"):
        base = base[:-1]
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    return f"{base}{path}"


def resolve_url(base_url: str, endpoint: Any) -> str:
    """Resolve an endpoint against base_url into an absolute, dispatchable URL.

    Raises:
        RequestValidationError: If endpoint is empty or not a string.
        NetworkError: If the result is not a syntactically valid absolute
            http(s) URL.
    """
    url = _percent_encode_control_chars(join_url(base_url, endpoint))

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise NetworkError(f"Invalid URL '{url}': {e}") from e

    if parsed.scheme not in _DISPATCHABLE_SCHEMES or not parsed.host:
        raise NetworkError(f"Invalid URL '{url}': expected an absolute http(s) URL")

    return url
