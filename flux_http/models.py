"""Internal data models for flux-http.

All models use Pydantic v2. Records handed across component boundaries
(RequestSpec, ClientConfig, TimingRecord) are frozen so no component can
mutate state another component is reading.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flux_http.errors import RequestValidationError

CLIENT_VERSION = "1.1.0"

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_MAX_RESPONSE_BYTES = 50 * 1024 * 1024
DEFAULT_USER_AGENT = f"flux-http/{CLIENT_VERSION}"


class HttpMethod(str, Enum):
    """Methods the client dispatches."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class EncodingMode(str, Enum):
    """How an outbound payload is serialized."""

    JSON = "json"
    FORM = "form"
    MULTIPART = "multipart"
    TEXT = "text"
    BINARY = "binary"
    NONE = "none"


def merge_headers(base: Mapping[str, str], overrides: Mapping[str, str]) -> dict[str, str]:
    """Merge header maps key-wise, ignoring case. Override keys keep their case.

    Raises:
        RequestValidationError: If overrides is not a mapping of str to str.
    """
    if not isinstance(overrides, Mapping):
        raise RequestValidationError(f"Headers must be a mapping, got {type(overrides).__name__}")
    merged = dict(base)
    for key, value in overrides.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise RequestValidationError(f"Header {key!r} must map a string name to a string value, got {value!r}")
        for existing in [k for k in merged if k.lower() == key.lower()]:
            del merged[existing]
        merged[key] = value
    return merged


# =============================================================================
# Configuration
# =============================================================================


class ClientConfig(BaseModel):
    """Persistent default configuration, read once at the start of every call.

    Snapshot operations (with_*) return a new instance; the original is
    never modified.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = Field(default="", description="Prefix for relative endpoints")
    headers: dict[str, str] = Field(
        default_factory=lambda: {"User-Agent": DEFAULT_USER_AGENT},
        description="Headers sent with every request",
    )
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, description="Hard ceiling per exchange")
    encoding: EncodingMode = Field(default=EncodingMode.JSON, description="Default payload encoding")
    raw_response: bool = Field(default=False, description="Return RawResponse instead of ParsedResult")
    max_response_bytes: int = Field(
        default=DEFAULT_MAX_RESPONSE_BYTES, gt=0, description="Response body size ceiling"
    )

    def with_headers(self, headers: Mapping[str, str]) -> ClientConfig:
        return self.model_copy(update={"headers": merge_headers(self.headers, headers)})

    def with_auth_token(self, token: str, token_type: str = "Bearer") -> ClientConfig:
        return self.with_headers({"Authorization": f"{token_type} {token}"})

    def without_auth_token(self) -> ClientConfig:
        headers = {k: v for k, v in self.headers.items() if k.lower() != "authorization"}
        return self.model_copy(update={"headers": headers})

    def with_base_url(self, base_url: str) -> ClientConfig:
        if not isinstance(base_url, str):
            raise RequestValidationError(f"Base URL must be a string, got {type(base_url).__name__}")
        return self.model_copy(update={"base_url": base_url})


# =============================================================================
# Request / Response Models
# =============================================================================


class RequestSpec(BaseModel):
    """One fully resolved request, ready for the transport executor."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: HttpMethod = Field(description="HTTP method")
    url: str = Field(description="Absolute URL to dispatch")
    headers: dict[str, str] = Field(default_factory=dict, description="Merged request headers")
    timeout_ms: int = Field(gt=0, description="Hard ceiling from connect to body completion")
    body: bytes | None = Field(default=None, description="Encoded body bytes")
    encoding: EncodingMode = Field(default=EncodingMode.JSON, description="Encoding the body was built with")
    raw_response: bool = Field(default=False, description="Skip body decoding")
    max_response_bytes: int = Field(default=DEFAULT_MAX_RESPONSE_BYTES, gt=0)


class TimingRecord(BaseModel):
    """Phase timings for one exchange.

    start is a perf_counter_ns timestamp. The other fields are milliseconds
    since start, None when unset or not applicable (tls_handshake on http).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    start: int = Field(description="Monotonic start timestamp in nanoseconds")
    tls_handshake: float | None = Field(default=None, description="Secure channel established")
    ttfb: float | None = Field(default=None, description="First response byte received")
    total: float | None = Field(default=None, description="Response body fully drained")

    @model_validator(mode="after")
    def check_ordering(self) -> Self:
        previous = 0.0
        for name in ("tls_handshake", "ttfb", "total"):
            value = getattr(self, name)
            if value is None:
                continue
            if value < previous:
                raise ValueError(f"{name} ({value}) precedes an earlier phase ({previous})")
            previous = value
        return self


class RawResponse(BaseModel):
    """Transport-level response: undecoded body plus timings.

    Header keys are lowercase. Header values are lists for repeated headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    reason_phrase: str = Field(default="", description="Status reason phrase")
    url: str = Field(default="", description="URL the request was sent to")
    headers: dict[str, list[str]] = Field(default_factory=dict)
    body: bytes = Field(default=b"", description="Accumulated body bytes")
    timings: TimingRecord

    def header(self, name: str) -> str | None:
        """First value of a header, or None."""
        values = self.headers.get(name.lower())
        return values[0] if values else None


class ParsedResult(BaseModel):
    """Decoded outcome of a successful call."""

    model_config = ConfigDict(extra="forbid")

    data: Any = Field(description="Decoded body (dict/list/str/bytes/...)")
    status_code: int
    headers: dict[str, list[str]] = Field(default_factory=dict)
    timings: TimingRecord


class MultipartFile(BaseModel):
    """A file part inside a multipart payload."""

    model_config = ConfigDict(extra="forbid")

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class RequestOutcome(BaseModel):
    """Exactly one of result or error is set."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    result: ParsedResult | RawResponse | None = None
    error: Any = Field(default=None, description="ClientError instance on failure")

    @model_validator(mode="after")
    def check_exclusivity(self) -> Self:
        if (self.result is None) == (self.error is None):
            raise ValueError("exactly one of result and error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None
