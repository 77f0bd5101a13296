"""Error taxonomy and transport fault classification.

Every failure a call can produce surfaces as exactly one ClientError
subclass. classify_transport_error() maps the faults raised below the
client (httpx, the OS socket layer, asyncio deadlines) onto that taxonomy;
it never retries and never returns None.
"""

from __future__ import annotations

import asyncio
import errno
import socket
import ssl
from typing import Any, Iterator

import httpx


class ClientError(Exception):
    """Base class for every error the client raises.

    status_code and response are only populated for HTTP status failures.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response
        # Set by the executor: the timings frozen at the moment of failure
        self.timings: Any = None


class ClientTimeoutError(ClientError):
    """The configured time budget elapsed before the exchange completed."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Request timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class NetworkError(ClientError):
    """A transport-level fault: DNS, refused, reset, TLS, oversize, bad URL."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Network error: {detail}")
        self.detail = detail


class RequestValidationError(ClientError):
    """Caller input is structurally invalid. Raised before any network I/O."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class HTTPStatusError(ClientError):
    """The exchange completed but the status was outside [200, 300)."""

    def __init__(self, status_code: int, reason: str, response: Any = None) -> None:
        super().__init__(f"HTTP {status_code}: {reason}", status_code=status_code, response=response)
        self.reason = reason


class ResponseTooLarge(Exception):
    """Internal signal: the body grew past the configured ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"response body exceeded {limit} bytes")
        self.limit = limit


RESPONSE_TOO_LARGE = "Response too large"


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk the __cause__/__context__ chain and any exception groups on it."""
    seen: set[int] = set()
    pending: list[BaseException] = [exc]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            pending.extend(reversed(current.exceptions))
        parent = current.__cause__ or current.__context__
        if parent is not None:
            pending.append(parent)


def _describe_os_fault(exc: BaseException) -> str | None:
    """Name the low-level cause of a connection fault, if recognisable."""
    for cause in _causes(exc):
        if isinstance(cause, ssl.SSLCertVerificationError):
            return f"certificate verification failed: {getattr(cause, 'verify_message', None) or cause}"
        if isinstance(cause, ssl.SSLError):
            return f"TLS error: {cause}"
        if isinstance(cause, socket.gaierror):
            return f"DNS lookup failed: {cause}"
        if isinstance(cause, ConnectionRefusedError):
            return "connection refused"
        if isinstance(cause, ConnectionResetError):
            return "connection reset by peer"
        if isinstance(cause, OSError) and cause.errno == errno.ECONNREFUSED:
            return "connection refused"
    return None


def classify_transport_error(exc: BaseException, timeout_ms: int) -> ClientError:
    """Map a fault raised during dispatch to exactly one ClientError.

    ClientErrors pass through unchanged so a fault is classified once.
    """
    if isinstance(exc, ClientError):
        return exc

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ClientTimeoutError(timeout_ms)

    if isinstance(exc, ResponseTooLarge):
        return NetworkError(RESPONSE_TOO_LARGE)

    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return NetworkError(f"invalid URL: {exc}")

    if isinstance(exc, httpx.ConnectError):
        return NetworkError(_describe_os_fault(exc) or f"connection failed: {exc}")

    if isinstance(exc, httpx.RemoteProtocolError):
        # h11 raises this both for garbage status lines/headers and for a peer
        # that drops the connection mid-response.
        if "disconnected" in str(exc).lower():
            return NetworkError("connection reset by peer")
        return NetworkError(f"malformed response: {exc}")

    if isinstance(exc, httpx.WriteError):
        return NetworkError(f"socket write failed: {exc}")

    if isinstance(exc, httpx.ReadError):
        return NetworkError(_describe_os_fault(exc) or f"read failed: {exc}")

    if isinstance(exc, httpx.DecodingError):
        return NetworkError(f"could not decode response content: {exc}")

    if isinstance(exc, httpx.TransportError):
        return NetworkError(_describe_os_fault(exc) or str(exc) or type(exc).__name__)

    if isinstance(exc, UnicodeEncodeError):
        return NetworkError(
            "non-ASCII characters in request (header key or URL). "
            f"Character: {exc.object[exc.start:exc.end]!r} at position {exc.start}"
        )

    if isinstance(exc, OSError):
        return NetworkError(_describe_os_fault(exc) or str(exc))

    return ClientError(f"Request error: {exc}")
