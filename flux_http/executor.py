"""Executor - Sends one request and captures the raw response with timings.

The Executor owns a single network exchange: it opens the connection
(plaintext or TLS, chosen by httpx from the URL scheme), writes the
request, drains the response body into a bounded buffer and stamps the
TimingRecorder along the way. Faults are classified into the ClientError
taxonomy before they leave this module.

Status codes are not judged here; a 404 is a completed exchange.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx

from flux_http.errors import (
    ClientTimeoutError,
    ResponseTooLarge,
    classify_transport_error,
)
from flux_http.models import RawResponse, RequestSpec
from flux_http.timing import TimingRecorder

logger = logging.getLogger(__name__)


class ExchangeState(str, Enum):
    """Lifecycle of one exchange. TLS-only states are skipped for http."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SECURE_HANDSHAKE = "secure-handshake"
    HEADERS_SENT = "headers-sent"
    RECEIVING = "receiving"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


# httpcore trace events that move the state machine forward
_TRACE_TRANSITIONS = {
    "connection.connect_tcp.started": ExchangeState.CONNECTING,
    "connection.start_tls.started": ExchangeState.SECURE_HANDSHAKE,
    "http11.send_request_body.complete": ExchangeState.HEADERS_SENT,
    "http2.send_request_body.complete": ExchangeState.HEADERS_SENT,
}
_TLS_COMPLETE = "connection.start_tls.complete"


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters in a header value with '?'.

    HTTP headers must contain only ASCII characters per RFC 7230.
    """
    return value.encode('ascii', errors='replace').decode('ascii')


def _convert_headers(headers: httpx.Headers) -> dict[str, list[str]]:
    """Lowercase keys, one list entry per header occurrence."""
    converted: dict[str, list[str]] = {}
    for key, value in headers.multi_items():
        converted.setdefault(key.lower(), []).append(value)
    return converted


class _SharedTransport(httpx.AsyncBaseTransport):
    """Delegates to a caller-owned transport but never closes it."""

    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        pass


class Exchange:
    """Mutable per-call state: the state machine position and the timings."""

    def __init__(self, request: RequestSpec) -> None:
        self.request = request
        self.secure = request.url.lower().startswith("https:")
        self.timings = TimingRecorder()
        self.state = ExchangeState.IDLE

    def transition(self, state: ExchangeState) -> None:
        if state != self.state:
            logger.debug("%s %s: %s -> %s", self.request.method.value, self.request.url, self.state.value, state.value)
            self.state = state

    async def trace(self, event_name: str, info: dict[str, Any]) -> None:
        """httpx 'trace' extension callback."""
        if event_name == _TLS_COMPLETE:
            if self.secure:
                self.timings.mark_tls_handshake()
            return
        state = _TRACE_TRANSITIONS.get(event_name)
        if state is not None:
            self.transition(state)


class Executor:
    """Executes single requests and returns RawResponse objects.

    Usage:
        executor = Executor()
        raw = await executor.execute(request_spec)

    Each call opens and releases its own connection. A transport may be
    supplied (e.g. httpx.MockTransport in tests); it is shared by all calls
    and never closed by the executor.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def execute(self, request: RequestSpec) -> RawResponse:
        """Execute a request, enforcing the timeout and the size ceiling.

        Args:
            request: Fully resolved, immutable request.

        Returns:
            RawResponse with every timing that applies.

        Raises:
            ClientTimeoutError: If the exchange exceeds request.timeout_ms.
            NetworkError: On any transport fault, including an oversize body.
        """
        exchange = Exchange(request)
        logger.debug("Dispatching %s %s (timeout %dms)", request.method.value, request.url, request.timeout_ms)

        try:
            response = await asyncio.wait_for(
                self._exchange(exchange),
                timeout=request.timeout_ms / 1000,
            )
        except Exception as e:
            error = classify_transport_error(e, request.timeout_ms)
            error.timings = exchange.timings.snapshot()
            exchange.transition(
                ExchangeState.TIMED_OUT if isinstance(error, ClientTimeoutError) else ExchangeState.FAILED
            )
            logger.debug("%s %s failed: %s", request.method.value, request.url, error)
            if error is e:
                raise
            raise error from e

        exchange.transition(ExchangeState.COMPLETE)
        logger.debug(
            "%s %s -> %d (%d bytes, total %.1fms)",
            request.method.value, request.url, response.status_code,
            len(response.body), response.timings.total or 0.0,
        )
        return response

    async def _exchange(self, exchange: Exchange) -> RawResponse:
        request = exchange.request
        timeout = httpx.Timeout(request.timeout_ms / 1000)
        headers = {key: _sanitize_header_value(value) for key, value in request.headers.items()}

        if self._transport is None:
            transport: httpx.AsyncBaseTransport = httpx.AsyncHTTPTransport(retries=0)
        else:
            transport = _SharedTransport(self._transport)
        client = httpx.AsyncClient(transport=transport, timeout=timeout, follow_redirects=False)

        try:
            http_request = client.build_request(
                request.method.value,
                request.url,
                headers=headers,
                content=request.body,
                extensions={"trace": exchange.trace},
            )
            exchange.transition(ExchangeState.CONNECTING)
            http_response = await client.send(http_request, stream=True)
            try:
                exchange.transition(ExchangeState.RECEIVING)
                body = await self._drain(exchange, http_response)
                exchange.timings.mark_total()
            finally:
                await http_response.aclose()
        finally:
            await client.aclose()

        return RawResponse(
            status_code=http_response.status_code,
            reason_phrase=http_response.reason_phrase,
            url=str(http_request.url),
            headers=_convert_headers(http_response.headers),
            body=body,
            timings=exchange.timings.snapshot(),
        )

    async def _drain(self, exchange: Exchange, response: httpx.Response) -> bytes:
        """Accumulate the body, refusing any chunk that would exceed the limit.

        ttfb is stamped on the first non-empty chunk, so a bodiless response
        leaves it unset.
        """
        limit = exchange.request.max_response_bytes
        declared = response.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise ResponseTooLarge(limit)

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            if chunk:
                exchange.timings.mark_ttfb()
            if len(buffer) + len(chunk) > limit:
                raise ResponseTooLarge(limit)
            buffer += chunk
        return bytes(buffer)
