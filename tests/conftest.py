"""Pytest configuration and fixtures for flux-http tests.

This file provides:
- make_raw_response: RawResponse factory with sensible defaults
- RecordingTransport: httpx.MockTransport that remembers every request
- RawSocketServer: a local TCP server that writes hand-crafted bytes, for
  exercising transport faults httpx.MockTransport cannot produce
- server_tls_context / client_tls_context: TLS contexts built on the
  self-signed certificate in tests/fixtures/
"""

from __future__ import annotations

import asyncio
import socket
import ssl
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from flux_http.models import RawResponse, TimingRecord


FIXTURES_DIR = Path(__file__).parent / "fixtures"
# Self-signed certificate for 127.0.0.1/localhost, valid until 2126
TLS_CERT = FIXTURES_DIR / "localhost.crt"
TLS_KEY = FIXTURES_DIR / "localhost.key"


def server_tls_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(TLS_CERT, TLS_KEY)
    return context


def client_tls_context() -> ssl.SSLContext:
    """Client context that trusts only the fixture certificate."""
    return ssl.create_default_context(cafile=str(TLS_CERT))


def make_raw_response(
    status_code: int = 200,
    headers: dict[str, list[str]] | None = None,
    body: bytes = b"",
    reason_phrase: str = "OK",
    timings: TimingRecord | None = None,
) -> RawResponse:
    """Create a RawResponse for testing decoding and status handling.

    Prefer this over constructing RawResponse directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return RawResponse(
        status_code=status_code,
        reason_phrase=reason_phrase,
        url="https://api.example.com/test",
        headers=headers or {},
        body=body,
        timings=timings or TimingRecord(start=0, ttfb=1.0, total=2.0),
    )


Handler = Callable[[httpx.Request], Any]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that records requests and the bytes written for them.

    The handler may be sync or async, as with httpx.MockTransport.
    """

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []

        async def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            self.bodies.append(await request.aread())
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        super().__init__(recording_handler)

    @property
    def bytes_written(self) -> int:
        return sum(len(body) for body in self.bodies)


def json_response(payload: Any, status_code: int = 200) -> Handler:
    """Handler that always answers with the given JSON payload."""
    return lambda request: httpx.Response(status_code, json=payload)


def find_free_port() -> int:
    """Find a port on localhost that nothing is listening on.

    WARNING: Race condition exists between this returning and the port being
    used. Acceptable for connection-refused tests, which want nobody listening.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class RawSocketServer:
    """Local asyncio TCP server driven by a per-connection coroutine.

    Usage (inside a running event loop):
        async with RawSocketServer(respond) as server:
            await client.get(server.url("/path"))

    respond(reader, writer) reads the request however it likes and writes raw
    response bytes. The writer is closed afterwards. Pass ssl_context to
    serve TLS; url() then uses the https scheme.
    """

    def __init__(
        self,
        respond: Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]],
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._respond = respond
        self._ssl_context = ssl_context
        self._server: asyncio.AbstractServer | None = None
        self.port = 0

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await self._respond(reader, writer)
        except (ConnectionError, asyncio.CancelledError):
            pass
        finally:
            writer.close()

    def url(self, path: str = "/") -> str:
        scheme = "https" if self._ssl_context else "http"
        return f"{scheme}://127.0.0.1:{self.port}{path}"

    async def __aenter__(self) -> RawSocketServer:
        self._server = await asyncio.start_server(
            self._handle, "127.0.0.1", 0, ssl=self._ssl_context
        )
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()


async def read_request_head(reader: asyncio.StreamReader) -> bytes:
    """Read up to and including the blank line ending the request head."""
    return await reader.readuntil(b"\r\n\r\n")
