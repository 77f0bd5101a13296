"""HttpClient - Request orchestration facade.

Per call: snapshot the default config, validate input, resolve the URL,
encode the body, merge headers, hand the immutable RequestSpec to the
Executor, then judge the status code and decode the body.

Validation failures are raised before the Executor is touched, so a bad
payload never opens a connection.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from flux_http.body_codec import decode_body, encode_body
from flux_http.errors import ClientError, HTTPStatusError, RequestValidationError
from flux_http.executor import Executor
from flux_http.models import (
    ClientConfig,
    EncodingMode,
    HttpMethod,
    ParsedResult,
    RawResponse,
    RequestOutcome,
    RequestSpec,
    merge_headers,
)
from flux_http.url_resolver import resolve_url, validate_endpoint

logger = logging.getLogger(__name__)


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def parse_response(response: RawResponse) -> ParsedResult:
    """Decode a RawResponse body into a ParsedResult."""
    return ParsedResult(
        data=decode_body(response.body, response.headers.get("content-type")),
        status_code=response.status_code,
        headers=response.headers,
        timings=response.timings,
    )


class HttpClient:
    """Async HTTP client that records phase timings for every call.

    Usage:
        client = HttpClient("https://api.example.com")
        result = await client.get("/users/1")
        result.data, result.timings.ttfb

    The default configuration is an immutable snapshot. set_* methods swap
    in a new snapshot; calls already in flight keep the one they started with.
    """

    def __init__(
        self,
        base_url: str = "",
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Prefix for relative endpoints. Overrides config.base_url
                when non-empty.
            config: Default configuration. ClientConfig() if None.
            transport: Optional httpx transport shared by all calls.
        """
        config = config or ClientConfig()
        if base_url:
            config = config.with_base_url(base_url)
        self._config = config
        self._executor = Executor(transport)

    # -------------------------------------------------------------------------
    # Default configuration snapshots
    # -------------------------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def set_base_url(self, base_url: str) -> None:
        self._config = self._config.with_base_url(base_url)

    def set_default_headers(self, headers: Mapping[str, str]) -> None:
        self._config = self._config.with_headers(headers)

    def set_auth_token(self, token: str, token_type: str = "Bearer") -> None:
        self._config = self._config.with_auth_token(token, token_type)

    def clear_auth_token(self) -> None:
        self._config = self._config.without_auth_token()

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    async def get(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        raw_response: bool | None = None,
    ) -> ParsedResult | RawResponse:
        return await self.request(
            HttpMethod.GET, endpoint, headers=headers, timeout_ms=timeout_ms, raw_response=raw_response
        )

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        encoding: EncodingMode | str | None = None,
        raw_response: bool | None = None,
    ) -> ParsedResult | RawResponse:
        return await self.request(
            HttpMethod.POST, endpoint, data, headers=headers, timeout_ms=timeout_ms,
            encoding=encoding, raw_response=raw_response,
        )

    async def put(
        self,
        endpoint: str,
        data: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        encoding: EncodingMode | str | None = None,
        raw_response: bool | None = None,
    ) -> ParsedResult | RawResponse:
        return await self.request(
            HttpMethod.PUT, endpoint, data, headers=headers, timeout_ms=timeout_ms,
            encoding=encoding, raw_response=raw_response,
        )

    async def delete(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        raw_response: bool | None = None,
    ) -> ParsedResult | RawResponse:
        return await self.request(
            HttpMethod.DELETE, endpoint, headers=headers, timeout_ms=timeout_ms, raw_response=raw_response
        )

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def build_request(
        self,
        method: HttpMethod | str,
        endpoint: str,
        data: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        encoding: EncodingMode | str | None = None,
        raw_response: bool | None = None,
        config: ClientConfig | None = None,
    ) -> RequestSpec:
        """Validate input and build the RequestSpec for one call.

        No network activity happens here.

        Raises:
            RequestValidationError: On a bad method, endpoint, option or payload.
            NetworkError: If the resolved URL is not a valid absolute URL.
        """
        config = config or self._config

        try:
            method = HttpMethod(method.upper() if isinstance(method, str) else method)
        except ValueError as e:
            raise RequestValidationError(f"Unsupported method '{method}'") from e

        timeout_ms = config.timeout_ms if timeout_ms is None else timeout_ms
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0:
            raise RequestValidationError(f"Timeout must be a positive integer (ms), got {timeout_ms!r}")

        validate_endpoint(endpoint)

        try:
            mode = EncodingMode(encoding if encoding is not None else config.encoding)
        except ValueError as e:
            raise RequestValidationError(f"Unknown encoding mode '{encoding}'") from e
        encoded = encode_body(data, mode)

        url = resolve_url(config.base_url, endpoint)

        merged = dict(config.headers)
        if encoded.content_type is not None:
            merged = merge_headers(merged, {"Content-Type": encoded.content_type})
        if headers:
            merged = merge_headers(merged, headers)

        try:
            return RequestSpec(
                method=method,
                url=url,
                headers=merged,
                timeout_ms=timeout_ms,
                body=encoded.content,
                encoding=mode,
                raw_response=config.raw_response if raw_response is None else raw_response,
                max_response_bytes=config.max_response_bytes,
            )
        except ValidationError as e:
            raise RequestValidationError(f"Invalid request options: {e}") from e

    async def request(
        self,
        method: HttpMethod | str,
        endpoint: str,
        data: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
        encoding: EncodingMode | str | None = None,
        raw_response: bool | None = None,
    ) -> ParsedResult | RawResponse:
        """Execute one request end to end.

        Returns:
            ParsedResult, or RawResponse when raw_response is in effect.

        Raises:
            RequestValidationError: Before any I/O, for invalid input.
            ClientTimeoutError: If the exchange exceeds its time budget.
            NetworkError: On transport faults (including oversize bodies).
            HTTPStatusError: If the status code is outside [200, 300).
        """
        spec = self.build_request(
            method, endpoint, data, headers=headers, timeout_ms=timeout_ms,
            encoding=encoding, raw_response=raw_response, config=self._config,
        )

        raw = await self._executor.execute(spec)

        result: ParsedResult | RawResponse = raw if spec.raw_response else parse_response(raw)

        if not _is_success(raw.status_code):
            logger.debug("%s %s returned %d", spec.method.value, spec.url, raw.status_code)
            error = HTTPStatusError(raw.status_code, raw.reason_phrase, response=result)
            error.timings = raw.timings
            raise error

        return result

    async def try_request(
        self,
        method: HttpMethod | str,
        endpoint: str,
        data: Any = None,
        **options: Any,
    ) -> RequestOutcome:
        """Like request(), but returns the error instead of raising it."""
        try:
            result = await self.request(method, endpoint, data, **options)
        except ClientError as e:
            return RequestOutcome(error=e)
        return RequestOutcome(result=result)
