"""Tests for flux_http.models.

Tests cover:
- ClientConfig snapshot operations never mutate the original
- Case-insensitive header merging
- TimingRecord phase ordering
- RequestSpec immutability
- RequestOutcome exclusivity
"""

import pytest
from pydantic import ValidationError

from flux_http.errors import NetworkError, RequestValidationError
from flux_http.models import (
    DEFAULT_MAX_RESPONSE_BYTES,
    DEFAULT_TIMEOUT_MS,
    ClientConfig,
    EncodingMode,
    HttpMethod,
    RequestOutcome,
    RequestSpec,
    TimingRecord,
    merge_headers,
)
from tests.conftest import make_raw_response


class TestMergeHeaders:
    def test_override_wins_case_insensitively(self) -> None:
        merged = merge_headers({"Content-Type": "application/json"}, {"content-type": "text/plain"})
        assert merged == {"content-type": "text/plain"}

    def test_disjoint_keys_combined(self) -> None:
        assert merge_headers({"A": "1"}, {"B": "2"}) == {"A": "1", "B": "2"}

    @pytest.mark.parametrize("overrides", [{"X-Retry": 3}, {"X-A": b"1"}, {1: "a"}, "X-A: 1"])
    def test_non_string_headers_rejected(self, overrides) -> None:
        with pytest.raises(RequestValidationError):
            merge_headers({}, overrides)

    def test_inputs_not_mutated(self) -> None:
        base = {"A": "1"}
        merge_headers(base, {"a": "2"})
        assert base == {"A": "1"}


class TestClientConfig:
    def test_defaults(self) -> None:
        config = ClientConfig()
        assert config.base_url == ""
        assert config.timeout_ms == DEFAULT_TIMEOUT_MS
        assert config.encoding == EncodingMode.JSON
        assert config.raw_response is False
        assert config.max_response_bytes == DEFAULT_MAX_RESPONSE_BYTES == 50 * 1024 * 1024
        assert config.headers["User-Agent"].startswith("flux-http/")

    def test_frozen(self) -> None:
        config = ClientConfig()
        with pytest.raises(ValidationError):
            config.timeout_ms = 5

    @pytest.mark.parametrize("field", ["timeout_ms", "max_response_bytes"])
    def test_non_positive_limits_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(**{field: 0})

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(retries=3)

    def test_with_headers_returns_new_snapshot(self) -> None:
        original = ClientConfig(headers={"Accept": "text/plain"})
        updated = original.with_headers({"accept": "application/json", "X-Trace": "1"})
        assert original.headers == {"Accept": "text/plain"}
        assert updated.headers == {"accept": "application/json", "X-Trace": "1"}

    def test_auth_token_set_and_cleared(self) -> None:
        original = ClientConfig(headers={})
        with_token = original.with_auth_token("abc")
        assert with_token.headers == {"Authorization": "Bearer abc"}
        assert with_token.with_auth_token("xyz", "Token").headers == {"Authorization": "Token xyz"}
        assert with_token.without_auth_token().headers == {}
        assert original.headers == {}

    def test_clear_auth_token_any_case(self) -> None:
        config = ClientConfig(headers={"authorization": "Basic Zm9v", "Accept": "*/*"})
        assert config.without_auth_token().headers == {"Accept": "*/*"}

    def test_with_base_url(self) -> None:
        original = ClientConfig()
        updated = original.with_base_url("https://api.example.com")
        assert updated.base_url == "https://api.example.com"
        assert original.base_url == ""

    def test_with_headers_rejects_non_string_values(self) -> None:
        """Snapshots with non-string header values are refused when taken."""
        with pytest.raises(RequestValidationError):
            ClientConfig().with_headers({"X-Count": 1})

    def test_with_base_url_rejects_non_string(self) -> None:
        with pytest.raises(RequestValidationError):
            ClientConfig().with_base_url(42)


class TestTimingRecord:
    def test_ordered_phases_accepted(self) -> None:
        record = TimingRecord(start=10, tls_handshake=5.0, ttfb=9.0, total=12.0)
        assert record.total == 12.0

    def test_missing_phases_skipped_in_ordering(self) -> None:
        record = TimingRecord(start=10, tls_handshake=None, ttfb=3.0, total=3.0)
        assert record.tls_handshake is None

    def test_out_of_order_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TimingRecord(start=10, ttfb=9.0, total=4.0)

    def test_tls_after_ttfb_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TimingRecord(start=10, tls_handshake=6.0, ttfb=5.0)


class TestRequestSpec:
    def test_frozen(self) -> None:
        spec = RequestSpec(method=HttpMethod.GET, url="https://a.example", timeout_ms=100)
        with pytest.raises(ValidationError):
            spec.url = "https://b.example"

    def test_method_coerced_from_string(self) -> None:
        spec = RequestSpec(method="PUT", url="https://a.example", timeout_ms=100)
        assert spec.method is HttpMethod.PUT


class TestRawResponse:
    def test_header_lookup_case_insensitive(self) -> None:
        response = make_raw_response(headers={"set-cookie": ["a=1", "b=2"]})
        assert response.header("Set-Cookie") == "a=1"
        assert response.header("X-Missing") is None


class TestRequestOutcome:
    def test_result_only(self) -> None:
        outcome = RequestOutcome(result=make_raw_response())
        assert outcome.ok

    def test_error_only(self) -> None:
        outcome = RequestOutcome(error=NetworkError("boom"))
        assert not outcome.ok

    def test_both_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RequestOutcome(result=make_raw_response(), error=NetworkError("boom"))

    def test_neither_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RequestOutcome()
