"""
Unit Tests for upstream response decoding

Run with:
    pytest tests/unit/test_http.py -v
"""

from datetime import datetime, timezone

import pytest

from core.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    TokenExchangeError,
    UpstreamError,
    UpstreamFormatError,
    UpstreamRateLimitedError,
    parse_retry_after,
)
from core.utils.http import UpstreamResponse, decode_response, is_json_content_type


JSON = "application/json"
HTML = "text/html; charset=utf-8"


class TestDecodeResponse:
    """Status and content-type handling"""

    def test_json_payload(self):
        assert decode_response("bybit", UpstreamResponse(200, JSON, '{"retCode": 0}')) == {"retCode": 0}

    def test_empty_body_is_empty_dict(self):
        assert decode_response("bybit", UpstreamResponse(200, JSON, "")) == {}

    def test_rate_limit_carries_retry_after(self):
        with pytest.raises(UpstreamRateLimitedError) as exc_info:
            decode_response("bybit", UpstreamResponse(429, JSON, "{}", retry_after="12"))
        assert exc_info.value.retry_after == 12
        assert exc_info.value.to_dict()["retry_after"] == 12

    def test_rate_limit_default_retry_after(self):
        with pytest.raises(UpstreamRateLimitedError) as exc_info:
            decode_response("bybit", UpstreamResponse(429, HTML, "<html>slow down</html>"))
        assert exc_info.value.retry_after == DEFAULT_RETRY_AFTER_SECONDS == 300

    def test_non_2xx_keeps_status_and_body(self):
        with pytest.raises(UpstreamError) as exc_info:
            decode_response("binance", UpstreamResponse(401, JSON, '{"code": -2015}'))
        assert exc_info.value.status == 401
        assert exc_info.value.body == {"code": -2015}
        assert exc_info.value.response_status == 401

    def test_2xx_html_is_format_error(self):
        with pytest.raises(UpstreamFormatError) as exc_info:
            decode_response("binance", UpstreamResponse(200, HTML, "<html></html>"))
        assert exc_info.value.response_status == 400

    def test_malformed_json_is_format_error(self):
        with pytest.raises(UpstreamFormatError):
            decode_response("binance", UpstreamResponse(200, JSON, "{not json"))

    def test_content_type_first_rejects_html_error_page(self):
        with pytest.raises(UpstreamFormatError):
            decode_response("token", UpstreamResponse(500, HTML, "<html>oops</html>"),
                            error_cls=TokenExchangeError, content_type_first=True)

    def test_custom_error_class(self):
        with pytest.raises(TokenExchangeError) as exc_info:
            decode_response("token", UpstreamResponse(400, JSON, '{"error": "invalid_grant"}'),
                            error_cls=TokenExchangeError, content_type_first=True)
        assert exc_info.value.body == {"error": "invalid_grant"}


class TestHelpers:

    @pytest.mark.parametrize("content_type,expected", [
        ("application/json", True),
        ("application/json; charset=utf-8", True),
        ("application/problem+json", True),
        ("text/html", False),
        (None, False),
    ])
    def test_is_json_content_type(self, content_type, expected):
        assert is_json_content_type(content_type) is expected

    def test_parse_retry_after(self):
        assert parse_retry_after("30") == 30
        assert parse_retry_after(None) == DEFAULT_RETRY_AFTER_SECONDS
        assert parse_retry_after("garbage") == DEFAULT_RETRY_AFTER_SECONDS
        assert parse_retry_after("-5") == 0

    @pytest.mark.parametrize("value", ["inf", "-inf", "1e400", "nan"])
    def test_parse_retry_after_non_finite(self, value):
        assert parse_retry_after(value) == DEFAULT_RETRY_AFTER_SECONDS

    def test_parse_retry_after_http_date(self):
        now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)

        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 30
        assert parse_retry_after("Wed, 21 Oct 2015 07:00:00 GMT", now=now) == 0

    def test_infinite_retry_after_still_rate_limited(self):
        response = UpstreamResponse(429, JSON, "{}", retry_after="inf")

        with pytest.raises(UpstreamRateLimitedError) as exc_info:
            decode_response("bybit", response)

        assert exc_info.value.retry_after == DEFAULT_RETRY_AFTER_SECONDS
