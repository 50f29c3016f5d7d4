"""
Unit Tests for the Signature Engine

These tests verify that:
- Each canonicalization scheme builds the exact string the provider expects
- Signatures are HMAC-SHA256 hex over that string
- Headers and query strings carry the key, timestamp and signature
- An empty secret never produces a request

Run with:
    pytest tests/unit/test_signing.py -v
"""

import hashlib
import hmac

import pytest

from core.errors import ConfigurationError
from core.schemas import Credential
from core.signing import (
    RECV_WINDOW_MS,
    SignatureEngine,
    legacy_query,
    sign,
    sorted_query,
    timestamp_query,
    v5_payload,
)


TS = 1704110400000


def _hmac(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def credential():
    return Credential(exchange_id="bybit", key_id="KEY", secret="SECRET")


@pytest.fixture
def engine():
    return SignatureEngine(clock=lambda: TS)


class TestCanonicalStrings:
    """Canonical strings per scheme"""

    def test_timestamp_query_without_params_is_only_timestamp(self):
        assert timestamp_query(None, TS) == f"timestamp={TS}"
        assert timestamp_query({}, TS) == f"timestamp={TS}"

    def test_timestamp_query_keeps_caller_order(self):
        assert timestamp_query({"symbol": "BTCUSDT", "limit": 10}, TS) == f"symbol=BTCUSDT&limit=10&timestamp={TS}"

    def test_sorted_query_sorts_and_drops_none(self):
        assert sorted_query({"symbol": "BTCUSDT", "category": "linear", "cursor": None}) == "category=linear&symbol=BTCUSDT"

    def test_v5_payload_concatenation(self):
        assert v5_payload(TS, "KEY", "category=linear") == f"{TS}KEY{RECV_WINDOW_MS}category=linear"

    def test_legacy_query_sorts_including_key_and_timestamp(self):
        assert legacy_query("KEY", TS, {"symbol": "BTCUSDT", "limit": 5}) == (
            f"api_key=KEY&limit=5&symbol=BTCUSDT&timestamp={TS}"
        )


class TestSign:
    """HMAC-SHA256 primitive"""

    def test_matches_hmac_sha256_hex(self):
        assert sign("SECRET", "payload") == _hmac("SECRET", "payload")

    def test_deterministic(self):
        assert sign("SECRET", "payload") == sign("SECRET", "payload")

    @pytest.mark.parametrize("secret, message", [
        ("SECRET", "payloae"),
        ("SECRET", "Payload"),
        ("SECRES", "payload"),
        ("ECRET", "payload"),
    ])
    def test_single_byte_change_changes_signature(self, secret, message):
        assert sign(secret, message) != sign("SECRET", "payload")

    def test_empty_secret_raises(self):
        with pytest.raises(ConfigurationError):
            sign("", "payload")


class TestSignatureEngine:
    """SignedRequest assembly"""

    def test_timestamp_scheme(self, engine, credential):
        req = engine.build("timestamp", "https://api.binance.com/api/v3/account", credential)

        expected = _hmac("SECRET", f"timestamp={TS}")
        assert req.signature == expected
        assert req.query_string == f"timestamp={TS}&signature={expected}"
        assert req.headers == {"X-MBX-APIKEY": "KEY"}
        assert req.timestamp == TS
        assert req.full_url == f"https://api.binance.com/api/v3/account?timestamp={TS}&signature={expected}"

    def test_v5_scheme_headers(self, engine, credential):
        req = engine.build("v5", "https://api.bybit.com/v5/position/closed-pnl", credential,
                           {"symbol": "BTCUSDT", "category": "linear"})

        expected = _hmac("SECRET", f"{TS}KEY5000category=linear&symbol=BTCUSDT")
        assert req.query_string == "category=linear&symbol=BTCUSDT"
        assert req.headers["X-BAPI-API-KEY"] == "KEY"
        assert req.headers["X-BAPI-TIMESTAMP"] == str(TS)
        assert req.headers["X-BAPI-RECV-WINDOW"] == "5000"
        assert req.headers["X-BAPI-SIGN"] == expected

    def test_legacy_scheme_appends_sign(self, engine, credential):
        req = engine.build("legacy", "https://api.bybit.com/private/linear/trade/closed-pnl/list",
                           credential, {"symbol": "BTCUSDT"})

        canonical = f"api_key=KEY&symbol=BTCUSDT&timestamp={TS}"
        assert req.query_string == f"{canonical}&sign={_hmac('SECRET', canonical)}"

    def test_clock_read_per_request(self, credential):
        ticks = iter([1, 2])
        engine = SignatureEngine(clock=lambda: next(ticks))

        first = engine.build("timestamp", "https://x", credential)
        second = engine.build("timestamp", "https://x", credential)

        assert (first.timestamp, second.timestamp) == (1, 2)
        assert first.signature != second.signature

    def test_unknown_scheme_raises(self, engine, credential):
        with pytest.raises(ConfigurationError):
            engine.build("rsa", "https://x", credential)

    def test_secret_not_in_repr(self, credential):
        assert "SECRET" not in repr(credential)
        assert "secret" not in credential.model_dump()
