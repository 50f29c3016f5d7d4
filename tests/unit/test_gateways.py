"""
Unit Tests for Provider Gateways

Every test replaces the REST client's `_send` with a canned reply, so no
network is touched. The fake records each SignedRequest it receives.

Run with:
    pytest tests/unit/test_gateways.py -v
"""

import json

import pytest

from core.config import Settings
from core.errors import (
    InvalidRequestError,
    NoRefreshTokenError,
    UnsupportedPlatformError,
    UpstreamError,
    UpstreamFormatError,
    UpstreamRateLimitedError,
)
from core.exchange_interface import is_credential_rejection
from core.schemas import Credential
from core.utils.http import UpstreamResponse
from exchanges.binance import BinanceGateway
from exchanges.bybit import BybitAPIError, BybitGateway
from exchanges.bybit.api_client import scheme_for
from exchanges.ctrader import CTraderGateway
from exchanges.stub import StubGateway


JSON = "application/json"


def _reply(status=200, body=None, content_type=JSON, retry_after=None):
    text = body if isinstance(body, str) else json.dumps(body if body is not None else {})
    return UpstreamResponse(status=status, content_type=content_type, text=text, retry_after=retry_after)


def fake_send(monkeypatch, client, *replies):
    """Patch client._send to return replies in order; returns the request log."""
    sent = []
    queue = list(replies)

    async def _send(request):
        sent.append(request)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    monkeypatch.setattr(client, "_send", _send)
    return sent


@pytest.fixture
def config():
    return Settings(_env_file=None)


@pytest.fixture
def credential():
    return Credential(exchange_id="bybit", key_id="KEY", secret="SECRET", source="request")


# ============================================
# Binance
# ============================================

class TestBinanceGateway:

    @pytest.mark.asyncio
    async def test_fetch_trades_concatenates_symbols(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        sent = fake_send(
            monkeypatch, gateway.client,
            _reply(body=[{"id": 1, "symbol": "BTCUSDT"}]),
            _reply(body=[{"id": 2, "symbol": "ETHUSDT"}, {"id": 3, "symbol": "ETHUSDT"}]),
        )

        trades = await gateway.fetch_trades(credential, symbols="BTCUSDT,ETHUSDT", limit=5000)

        assert [t["id"] for t in trades] == [1, 2, 3]
        assert sent[0].url.endswith("/api/v3/myTrades")
        assert sent[0].query_string.startswith("symbol=BTCUSDT&limit=1000&timestamp=")
        assert "signature=" in sent[0].query_string
        assert sent[0].headers["X-MBX-APIKEY"] == "KEY"

    @pytest.mark.asyncio
    async def test_fetch_trades_default_symbol(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body=[]))

        await gateway.fetch_trades(credential)

        assert len(sent) == 1
        assert "symbol=BTCUSDT" in sent[0].query_string

    @pytest.mark.asyncio
    async def test_validate_account_ok(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body={"balances": []}))

        assert await gateway.validate_credentials(credential) is True
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_validate_falls_back_to_snapshot(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        sent = fake_send(
            monkeypatch, gateway.client,
            _reply(status=401, body={"code": -2015, "msg": "Invalid API-key"}),
            _reply(body={"code": 200, "snapshotVos": []}),
        )

        assert await gateway.validate_credentials(credential) is True
        assert sent[1].url.endswith("/sapi/v1/accountSnapshot")
        assert sent[1].query_string.startswith("type=SPOT&timestamp=")

    @pytest.mark.asyncio
    async def test_validate_both_rejected(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(status=401, body={"code": -2015}))

        assert await gateway.validate_credentials(credential) is False

    @pytest.mark.asyncio
    async def test_validate_outage_propagates(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(status=503, body="<html>down</html>", content_type="text/html"))

        with pytest.raises(UpstreamError) as exc_info:
            await gateway.validate_credentials(credential)
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_html_success_body_is_format_error(self, monkeypatch, config, credential):
        gateway = BinanceGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(body="<html></html>", content_type="text/html"))

        with pytest.raises(UpstreamFormatError):
            await gateway.call("/api/v3/account", None, credential)


# ============================================
# Bybit
# ============================================

class TestBybitGateway:

    def test_scheme_selection(self):
        assert scheme_for("/v5/position/closed-pnl") == "v5"
        assert scheme_for("v5/order/history") == "v5"
        assert scheme_for("/private/linear/trade/closed-pnl/list") == "legacy"

    @pytest.mark.asyncio
    async def test_fetch_closed_pnl(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        envelope = {"retCode": 0, "retMsg": "OK", "result": {"list": [{"orderId": "1"}]}}
        sent = fake_send(monkeypatch, gateway.client, _reply(body=envelope))

        payload = await gateway.fetch_trades(credential, category="linear", limit=500, symbol="btcusdt")

        assert payload == envelope
        assert sent[0].url.endswith("/v5/position/closed-pnl")
        assert sent[0].query_string == "category=linear&limit=100&symbol=BTCUSDT"
        assert sent[0].headers["X-BAPI-API-KEY"] == "KEY"
        assert sent[0].headers["X-BAPI-RECV-WINDOW"] == "5000"

    @pytest.mark.asyncio
    async def test_fetch_orders_source(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body={"retCode": 0, "result": {"list": []}}))

        await gateway.fetch_trades(credential, source="orders")

        assert sent[0].url.endswith("/v5/order/history")
        assert "limit=50" in sent[0].query_string

    @pytest.mark.asyncio
    async def test_closed_pnl_follows_cursor(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        sent = fake_send(
            monkeypatch, gateway.client,
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "1"}], "nextPageCursor": "c1"}}),
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "2"}], "nextPageCursor": ""}}),
        )

        payload = await gateway.fetch_trades(credential)

        assert [row["orderId"] for row in payload["result"]["list"]] == ["1", "2"]
        assert payload["result"]["nextPageCursor"] == ""
        assert len(sent) == 2
        assert "cursor" not in sent[0].query_string
        assert "cursor=c1" in sent[1].query_string

    @pytest.mark.asyncio
    async def test_cursor_walk_stops_at_max_pages(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        sent = fake_send(
            monkeypatch, gateway.client,
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "1"}], "nextPageCursor": "c1"}}),
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "2"}], "nextPageCursor": "c2"}}),
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "3"}], "nextPageCursor": "c3"}}),
        )

        payload = await gateway.client.get_closed_pnl(credential, max_pages=2)

        assert len(sent) == 2
        assert len(payload["result"]["list"]) == 2
        assert payload["result"]["nextPageCursor"] == "c2"

    @pytest.mark.asyncio
    async def test_repeated_cursor_ends_walk(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        sent = fake_send(
            monkeypatch, gateway.client,
            _reply(body={"retCode": 0, "result": {"list": [{"orderId": "1"}], "nextPageCursor": "c1"}}),
        )

        payload = await gateway.client.get_order_history(credential)

        assert len(sent) == 2
        assert payload["result"]["nextPageCursor"] == ""

    @pytest.mark.asyncio
    async def test_unknown_source(self, config, credential):
        with pytest.raises(InvalidRequestError) as exc_info:
            await BybitGateway(config).fetch_trades(credential, source="executions")

        assert exc_info.value.http_status == 400
        assert exc_info.value.to_dict()["error"] == "invalid_request"

    @pytest.mark.asyncio
    async def test_nonzero_retcode_raises(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(body={"retCode": 10016, "retMsg": "Server error"}))

        with pytest.raises(BybitAPIError) as exc_info:
            await gateway.fetch_trades(credential)
        assert exc_info.value.ret_code == 10016
        assert exc_info.value.is_auth_rejection is False

    @pytest.mark.asyncio
    async def test_call_returns_payload_untouched(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        body = {"retCode": 10003, "retMsg": "API key is invalid."}
        fake_send(monkeypatch, gateway.client, _reply(body=body))

        assert await gateway.call("/v5/account/wallet-balance", {"accountType": "UNIFIED"}, credential) == body

    @pytest.mark.asyncio
    async def test_legacy_endpoint_signed_with_legacy_scheme(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body={"ret_code": 0}))

        await gateway.call("/private/linear/trade/closed-pnl/list", {"symbol": "BTCUSDT"}, credential)

        assert sent[0].query_string.startswith("api_key=KEY&symbol=BTCUSDT&timestamp=")
        assert "&sign=" in sent[0].query_string
        assert "X-BAPI-SIGN" not in sent[0].headers

    @pytest.mark.asyncio
    async def test_validate_auth_retcode_is_invalid(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(body={"retCode": 10003, "retMsg": "API key is invalid."}))

        assert await gateway.validate_credentials(credential) is False

    @pytest.mark.asyncio
    async def test_validate_ok(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(body={"retCode": 0, "result": {"readOnly": 1}}))

        assert await gateway.validate_credentials(credential) is True

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, monkeypatch, config, credential):
        gateway = BybitGateway(config)
        fake_send(monkeypatch, gateway.client, _reply(status=429, body={}, retry_after="7"))

        with pytest.raises(UpstreamRateLimitedError) as exc_info:
            await gateway.validate_credentials(credential)
        assert exc_info.value.retry_after == 7


# ============================================
# cTrader
# ============================================

class TestCTraderGateway:

    @pytest.mark.asyncio
    async def test_fetch_trades_uses_bearer_header(self, monkeypatch, config):
        gateway = CTraderGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body={"deal": []}))

        await gateway.fetch_trades("Bearer abc", from_date="2024-01-01", to_date="2024-01-31")

        assert sent[0].headers["Authorization"] == "Bearer abc"
        assert sent[0].url.endswith("/deals")
        assert sent[0].query_string == "from=2024-01-01&to=2024-01-31"

    @pytest.mark.asyncio
    async def test_auth_object_supplies_header(self, monkeypatch, config):
        class Session:
            async def auth_header(self):
                return "Bearer from-session"

        gateway = CTraderGateway(config)
        sent = fake_send(monkeypatch, gateway.client, _reply(body={"deal": []}))

        await gateway.call("/positions", None, Session())

        assert sent[0].headers["Authorization"] == "Bearer from-session"

    @pytest.mark.asyncio
    async def test_missing_auth(self, config):
        with pytest.raises(NoRefreshTokenError):
            await CTraderGateway(config).fetch_trades(None)

    @pytest.mark.asyncio
    async def test_validate_not_supported(self, config):
        gateway = CTraderGateway(config)
        assert gateway.supports("validate") is False
        with pytest.raises(UnsupportedPlatformError):
            await gateway.validate_credentials(None)


# ============================================
# Stub
# ============================================

class TestStubGateway:

    @pytest.mark.asyncio
    async def test_default_trades(self):
        payload = await StubGateway("bybit").fetch_trades()

        assert payload["stub"] is True
        assert payload["exchange"] == "bybit"
        assert [t["id"] for t in payload["trades"]] == ["bybit_demo_1", "bybit_demo_2"]

    @pytest.mark.asyncio
    async def test_call_echoes_request(self):
        payload = await StubGateway("Binance").call("/api/v3/account", {"a": 1})
        assert payload == {"stub": True, "exchange": "binance", "endpoint": "/api/v3/account", "params": {"a": 1}}

    @pytest.mark.asyncio
    async def test_validate(self, credential):
        gateway = StubGateway("bybit")
        assert await gateway.validate_credentials(credential) is True
        assert await gateway.validate_credentials(None) is False


class TestCredentialRejection:

    def test_statuses(self):
        assert is_credential_rejection(UpstreamError("x", status=401))
        assert is_credential_rejection(UpstreamError("x", status=403))
        assert not is_credential_rejection(UpstreamError("x", status=500))
        assert not is_credential_rejection(UpstreamError("x", status=None))

    def test_rate_limit_is_not_rejection(self):
        assert not is_credential_rejection(UpstreamRateLimitedError("slow down"))
