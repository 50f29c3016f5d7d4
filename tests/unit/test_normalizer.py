"""
Unit Tests for the Trade Normalizer

These tests verify that:
- Each provider shape maps onto TradeRecord with the right units and signs
- Malformed rows are skipped with a warning while the rest of the batch survives
- Deliberately excluded rows (unfilled orders, open deals) are counted, not warned
- Duplicate ids collapse to one record

Run with:
    pytest tests/unit/test_normalizer.py -v
"""

from datetime import datetime, timezone

import pytest

from core.errors import UnsupportedPlatformError
from exchanges.stub import default_trades
from services.normalizer import TradeNormalizer, normalize_many, unwrap


@pytest.fixture
def normalizer():
    return TradeNormalizer()


def bybit_pnl(order_id="o1", side="Sell", pnl="50", **overrides):
    row = {
        "orderId": order_id,
        "symbol": "BTCUSDT",
        "side": side,
        "qty": "0.1",
        "avgEntryPrice": "50000",
        "avgExitPrice": "50500",
        "closedPnl": pnl,
        "openFee": "0.3",
        "closeFee": "0.2",
        "createdTime": "1704110400000",
        "updatedTime": "1704119400000",
    }
    row.update(overrides)
    return row


def envelope(*rows):
    return {"retCode": 0, "retMsg": "OK", "result": {"list": list(rows), "category": "linear"}}


class TestUnwrap:

    def test_envelopes(self):
        assert unwrap([1]) == [1]
        assert unwrap({"result": {"list": [1]}}) == [1]
        assert unwrap({"deal": [1]}) == [1]
        assert unwrap({"trades": [1, 2]}) == [1, 2]

    def test_unknown_envelope(self):
        with pytest.raises(ValueError):
            unwrap({"foo": "bar"})


class TestBybit:

    def test_closed_pnl(self, normalizer):
        result = normalizer.normalize("bybit", envelope(bybit_pnl()), trader_profile_id="p1")

        assert result.skipped == 0
        record = result.records[0]
        assert record.id == "bybit:o1"
        assert record.trader_profile_id == "p1"
        # Sell closes a long
        assert record.direction == "buy"
        assert record.entry_price == 50000.0
        assert record.exit_price == 50500.0
        assert record.volume == 0.1
        assert record.net_profit == 50.0
        assert record.commission == pytest.approx(0.5)
        assert record.open_time == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert record.close_time == datetime(2024, 1, 1, 14, 30, tzinfo=timezone.utc)
        assert record.exchange == "bybit"

    def test_buy_close_is_short(self, normalizer):
        result = normalizer.normalize("bybit", envelope(bybit_pnl(side="Buy", pnl="-12.5")))

        assert result.records[0].direction == "sell"
        assert result.records[0].net_profit == -12.5

    def test_bad_row_skipped_rest_kept(self, normalizer):
        bad = bybit_pnl(order_id="o2", avgEntryPrice="not-a-number")
        result = normalizer.normalize("bybit", envelope(bybit_pnl(), bad, bybit_pnl(order_id="o3")))

        assert [r.id for r in result.records] == ["bybit:o1", "bybit:o3"]
        assert result.skipped == 1
        assert result.warnings[0]["index"] == 1
        assert "avgEntryPrice" in result.warnings[0]["reason"]

    def test_missing_required_field(self, normalizer):
        row = bybit_pnl()
        del row["closedPnl"]

        result = normalizer.normalize("bybit", envelope(row))

        assert result.records == []
        assert result.skipped == 1

    def test_duplicate_ids_collapse(self, normalizer):
        result = normalizer.normalize("bybit", envelope(bybit_pnl(pnl="1"), bybit_pnl(pnl="2")))

        assert len(result.records) == 1
        assert result.records[0].net_profit == 2.0

    def test_order_history_filled_only(self, normalizer):
        filled = {"orderId": "f1", "symbol": "ETHUSDT", "side": "Buy", "orderStatus": "Filled",
                  "avgPrice": "3000", "cumExecQty": "0.5", "cumExecFee": "0.1", "createdTime": "1704110400000"}
        cancelled = {"orderId": "c1", "symbol": "ETHUSDT", "side": "Sell", "orderStatus": "Cancelled",
                     "avgPrice": "", "cumExecQty": "0"}

        result = normalizer.normalize("bybit", envelope(filled, cancelled))

        assert [r.id for r in result.records] == ["bybit:f1"]
        assert result.records[0].direction == "buy"
        assert result.records[0].net_profit == 0.0
        assert result.filtered == 1
        assert result.skipped == 0

    def test_filled_order_without_price_is_skipped(self, normalizer):
        row = {"orderId": "f1", "symbol": "ETHUSDT", "side": "Buy", "orderStatus": "Filled", "avgPrice": ""}

        result = normalizer.normalize("bybit", envelope(row))

        assert result.skipped == 1

    def test_unrecognized_envelope_is_one_warning(self, normalizer):
        result = normalizer.normalize("bybit", {"retCode": 0, "result": "nope"})

        assert result.records == []
        assert result.skipped == 1


class TestBinance:

    def test_my_trades(self, normalizer):
        rows = [
            {"id": 28457, "symbol": "BNBBTC", "price": "4.00000100", "qty": "12.00000000",
             "commission": "10.10000000", "time": 1704110400000, "isBuyer": True},
            {"id": 28458, "symbol": "BNBBTC", "price": "4.1", "qty": "1", "time": 1704110400000,
             "isBuyer": False, "realizedPnl": "-1.5"},
        ]

        result = normalizer.normalize("binance", rows)

        first, second = result.records
        assert first.id == "binance:BNBBTC:28457"
        assert first.direction == "buy"
        assert first.entry_price == pytest.approx(4.000001)
        assert first.commission == pytest.approx(10.1)
        assert first.open_time == first.close_time
        assert second.direction == "sell"
        assert second.net_profit == -1.5

    def test_futures_side_field(self, normalizer):
        row = {"id": 1, "symbol": "BTCUSDT", "price": "1", "qty": "1", "time": 1704110400000, "side": "SELL"}

        assert normalizer.normalize("binance", [row]).records[0].direction == "sell"

    def test_no_side_information_skipped(self, normalizer):
        row = {"id": 1, "symbol": "BTCUSDT", "price": "1", "qty": "1", "time": 1704110400000}

        assert normalizer.normalize("binance", [row]).skipped == 1


class TestCTrader:

    def test_closed_deal_scaling(self, normalizer):
        deal = {
            "dealId": 101,
            "symbolName": "EURUSD",
            "tradeSide": 2,
            "volume": 10000000,
            "executedPrice": 108500,
            "profit": 1250,
            "commission": -35,
            "createTimestamp": 1704110400000,
            "closeTimestamp": 1704119400000,
        }

        result = normalizer.normalize("ctrader", {"deal": [deal]})

        record = result.records[0]
        assert record.id == "ctrader:101"
        assert record.symbol == "EURUSD"
        assert record.direction == "sell"
        assert record.volume == 100.0
        assert record.exit_price == pytest.approx(1.085)
        assert record.net_profit == 12.5
        assert record.commission == 0.35

    def test_close_detail_profit_with_money_digits(self, normalizer):
        deal = {
            "dealId": "102",
            "symbolName": "XAUUSD",
            "tradeSide": "BUY",
            "volume": 100.0,
            "executedPrice": 2050.5,
            "closeTimestamp": 1704119400000,
            "closePositionDetail": {"entryPrice": 2040.0, "grossProfit": 100000, "commission": -500,
                                    "swap": 0, "moneyDigits": 3},
        }

        record = normalizer.normalize("ctrader", {"deal": [deal]}).records[0]

        assert record.entry_price == 2040.0
        assert record.exit_price == 2050.5
        assert record.net_profit == pytest.approx(99.5)

    def test_open_deal_filtered(self, normalizer):
        deal = {"dealId": 103, "symbolName": "EURUSD", "tradeSide": 1, "volume": 100000, "executedPrice": 108000}

        result = normalizer.normalize("ctrader", {"deal": [deal]})

        assert result.records == []
        assert result.filtered == 1
        assert result.skipped == 0


class TestStubAndRouting:

    def test_stub_payload(self, normalizer):
        payload = {"stub": True, "exchange": "kraken", "trades": default_trades("kraken")}

        result = normalizer.normalize("kraken", payload, trader_profile_id="p1")

        assert [r.id for r in result.records] == ["kraken:kraken_demo_1", "kraken:kraken_demo_2"]
        assert result.records[0].direction == "buy"
        assert result.records[1].net_profit == -10
        assert all(r.close_time >= r.open_time for r in result.records)

    def test_unknown_exchange(self, normalizer):
        with pytest.raises(UnsupportedPlatformError):
            normalizer.normalize("kraken", [])

    def test_normalize_many(self):
        records = normalize_many(
            [("bybit", envelope(bybit_pnl())),
             ("binance", {"stub": True, "trades": default_trades("binance")})],
            trader_profile_id="p1",
        )

        assert len(records) == 3
        assert {r.trader_profile_id for r in records} == {"p1"}
