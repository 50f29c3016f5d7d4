"""
Stub Gateway

Placeholder gateway that answers with canned trades instead of calling a
provider. It is an ordinary ExchangeGateway, registered per exchange id
through the STUB_EXCHANGES setting, so it can never leak into a real
gateway's code path:

    STUB_EXCHANGES=binance,bybit   # both served by StubGateway

Payload shape (already close to TradeRecord; see StubTrade in the normalizer):
    {"stub": true, "exchange": "binance", "trades": [
        {"id": "...", "symbol": "BTCUSDT", "direction": "Buy", "volume": 0.001,
         "price": 50000, "exit_price": 50500, "net_profit": 50, "commission": 0.1,
         "time": "2024-01-01T12:00:00+00:00", "close_time": "2024-01-01T14:00:00+00:00"}
    ]}
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.exchange_interface import ExchangeGateway
from core.logging import get_logger
from core.utils.time import current_utc_datetime


def default_trades(exchange_id: str) -> List[Dict[str, Any]]:
    """Two closed demo trades, one win and one loss, timed relative to now."""
    now = current_utc_datetime()
    return [
        {
            "id": f"{exchange_id}_demo_1",
            "symbol": "BTCUSDT",
            "direction": "Buy",
            "volume": 0.001,
            "price": 50000,
            "exit_price": 50500,
            "net_profit": 50,
            "commission": 0.1,
            "time": (now - timedelta(days=1, hours=2)).isoformat(),
            "close_time": (now - timedelta(days=1)).isoformat(),
        },
        {
            "id": f"{exchange_id}_demo_2",
            "symbol": "ETHUSDT",
            "direction": "Sell",
            "volume": 0.01,
            "price": 3000,
            "exit_price": 3010,
            "net_profit": -10,
            "commission": 0.05,
            "time": (now - timedelta(hours=14)).isoformat(),
            "close_time": (now - timedelta(hours=12)).isoformat(),
        },
    ]


class StubGateway(ExchangeGateway):
    """
    Canned-data gateway standing in for one exchange id.

    Attributes:
        name: The exchange id being stood in for (e.g. "binance")
        trades: Fixed trade list; generated per call when not given

    Example:
        >>> gateway = StubGateway("binance")
        >>> payload = await gateway.fetch_trades()
        >>> payload["stub"]
        True
    """

    auth_scheme = "none"

    capabilities = {
        "trades": True,
        "validate": True,
        "proxy": True,
    }

    def __init__(self, exchange_id: str, trades: Optional[List[Dict[str, Any]]] = None):
        self.name = exchange_id.lower()
        self.trades = trades
        self.logger = get_logger(__name__)
        self.logger.warning(f"StubGateway serving canned data for '{self.name}'")

    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None, auth: Any = None) -> Any:
        return {"stub": True, "exchange": self.name, "endpoint": endpoint, "params": dict(params or {})}

    async def fetch_trades(self, auth: Any = None, **params) -> Dict[str, Any]:
        trades = self.trades if self.trades is not None else default_trades(self.name)
        return {"stub": True, "exchange": self.name, "trades": [dict(t) for t in trades]}

    async def validate_credentials(self, auth: Any) -> bool:
        return auth is not None


__all__ = ["StubGateway", "default_trades"]
