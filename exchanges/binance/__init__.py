"""
Binance Gateway

This module implements the ExchangeGateway for Binance Spot signed endpoints.

Authentication:
    Timestamp signature scheme (see core.signing). The API key is sent in the
    X-MBX-APIKEY header, the signature as the last query parameter.

Endpoints Used:
    - /api/v3/account, /sapi/v1/accountSnapshot   credential validation
    - /api/v3/myTrades                             trade history (per symbol)
    - /api/v3/time                                 health check

Structure:
    exchanges/binance/
    ├── __init__.py          # This file (BinanceGateway class)
    └── api_client.py        # REST client with aiohttp
"""

from typing import Any, Dict, Iterable, List, Optional, Union

from core.config import Settings, settings as default_settings
from core.errors import UpstreamError
from core.exchange_interface import ExchangeGateway, is_credential_rejection
from core.logging import get_logger
from core.schemas import Credential
from .api_client import BinanceAPIClient


DEFAULT_TRADE_SYMBOLS = ("BTCUSDT",)


class BinanceGateway(ExchangeGateway):
    """
    Binance Gateway

    Attributes:
        name: "binance"
        auth_scheme: "signature"
        client: BinanceAPIClient (session opened in initialize())

    Example:
        >>> gateway = BinanceGateway()
        >>> await gateway.initialize()
        >>> payload = await gateway.fetch_trades(credential, symbols=["BTCUSDT", "ETHUSDT"])
        >>> await gateway.shutdown()
    """

    name = "binance"

    auth_scheme = "signature"

    capabilities = {
        "trades": True,
        "validate": True,
        "proxy": True,
    }

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.base_url = config.binance_base_url
        self.client = BinanceAPIClient(base_url=self.base_url, timeout=config.request_timeout)
        self.logger = get_logger(__name__)
        self.logger.debug(f"BinanceGateway created (base_url={self.base_url})")

    async def initialize(self) -> None:
        self.logger.info("Initializing Binance gateway...")
        await self.client.__aenter__()
        self.logger.info("✓ Binance gateway initialized")

    async def shutdown(self) -> None:
        self.logger.info("Shutting down Binance gateway...")
        await self.client.close()
        self.logger.info("✓ Binance gateway shut down")

    async def health_check(self) -> bool:
        server_time = await self.client.get_server_time()
        return server_time is not None and server_time > 0

    # ============================================
    # Gateway Operations
    # ============================================

    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None, auth: Any = None) -> Any:
        """Signed GET passthrough (used by the /proxy route)."""
        return await self.client.signed_get(endpoint, auth, params)

    async def fetch_trades(
        self,
        auth: Any = None,
        symbols: Union[str, Iterable[str], None] = None,
        symbol: Optional[str] = None,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        **params,
    ) -> List[Dict[str, Any]]:
        """
        Fetch trades for each requested symbol and concatenate them.

        /api/v3/myTrades is per-symbol; each returned trade carries its own
        "symbol" field, so the concatenated list stays self-describing.

        Args:
            symbols: List or comma-separated string (default: BTCUSDT)
            symbol: Single symbol shorthand
        """
        if isinstance(symbols, str):
            symbols = [s.strip() for s in symbols.split(",") if s.strip()]
        if not symbols:
            symbols = [symbol] if symbol else DEFAULT_TRADE_SYMBOLS
        symbols = list(symbols)

        trades: List[Dict[str, Any]] = []
        for symbol in symbols:
            trades.extend(
                await self.client.get_my_trades(auth, symbol, limit=limit, start_time=start_time, end_time=end_time)
            )

        self.logger.info(f"Fetched {len(trades)} Binance trade(s) across {len(symbols)} symbol(s)")
        return trades

    async def validate_credentials(self, auth: Credential) -> bool:
        """
        Try /api/v3/account, then /sapi/v1/accountSnapshot when the first
        call is refused (keys without account permission).
        """
        try:
            await self.client.get_account(auth)
            return True
        except UpstreamError as e:
            if not is_credential_rejection(e):
                raise
            self.logger.warning(f"Binance account check refused (HTTP {e.status}), trying account snapshot")

        try:
            await self.client.get_account_snapshot(auth)
            return True
        except UpstreamError as e:
            if not is_credential_rejection(e):
                raise
            self.logger.warning(f"Binance snapshot check refused (HTTP {e.status}); credential invalid")
            return False


__all__ = ["BinanceGateway", "BinanceAPIClient"]
