"""
Binance REST API Client

Async HTTP client for the signed (USER_DATA) part of the Binance Spot REST API.

Signing (timestamp scheme):
    query = <caller params in order>&timestamp=<ms>
    signature = HMAC-SHA256(query, secret), appended as &signature=<hex>
    API key travels in the X-MBX-APIKEY header.

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/rest-api

Endpoints Used:
    - GET /api/v3/account              account information (credential check)
    - GET /sapi/v1/accountSnapshot     daily snapshot, fallback credential check
    - GET /api/v3/myTrades             trade history for one symbol
    - GET /api/v3/time                 server time (health check)

Usage:
    async with BinanceAPIClient() as client:
        trades = await client.get_my_trades(credential, symbol="BTCUSDT")
"""

from typing import Any, Dict, List, Optional

from core.config import settings
from core.schemas import Credential
from core.signing import SCHEME_TIMESTAMP, SignatureEngine
from exchanges.rest_client import RestClient


class BinanceAPIClient(RestClient):
    """
    Async HTTP client for Binance signed endpoints.

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     account = await client.get_account(credential)
    """

    exchange = "binance"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 engine: Optional[SignatureEngine] = None):
        super().__init__(base_url or settings.binance_base_url, timeout)
        self.engine = engine or SignatureEngine()

    async def signed_get(self, endpoint: str, credential: Credential,
                         params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Sign and send one GET. The signature is computed right before dispatch.
        """
        request = self.engine.build(SCHEME_TIMESTAMP, self.url(endpoint), credential, params)
        return await self.dispatch(request, params)

    # ============================================
    # Account Endpoints
    # ============================================

    async def get_account(self, credential: Credential) -> Dict[str, Any]:
        """
        Binance Endpoint:
            GET /api/v3/account (weight 20)
        """
        return await self.signed_get("/api/v3/account", credential)

    async def get_account_snapshot(self, credential: Credential, snapshot_type: str = "SPOT") -> Dict[str, Any]:
        """
        Binance Endpoint:
            GET /sapi/v1/accountSnapshot (needs fewer permissions than /account)
        """
        return await self.signed_get("/sapi/v1/accountSnapshot", credential, {"type": snapshot_type})

    async def get_my_trades(
        self,
        credential: Credential,
        symbol: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch account trades for one symbol.

        Args:
            symbol: Trading pair (e.g. "BTCUSDT")
            limit: Max 1000
            start_time / end_time: Epoch milliseconds

        Binance Endpoint:
            GET /api/v3/myTrades
        """
        params: Dict[str, Any] = {"symbol": symbol.upper(), "limit": min(limit, 1000)}
        if start_time is not None:
            params["startTime"] = start_time
        if end_time is not None:
            params["endTime"] = end_time

        self.logger.info(f"Fetching Binance trades: {params['symbol']} (limit={params['limit']})")
        return await self.signed_get("/api/v3/myTrades", credential, params)

    async def get_server_time(self) -> Optional[int]:
        """
        Get Binance server time in milliseconds, or None if unreachable.
        """
        try:
            data = await self.get_public("/api/v3/time")
            return int(data.get("serverTime", 0))
        except Exception as e:
            self.logger.error(f"Failed to get Binance server time: {e}")
            return None
