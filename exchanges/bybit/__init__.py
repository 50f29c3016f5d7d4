"""
Bybit Gateway

This module implements the ExchangeGateway for Bybit private REST endpoints.

Authentication:
    v5 signature scheme for /v5/* endpoints (X-BAPI-* headers, recvWindow 5000).
    Older endpoints are signed with the legacy sorted-query scheme.

Endpoints Used:
    - /v5/position/closed-pnl   trade history with realized PnL (default)
    - /v5/order/history         order history ("orders" source, Filled only downstream)
    - /v5/user/query-api        credential validation
    - /v5/market/time           health check

Structure:
    exchanges/bybit/
    ├── __init__.py          # This file (BybitGateway class)
    └── api_client.py        # REST client with aiohttp
"""

from typing import Any, Dict, Optional

from core.config import Settings, settings as default_settings
from core.errors import InvalidRequestError, UpstreamError
from core.exchange_interface import ExchangeGateway, is_credential_rejection
from core.logging import get_logger
from core.schemas import Credential
from .api_client import BybitAPIClient, BybitAPIError, scheme_for


TRADE_SOURCES = ("closed-pnl", "orders")


class BybitGateway(ExchangeGateway):
    """
    Bybit Gateway

    Example:
        >>> gateway = BybitGateway()
        >>> await gateway.initialize()
        >>> payload = await gateway.fetch_trades(credential, category="linear")
        >>> payload["result"]["list"][0]["closedPnl"]
        '12.5'
    """

    name = "bybit"

    auth_scheme = "signature"

    capabilities = {
        "trades": True,
        "validate": True,
        "proxy": True,
    }

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.base_url = config.bybit_base_url
        self.client = BybitAPIClient(base_url=self.base_url, timeout=config.request_timeout)
        self.logger = get_logger(__name__)
        self.logger.debug(f"BybitGateway created (base_url={self.base_url})")

    async def initialize(self) -> None:
        self.logger.info("Initializing Bybit gateway...")
        await self.client.__aenter__()
        self.logger.info("✓ Bybit gateway initialized")

    async def shutdown(self) -> None:
        self.logger.info("Shutting down Bybit gateway...")
        await self.client.close()
        self.logger.info("✓ Bybit gateway shut down")

    async def health_check(self) -> bool:
        server_time = await self.client.get_server_time()
        return server_time is not None and server_time > 0

    # ============================================
    # Gateway Operations
    # ============================================

    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None, auth: Any = None) -> Any:
        """
        Signed GET passthrough. The payload is returned as-is (retCode included)
        so the proxy can forward exactly what Bybit answered.
        """
        self.logger.debug(f"Bybit call {endpoint} signed with '{scheme_for(endpoint)}' scheme")
        return await self.client.signed_get(endpoint, auth, params)

    async def fetch_trades(
        self,
        auth: Any = None,
        source: str = "closed-pnl",
        category: str = "linear",
        limit: int = 100,
        symbol: Optional[str] = None,
        **params,
    ) -> Dict[str, Any]:
        """
        Fetch the raw trade payload.

        Args:
            source: "closed-pnl" (realized PnL per closed position) or "orders"
            category: "linear", "inverse", "spot" or "option"

        Raises:
            InvalidRequestError: Unknown source
            BybitAPIError: retCode != 0
        """
        if source not in TRADE_SOURCES:
            raise InvalidRequestError(
                f"Unknown Bybit trade source '{source}'. Use one of: {', '.join(TRADE_SOURCES)}",
                details={"source": source, "allowed": list(TRADE_SOURCES)},
            )

        if source == "orders":
            return await self.client.get_order_history(auth, category=category, limit=limit, symbol=symbol)

        return await self.client.get_closed_pnl(
            auth,
            category=category,
            limit=limit,
            symbol=symbol,
            start_time=params.get("start_time"),
            end_time=params.get("end_time"),
        )

    async def validate_credentials(self, auth: Credential) -> bool:
        """
        Ask Bybit about the key itself. A refused key (HTTP 401/403 or an
        authentication retCode) is reported as invalid; outages propagate.
        """
        try:
            await self.client.query_api_key(auth)
            return True
        except BybitAPIError as e:
            if e.is_auth_rejection:
                self.logger.warning(f"Bybit rejected credential (retCode {e.ret_code})")
                return False
            raise
        except UpstreamError as e:
            if is_credential_rejection(e):
                self.logger.warning(f"Bybit rejected credential (HTTP {e.status})")
                return False
            raise


__all__ = ["BybitGateway", "BybitAPIClient", "BybitAPIError"]
