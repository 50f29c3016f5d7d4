"""
cTrader Gateway

This module implements the ExchangeGateway for the cTrader Open API.

Authentication:
    OAuth2. `auth` is the session's TokenLifecycleManager (anything with an
    `async auth_header()`), or an already-built "Bearer ..." string. Token
    refresh, proactive or reactive, happens inside auth_header().

Endpoints Used:
    - /deals       trade history (closed deals are kept by the normalizer)
    - /positions   open positions

Structure:
    exchanges/ctrader/
    ├── __init__.py          # This file (CTraderGateway class)
    └── api_client.py        # Bearer REST client with aiohttp
"""

from typing import Any, Dict, Optional

from core.config import Settings, settings as default_settings
from core.errors import NoRefreshTokenError, UnsupportedPlatformError
from core.exchange_interface import ExchangeGateway
from core.logging import get_logger
from .api_client import CTraderAPIClient


class CTraderGateway(ExchangeGateway):
    """
    cTrader Gateway

    Example:
        >>> gateway = CTraderGateway()
        >>> manager = TokenLifecycleManager(session_id)
        >>> payload = await gateway.fetch_trades(manager)
    """

    name = "ctrader"

    auth_scheme = "oauth"

    capabilities = {
        "trades": True,
        "validate": False,
        "proxy": True,
    }

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.base_url = config.ctrader_api_base_url
        self.client = CTraderAPIClient(base_url=self.base_url, timeout=config.request_timeout)
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        self.logger.info("Initializing cTrader gateway...")
        await self.client.__aenter__()
        self.logger.info("✓ cTrader gateway initialized")

    async def shutdown(self) -> None:
        await self.client.close()
        self.logger.info("✓ cTrader gateway shut down")

    async def _auth_header(self, auth: Any) -> str:
        if auth is None:
            raise NoRefreshTokenError("unknown")
        if isinstance(auth, str):
            return auth
        return await auth.auth_header()

    # ============================================
    # Gateway Operations
    # ============================================

    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None, auth: Any = None) -> Any:
        header = await self._auth_header(auth)
        return await self.client.bearer_get(endpoint, header, params)

    async def fetch_trades(self, auth: Any = None, from_date: Optional[str] = None,
                           to_date: Optional[str] = None, **params) -> Any:
        header = await self._auth_header(auth)
        return await self.client.get_deals(header, from_date=from_date, to_date=to_date, **params)

    async def validate_credentials(self, auth: Any) -> bool:
        raise UnsupportedPlatformError(
            self.name,
            reason="cTrader uses OAuth; link the account through /oauth/token-exchange instead of API keys",
        )


__all__ = ["CTraderGateway", "CTraderAPIClient"]
