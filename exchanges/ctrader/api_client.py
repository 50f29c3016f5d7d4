"""
cTrader Open API REST Client

Bearer-authenticated client for the cTrader Open API. The Authorization header
always comes from TokenLifecycleManager.auth_header(); this client never sees
refresh tokens or client secrets.

Endpoints Used:
    - GET /deals       deal history (from/to as YYYY-MM-DD)
    - GET /positions   open positions
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from core.config import settings
from core.schemas import SignedRequest
from core.signing import sorted_query
from core.utils.time import current_utc_datetime
from exchanges.rest_client import RestClient


DEFAULT_HISTORY_DAYS = 30


class CTraderAPIClient(RestClient):
    """
    Example:
        >>> async with CTraderAPIClient() as client:
        ...     deals = await client.get_deals("Bearer abc")
    """

    exchange = "ctrader"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(base_url or settings.ctrader_api_base_url, timeout)

    async def bearer_get(self, endpoint: str, auth_header: str, params: Optional[Dict[str, Any]] = None) -> Any:
        request = SignedRequest(
            method="GET",
            url=self.url(endpoint),
            headers={"Authorization": auth_header, "Accept": "application/json"},
            query_string=sorted_query(params),
        )
        return await self.dispatch(request, params)

    async def get_deals(
        self,
        auth_header: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        **params,
    ) -> Any:
        """
        Deal history, last 30 days unless a range is given.

        Args:
            from_date / to_date: "YYYY-MM-DD"
        """
        today = current_utc_datetime().date()
        query = {
            "from": from_date or (today - timedelta(days=DEFAULT_HISTORY_DAYS)).isoformat(),
            "to": to_date or today.isoformat(),
        }
        query.update(params)
        self.logger.info(f"Fetching cTrader deals {query['from']} -> {query['to']}")
        return await self.bearer_get("/deals", auth_header, query)

