"""
Bybit REST API Client

Async HTTP client for Bybit private (signed) REST endpoints.

Signing:
    v5 (default for /v5/* endpoints):
        payload = timestamp + apiKey + recvWindow + sortedQueryString
        headers X-BAPI-API-KEY, X-BAPI-TIMESTAMP, X-BAPI-RECV-WINDOW (5000), X-BAPI-SIGN
    legacy (pre-v5 endpoints):
        api_key, timestamp and params sorted alphabetically; &sign=<hex> appended

Response envelope:
    {"retCode": 0, "retMsg": "OK", "result": {...}, "time": 1704110400000}
    A non-zero retCode is an application-level failure even on HTTP 200.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/intro

Usage:
    async with BybitAPIClient() as client:
        payload = await client.get_closed_pnl(credential, category="linear")
"""

from typing import Any, Dict, Optional

from core.config import settings
from core.errors import UpstreamError
from core.schemas import Credential
from core.signing import SCHEME_LEGACY, SCHEME_V5, SignatureEngine
from exchanges.rest_client import RestClient


# Upper bound on cursor pages followed by one history fetch
MAX_PAGES = 20

# retCodes returned for a bad key, signature or permission set
AUTH_REJECTION_CODES = {10003, 10004, 10005, 10007, 10010, 33004}


def scheme_for(endpoint: str) -> str:
    """
    v5 signing for /v5/* paths, legacy signing for everything older.

    Example:
        >>> scheme_for("/v5/position/closed-pnl")
        'v5'
        >>> scheme_for("/private/linear/trade/closed-pnl/list")
        'legacy'
    """
    return SCHEME_V5 if endpoint.lstrip("/").startswith("v5/") else SCHEME_LEGACY


class BybitAPIError(UpstreamError):
    """HTTP 200 with a non-zero retCode."""

    kind = "upstream_error"

    def __init__(self, ret_code: int, ret_msg: str, body: Any = None, status: int = 200):
        self.ret_code = ret_code
        self.ret_msg = ret_msg
        super().__init__(f"Bybit API error {ret_code}: {ret_msg}", status=status, body=body,
                         details={"ret_code": ret_code})

    @property
    def is_auth_rejection(self) -> bool:
        return self.ret_code in AUTH_REJECTION_CODES


class BybitAPIClient(RestClient):
    """
    Async HTTP client for Bybit signed endpoints.

    Raw `signed_get` returns any 2xx JSON payload untouched (proxy use).
    The typed helpers below also check the retCode envelope.
    """

    exchange = "bybit"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 engine: Optional[SignatureEngine] = None):
        super().__init__(base_url or settings.bybit_base_url, timeout)
        self.engine = engine or SignatureEngine()

    async def signed_get(self, endpoint: str, credential: Credential,
                         params: Optional[Dict[str, Any]] = None, scheme: Optional[str] = None) -> Any:
        request = self.engine.build(scheme or scheme_for(endpoint), self.url(endpoint), credential, params)
        return await self.dispatch(request, params)

    async def _get_checked(self, endpoint: str, credential: Credential,
                           params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Signed GET plus retCode check.

        Returns:
            The whole envelope (normalizers unwrap result.list themselves)

        Raises:
            BybitAPIError: retCode != 0
        """
        data = await self.signed_get(endpoint, credential, params)
        ret_code = data.get("retCode", data.get("ret_code", 0)) if isinstance(data, dict) else 0
        if ret_code != 0:
            ret_msg = data.get("retMsg", data.get("ret_msg", "Unknown error"))
            self.logger.error(f"Bybit {endpoint} returned retCode {ret_code}: {ret_msg}")
            raise BybitAPIError(int(ret_code), ret_msg, body=data)
        return data

    async def _get_pages(self, endpoint: str, credential: Credential, params: Dict[str, Any],
                         max_pages: int = MAX_PAGES) -> Dict[str, Any]:
        """
        Follow result.nextPageCursor and merge every page into one envelope.

        Returns:
            The first page's envelope with result.list holding the rows of all
            pages; result.nextPageCursor is empty once history is exhausted and
            keeps the next cursor when max_pages stopped the walk early.
        """
        envelope = await self._get_checked(endpoint, credential, params)
        result = envelope.get("result") or {}
        rows = list(result.get("list") or [])
        cursor = result.get("nextPageCursor") or ""
        seen = {cursor}
        pages = 1

        while cursor and pages < max_pages:
            page = await self._get_checked(endpoint, credential, {**params, "cursor": cursor})
            page_result = page.get("result") or {}
            page_rows = page_result.get("list") or []
            rows.extend(page_rows)
            pages += 1
            cursor = page_result.get("nextPageCursor") or ""
            if not page_rows or cursor in seen:
                cursor = ""
            seen.add(cursor)

        if cursor:
            self.logger.warning(f"Bybit {endpoint}: stopped after {pages} page(s), more history remains")
        else:
            self.logger.debug(f"Bybit {endpoint}: {len(rows)} row(s) over {pages} page(s)")
        return {**envelope, "result": {**result, "list": rows, "nextPageCursor": cursor}}

    # ============================================
    # Account Endpoints
    # ============================================

    async def get_closed_pnl(
        self,
        credential: Credential,
        category: str = "linear",
        limit: int = 100,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        cursor: Optional[str] = None,
        max_pages: int = MAX_PAGES,
    ) -> Dict[str, Any]:
        """
        Closed positions with realized PnL, following the cursor across pages.

        Bybit Endpoint:
            GET /v5/position/closed-pnl
        """
        params = {
            "category": category,
            "limit": min(limit, 100),
            "symbol": symbol.upper() if symbol else None,
            "startTime": start_time,
            "endTime": end_time,
            "cursor": cursor,
        }
        self.logger.info(f"Fetching Bybit closed PnL ({category}, limit={params['limit']})")
        return await self._get_pages("/v5/position/closed-pnl", credential, params, max_pages)

    async def get_order_history(
        self,
        credential: Credential,
        category: str = "linear",
        limit: int = 50,
        symbol: Optional[str] = None,
        cursor: Optional[str] = None,
        max_pages: int = MAX_PAGES,
    ) -> Dict[str, Any]:
        """
        Order history, following the cursor across pages.

        Bybit Endpoint:
            GET /v5/order/history
        """
        params = {
            "category": category,
            "limit": min(limit, 50),
            "symbol": symbol.upper() if symbol else None,
            "cursor": cursor,
        }
        self.logger.info(f"Fetching Bybit order history ({category}, limit={params['limit']})")
        return await self._get_pages("/v5/order/history", credential, params, max_pages)

    async def query_api_key(self, credential: Credential) -> Dict[str, Any]:
        """
        Information about the calling API key.

        Bybit Endpoint:
            GET /v5/user/query-api
        """
        return await self._get_checked("/v5/user/query-api", credential)

    async def get_server_time(self) -> Optional[int]:
        """
        Get Bybit server time in milliseconds, or None if failed.

        Bybit Endpoint:
            GET /v5/market/time
        """
        try:
            data = await self.get_public("/v5/market/time")
            return int(data.get("result", {}).get("timeSecond", 0)) * 1000
        except Exception as e:
            self.logger.error(f"Failed to get Bybit server time: {e}")
            return None
