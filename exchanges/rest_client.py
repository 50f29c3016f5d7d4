"""
Shared aiohttp REST Client

Session handling and the single dispatch point used by every provider client.
Provider clients subclass RestClient and only describe endpoints and signing.

Dispatch rules:
    - One attempt per call. Failures surface as typed errors; callers decide
      on backoff from `retry_after` / `status`.
    - A caller-side timeout becomes UpstreamTimeoutError.
    - A connection failure becomes UpstreamError without a status.

Usage:
    async with BybitAPIClient() as client:
        payload = await client.get_closed_pnl(credential, category="linear")
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp
from yarl import URL

from core.config import settings
from core.errors import UpstreamError, UpstreamTimeoutError
from core.logging import get_logger, log_api_request, log_api_response
from core.schemas import SignedRequest
from core.signing import sorted_query
from core.utils.http import UpstreamResponse, decode_response


class RestClient:
    """
    Base async HTTP client.

    Attributes:
        exchange: Provider name used in logs and error messages
        base_url: Provider REST base URL
        timeout: Per-request timeout in seconds
        session: aiohttp ClientSession, opened on enter or first use
    """

    exchange = "exchange"

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(f"exchanges.{self.exchange}.api_client")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug(f"{type(self).__name__} session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{type(self).__name__} session closed")
        self.session = None

    def url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    # ============================================
    # HTTP Dispatch
    # ============================================

    async def _send(self, request: SignedRequest) -> UpstreamResponse:
        """
        Dispatch one request and read the body.

        The query string is sent exactly as signed (no re-encoding).

        Raises:
            UpstreamTimeoutError: The request exceeded self.timeout
            UpstreamError: Connection-level failure (no status)
        """
        if self.session is None or self.session.closed:
            await self.__aenter__()

        url = URL(request.full_url, encoded=True)
        started = time.monotonic()
        try:
            async with self.session.request(
                request.method,
                url,
                headers=request.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                text = await response.text()
                log_api_response(self.exchange, request.url, response.status, time.monotonic() - started)
                return UpstreamResponse(
                    status=response.status,
                    content_type=response.headers.get("Content-Type"),
                    text=text,
                    retry_after=response.headers.get("Retry-After"),
                )
        except asyncio.TimeoutError:
            self.logger.error(f"{self.exchange} request to {request.url} timed out after {self.timeout}s")
            raise UpstreamTimeoutError(f"{self.exchange} request timed out", timeout=self.timeout)
        except aiohttp.ClientError as e:
            self.logger.error(f"{self.exchange} request to {request.url} failed: {e}")
            raise UpstreamError(f"{self.exchange} connection failed: {e}")

    async def dispatch(self, request: SignedRequest, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send a prepared request and decode the reply into JSON or a typed error."""
        log_api_request(self.exchange, request.url, params)
        response = await self._send(request)
        return decode_response(self.exchange, response)

    async def get_public(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Unauthenticated GET (server time, health checks)."""
        request = SignedRequest(method="GET", url=self.url(endpoint), query_string=sorted_query(params))
        return await self.dispatch(request, params)
