"""
OAuth Token Lifecycle Manager

Owns the cTrader Open API access/refresh token pair for one session.

State machine:
    NO_TOKEN --exchange_code()--> PENDING --success--> ACTIVE
    ACTIVE --(within refresh margin / expired)--> EXPIRING --refresh()--> ACTIVE
    any --revoke()--> REVOKED

Guarantees:
    - Tokens live in a TokenStore keyed by session id, never in module state.
    - Refresh is single-flight per session: concurrent callers await the same
      in-flight task, so a rotating refresh token is only spent once.
    - A token is replaced as one unit. A failed exchange or refresh (including
      a timeout or a cancelled caller) leaves the stored token untouched.
    - Missing expiry is treated as expired (fail closed).
    - PENDING is recorded in the store, so every manager for the session sees
      it while a code exchange is running.
    - A refresh never overwrites a token linked by a newer code exchange.

Token endpoint errors:
    429                -> UpstreamRateLimitedError (Retry-After, default 300s)
    non-JSON body      -> UpstreamFormatError (checked before parsing)
    other non-2xx      -> TokenExchangeError (status + body)
    timeout            -> UpstreamTimeoutError

Usage:
    manager = TokenLifecycleManager(session_id)
    await manager.exchange_code(code, redirect_uri, mode="demo")
    headers = {"Authorization": await manager.auth_header()}
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from core.config import Settings, settings as default_settings
from core.credentials import CredentialResolver
from core.errors import (
    AlphaEdgeError,
    ConfigurationError,
    MissingCredentialError,
    NoRefreshTokenError,
    TokenExchangeError,
    UpstreamTimeoutError,
)
from core.logging import get_logger
from core.schemas import Credential, Token
from core.utils.http import UpstreamResponse, decode_response
from core.utils.time import now_ms
from storage.token_store import TokenStore, get_token_store


OAUTH_PROVIDER = "ctrader"
USER_AGENT = "AlphaEdge-Backend/1.0"


class TokenState(str, Enum):
    NO_TOKEN = "no_token"
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRING = "expiring"
    REVOKED = "revoked"


class TokenLifecycleManager:
    """
    Exchange, track and refresh one session's OAuth token.

    Attributes:
        session_id: Key into the TokenStore
        store: Session-scoped token store (shared across manager instances)
        resolver: Credential resolver used for the OAuth client id/secret
        clock: Millisecond clock (injectable for tests)
        http_client: Optional httpx.AsyncClient; one is opened per request otherwise

    Example:
        >>> manager = TokenLifecycleManager("session-1", store=TokenStore())
        >>> manager.state
        <TokenState.NO_TOKEN: 'no_token'>
    """

    def __init__(
        self,
        session_id: str,
        store: Optional[TokenStore] = None,
        resolver: Optional[CredentialResolver] = None,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = now_ms,
    ):
        if not session_id:
            raise ValueError("session_id is required")
        self.session_id = session_id
        self.config = config or default_settings
        self.store = store or get_token_store()
        self.resolver = resolver or CredentialResolver(self.config)
        self.http_client = http_client
        self.clock = clock
        self.token_url = self.config.ctrader_token_url
        self.refresh_margin_ms = self.config.token_refresh_margin_seconds * 1000
        self.logger = get_logger(__name__)

    # ============================================
    # State
    # ============================================

    @property
    def token(self) -> Optional[Token]:
        return self.store.get(self.session_id)

    @property
    def state(self) -> TokenState:
        if self.store.is_exchanging(self.session_id):
            return TokenState.PENDING
        if self.store.is_revoked(self.session_id):
            return TokenState.REVOKED
        token = self.token
        if token is None:
            return TokenState.NO_TOKEN
        if self._needs_refresh(token, self.clock()):
            return TokenState.EXPIRING
        return TokenState.ACTIVE

    def is_expired(self) -> bool:
        """True when no token is stored, its expiry is unknown, or now >= expires_at."""
        token = self.token
        return token is None or token.is_expired_at(self.clock())

    def _needs_refresh(self, token: Token, now: int) -> bool:
        return token.expires_at is None or token.expires_at - now <= self.refresh_margin_ms

    # ============================================
    # Code Exchange
    # ============================================

    async def exchange_code(self, code: str, redirect_uri: str, mode: str = "live") -> Token:
        """
        Exchange a one-time authorization code for a token pair.

        Args:
            code: Authorization code from the provider redirect
            redirect_uri: The redirect URI registered for the OAuth app
            mode: "live" or "demo" (selects the client credentials)

        Raises:
            ValueError: code or redirect_uri missing
            ConfigurationError: No OAuth client credentials configured
            UpstreamRateLimitedError / UpstreamFormatError / TokenExchangeError /
            UpstreamTimeoutError: Token endpoint failures
        """
        if not code or not redirect_uri:
            raise ValueError("Both code and redirect_uri are required")

        client = self._client_credential(mode)
        self.logger.info(
            f"Token exchange for session {self.session_id[:8]}... "
            f"(mode={mode}, code length={len(code)}, redirect_uri={redirect_uri})"
        )

        self.store.begin_exchange(self.session_id)
        try:
            payload = await self._post_token({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client.key_id,
                "client_secret": client.secret,
            })
            token = self._token_from_payload(payload)
        finally:
            self.store.end_exchange(self.session_id)

        self.store.set(self.session_id, token, mode=mode)
        self.logger.info(f"✓ Token exchange succeeded for session {self.session_id[:8]}...")
        return token

    # ============================================
    # Refresh
    # ============================================

    async def refresh(self) -> Token:
        """
        Exchange the stored refresh token for a new pair.

        Concurrent callers for the same session share one in-flight request.

        Raises:
            NoRefreshTokenError: Nothing to refresh with
            TokenExchangeError: Upstream refused the refresh
        """
        task = self.store.pending(self.session_id)
        if task is None:
            current = self.token
            if current is None or not current.refresh_token:
                raise NoRefreshTokenError(self.session_id)
            task = asyncio.ensure_future(self._do_refresh(current))
            self.store.set_pending(self.session_id, task)
        else:
            self.logger.debug(f"Joining in-flight refresh for session {self.session_id[:8]}...")

        # A cancelled caller must not cancel the refresh other callers wait on
        return await asyncio.shield(task)

    async def _do_refresh(self, current: Token) -> Token:
        mode = self.store.mode(self.session_id)
        client = self._client_credential(mode)
        self.logger.info(f"Refreshing token for session {self.session_id[:8]}... (mode={mode})")

        payload = await self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": client.key_id,
            "client_secret": client.secret,
        })
        token = self._token_from_payload(payload, previous=current)

        if self.store.is_revoked(self.session_id):
            self.logger.warning(f"Session {self.session_id[:8]}... revoked during refresh; discarding token")
            raise NoRefreshTokenError(self.session_id)

        stored = self.store.get(self.session_id)
        if stored is not None and stored is not current:
            # A code exchange linked a new token while this refresh was in flight
            self.logger.info(f"Session {self.session_id[:8]}... re-linked during refresh; keeping the newer token")
            return stored

        self.store.set(self.session_id, token, mode=mode)
        self.logger.info(f"✓ Token refreshed for session {self.session_id[:8]}...")
        return token

    # ============================================
    # Authenticated Call Entry Point
    # ============================================

    async def auth_header(self) -> str:
        """
        Bearer header for the current session.

        Refreshes reactively when the token is expired (failure is fatal for
        this call) and proactively inside the refresh margin (failure is
        logged and the still-valid token is used).

        Raises:
            NoRefreshTokenError: Session has no token at all, or an expired
                token without a refresh token
        """
        token = self.token
        if token is None:
            raise NoRefreshTokenError(self.session_id)

        now = self.clock()
        if token.is_expired_at(now):
            token = await self.refresh()
        elif self._needs_refresh(token, now):
            try:
                token = await self.refresh()
            except AlphaEdgeError as e:
                self.logger.warning(f"Proactive token refresh failed, using current token: {e}")

        return f"Bearer {token.access_token}"

    def revoke(self) -> bool:
        """Drop the session's token (provider sign-out)."""
        return self.store.revoke(self.session_id)

    # ============================================
    # Helpers
    # ============================================

    def _client_credential(self, mode: str) -> Credential:
        """OAuth client id/secret through the shared fallback chain."""
        try:
            return self.resolver.resolve(OAUTH_PROVIDER, mode)
        except MissingCredentialError as e:
            raise ConfigurationError(
                f"Server OAuth client credentials are not configured: {e.message}",
                details=e.details,
            ) from e

    async def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a form to the token endpoint and decode the reply."""
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.token_url, data=form, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
                    response = await client.post(self.token_url, data=form, headers=headers)
        except httpx.TimeoutException:
            self.logger.error(f"Token endpoint timed out after {self.config.request_timeout}s")
            raise UpstreamTimeoutError("Token endpoint timed out", timeout=self.config.request_timeout)
        except httpx.HTTPError as e:
            self.logger.error(f"Token endpoint request failed: {e}")
            raise TokenExchangeError(f"Token endpoint request failed: {e}")

        upstream = UpstreamResponse(
            status=response.status_code,
            content_type=response.headers.get("content-type"),
            text=response.text,
            retry_after=response.headers.get("retry-after"),
        )
        self.logger.debug(f"Token endpoint answered HTTP {upstream.status} ({upstream.content_type})")
        payload = decode_response("Token endpoint", upstream, error_cls=TokenExchangeError, content_type_first=True)

        if not isinstance(payload, dict) or not (payload.get("access_token") or payload.get("accessToken")):
            # Spotware reports some failures as HTTP 200 with an errorCode body
            raise TokenExchangeError("Token endpoint returned no access_token", status=upstream.status, body=payload)
        return payload

    def _token_from_payload(self, payload: Dict[str, Any], previous: Optional[Token] = None) -> Token:
        issued_at = self.clock()
        expires_in = payload.get("expires_in", payload.get("expiresIn"))
        try:
            expires_at = issued_at + int(float(expires_in)) * 1000 if expires_in is not None else None
        except (TypeError, ValueError, OverflowError):
            expires_at = None

        refresh_token = payload.get("refresh_token", payload.get("refreshToken"))
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        return Token(
            access_token=payload.get("access_token") or payload["accessToken"],
            refresh_token=refresh_token,
            issued_at=issued_at,
            expires_at=expires_at,
            token_type=str(payload.get("token_type", payload.get("tokenType", "bearer"))).lower(),
            scope=payload.get("scope"),
        )


def token_response(token: Token, session_id: str) -> Dict[str, Any]:
    """JSON body returned by the token routes."""
    expires_in = (token.expires_at - token.issued_at) // 1000 if token.expires_at is not None else None
    return {
        "access_token": token.access_token,
        "refresh_token": token.refresh_token,
        "token_type": token.token_type,
        "expires_in": expires_in,
        "expires_at": token.expires_at,
        "scope": token.scope,
        "session_id": session_id,
    }
