"""
Exchange Gateway: Abstract Contract for All Providers

This module defines the abstract base class that every provider gateway must
implement. The API routes and services work with ExchangeGateway, not with a
specific provider, so real gateways and the stub gateway are interchangeable.

Authentication:
    Gateways declare how they authenticate via `auth_scheme`:

    - "signature": `auth` is a resolved Credential. The gateway builds a
      SignedRequest with the SignatureEngine immediately before dispatch.
    - "oauth": `auth` is anything exposing `async auth_header() -> str`
      (the TokenLifecycleManager). Callers never read raw tokens.
    - "none": `auth` is ignored (stub gateway).

Failure contract:
    2xx returns the parsed payload. Anything else raises from the
    UpstreamError family carrying upstream status and body. A failure is
    never coerced into an empty success value, and nothing here retries.

Capabilities System:
    capabilities = {
        "trades": True,     # fetch_trades() supported
        "validate": True,   # validate_credentials() supported
        "proxy": True,      # raw call() passthrough allowed
    }
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.errors import UpstreamError, UpstreamRateLimitedError


# Upstream statuses that mean "credential rejected" rather than "provider failed"
CREDENTIAL_REJECTION_STATUSES = {400, 401, 403}


def is_credential_rejection(error: UpstreamError) -> bool:
    """True when an upstream failure says the credential itself was refused."""
    if isinstance(error, UpstreamRateLimitedError):
        return False
    return error.status in CREDENTIAL_REJECTION_STATUSES


class ExchangeGateway(ABC):
    """
    Abstract Base Class for Provider Gateways

    Class Attributes:
        name: Unique identifier for the provider (lowercase, e.g. "binance")
        auth_scheme: "signature", "oauth" or "none"
        capabilities: Which operations this gateway supports

    Abstract Methods:
        - call: Authenticated raw call to one endpoint
        - fetch_trades: Raw trade history payload
        - validate_credentials: Whether a credential is accepted upstream

    Optional Methods:
        - initialize / shutdown: Open and close HTTP sessions
        - health_check: Lightweight unauthenticated reachability check
    """

    name: str

    auth_scheme: str = "signature"

    capabilities: Dict[str, bool] = {
        "trades": False,
        "validate": False,
        "proxy": False,
    }

    # ============================================
    # Provider Calls
    # ============================================

    @abstractmethod
    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None, auth: Any = None) -> Any:
        """
        Issue one authenticated GET to a provider endpoint.

        Args:
            endpoint: Path relative to the provider base URL (e.g. "/v5/account/wallet-balance")
            params: Query parameters
            auth: Credential for signature gateways, auth-header provider for OAuth gateways

        Returns:
            Parsed JSON payload from a 2xx reply

        Raises:
            UpstreamError: Non-2xx reply (status and body attached)
            UpstreamRateLimitedError: Provider signalled rate limiting
            UpstreamTimeoutError: The call exceeded the configured timeout
        """
        ...

    @abstractmethod
    async def fetch_trades(self, auth: Any = None, **params) -> Any:
        """
        Fetch the raw trade history payload for the authenticated account.

        The payload is returned provider-shaped; the TradeNormalizer owns the
        mapping to TradeRecord.
        """
        ...

    @abstractmethod
    async def validate_credentials(self, auth: Any) -> bool:
        """
        Check whether the provider accepts a credential.

        Returns:
            bool: False when the provider rejects the credential

        Raises:
            UpstreamError: For failures that say nothing about the credential
                (rate limiting, timeouts, provider outages)
        """
        ...

    # ============================================
    # Optional Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """
        Open HTTP sessions. Called by ExchangeManager.initialize_all().

        Should be idempotent (safe to call multiple times).
        """
        pass

    async def shutdown(self) -> None:
        """Close HTTP sessions. Should not raise."""
        pass

    async def health_check(self) -> bool:
        """
        Check if the provider API is reachable.

        Don't raise exceptions; return False on errors.
        """
        return True

    # ============================================
    # Helper Methods
    # ============================================

    def supports(self, feature: str) -> bool:
        """
        Check if this gateway supports a specific operation.

        Example:
            >>> if gateway.supports("trades"):
            ...     payload = await gateway.fetch_trades(credential)
        """
        return self.capabilities.get(feature, False)

    def __repr__(self) -> str:
        """String representation of the gateway."""
        return f"<{self.__class__.__name__}(name='{self.name}', auth='{self.auth_scheme}')>"
