"""
Exchange Manager: Central Registry for Provider Gateways

The ExchangeManager maps exchange ids to ExchangeGateway instances and is the
single routing point for provider calls.

Routing rules:
    - An unknown exchange id fails with UnsupportedPlatformError before any
      credential resolution, signing or network I/O.
    - Exchange ids listed in STUB_EXCHANGES are served by StubGateway instead
      of the real gateway. The swap happens here, at registration time, never
      inside a gateway.

Example Usage:
    manager = get_manager()
    await manager.initialize_all()

    payload = await manager.call("bybit", "/v5/account/wallet-balance",
                                 {"accountType": "UNIFIED"}, credential)
"""

from typing import Any, Dict, List, Optional

from core.config import Settings, settings as default_settings
from core.errors import UnsupportedPlatformError
from core.exchange_interface import ExchangeGateway
from core.logging import logger


class ExchangeManager:
    """
    Central Manager for Provider Gateways

    Attributes:
        gateways: Dictionary mapping exchange ids to gateway instances
                  Example: {"binance": BinanceGateway(), "bybit": StubGateway("bybit")}

    Example:
        >>> manager = ExchangeManager()
        >>> manager.list_exchanges()
        ['binance', 'bybit', 'ctrader']
        >>> manager.get_gateway("kraken")
        Traceback (most recent call last):
        UnsupportedPlatformError: [unsupported_platform] Platform 'kraken' is not supported...
    """

    def __init__(self, config: Optional[Settings] = None, gateways: Optional[Dict[str, ExchangeGateway]] = None):
        """
        Register all gateways.

        Gateway instances are created but not initialized here.
        Call initialize_all() to open HTTP sessions.

        Args:
            config: Settings (STUB_EXCHANGES, base URLs, timeouts)
            gateways: Explicit registry, bypassing the defaults (tests)
        """
        self.config = config or default_settings

        if gateways is not None:
            self.gateways: Dict[str, ExchangeGateway] = {k.lower(): v for k, v in gateways.items()}
        else:
            self.gateways = self._build_default_gateways()

        stubbed = [name for name, gw in self.gateways.items() if gw.auth_scheme == "none"]
        logger.info(
            f"ExchangeManager initialized with {len(self.gateways)} gateway(s): {', '.join(self.gateways.keys())}"
            + (f" (stubbed: {', '.join(stubbed)})" if stubbed else "")
        )

    def _build_default_gateways(self) -> Dict[str, ExchangeGateway]:
        # Import here to avoid circular imports
        # Each gateway module imports from core, so we can't import at module level
        from exchanges.binance import BinanceGateway
        from exchanges.bybit import BybitGateway
        from exchanges.ctrader import CTraderGateway
        from exchanges.stub import StubGateway

        factories = {
            "binance": lambda: BinanceGateway(self.config),
            "bybit": lambda: BybitGateway(self.config),
            "ctrader": lambda: CTraderGateway(self.config),
        }

        stubbed = set(self.config.stub_exchanges_list)
        gateways: Dict[str, ExchangeGateway] = {}
        for name, factory in factories.items():
            gateways[name] = StubGateway(name) if name in stubbed else factory()

        # Stub-only ids (no real gateway yet) are allowed too
        for name in sorted(stubbed - set(factories)):
            gateways[name] = StubGateway(name)

        return gateways

    # ============================================
    # Gateway Retrieval Methods
    # ============================================

    def get_gateway(self, name: str) -> ExchangeGateway:
        """
        Get a gateway by exchange id.

        Raises:
            UnsupportedPlatformError: If the exchange is not registered
        """
        key = (name or "").lower()

        if key not in self.gateways:
            logger.error(f"Exchange '{name}' not found. Available: {', '.join(self.gateways.keys())}")
            raise UnsupportedPlatformError(name, available=self.list_exchanges())

        return self.gateways[key]

    def has_exchange(self, name: str) -> bool:
        return (name or "").lower() in self.gateways

    def list_exchanges(self) -> List[str]:
        return list(self.gateways.keys())

    # ============================================
    # Routing
    # ============================================

    async def call(self, exchange_id: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                   auth: Any = None) -> Any:
        """
        Route one authenticated call to the exchange's gateway.

        Raises:
            UnsupportedPlatformError: Unknown exchange id (no I/O attempted)
            UnsupportedPlatformError: Gateway does not allow raw calls
        """
        gateway = self.get_gateway(exchange_id)
        if not gateway.supports("proxy"):
            raise UnsupportedPlatformError(exchange_id, reason=f"Platform '{exchange_id}' does not allow proxied calls")
        return await gateway.call(endpoint, params, auth)

    async def fetch_trades(self, exchange_id: str, auth: Any = None, **params) -> Any:
        gateway = self.get_gateway(exchange_id)
        if not gateway.supports("trades"):
            raise UnsupportedPlatformError(exchange_id, reason=f"Platform '{exchange_id}' does not expose trades")
        return await gateway.fetch_trades(auth, **params)

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """
        Initialize all registered gateways.

        A gateway that fails to initialize is logged and skipped; the others
        keep working.
        """
        logger.info("Initializing all gateways...")

        for name, gateway in self.gateways.items():
            try:
                await gateway.initialize()
            except Exception as e:
                logger.error(f"✗ Failed to initialize {name}: {e}")

        logger.info("All gateways initialized")

    async def shutdown_all(self) -> None:
        logger.info("Shutting down all gateways...")

        for name, gateway in self.gateways.items():
            try:
                await gateway.shutdown()
            except Exception as e:
                logger.error(f"✗ Error shutting down {name}: {e}")

        logger.info("All gateways shut down")

    # ============================================
    # Health Check Methods
    # ============================================

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Check health status of all gateways.

        Returns:
            Dict[str, bool]: exchange id -> reachable
        """
        health_status = {}
        for name, gateway in self.gateways.items():
            try:
                health_status[name] = await gateway.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {name}: {e}")
                health_status[name] = False

        return health_status

    # ============================================
    # Capability Queries
    # ============================================

    def describe(self) -> List[Dict[str, Any]]:
        """Registry summary for the /exchanges route."""
        return [
            {
                "id": name,
                "auth_scheme": gateway.auth_scheme,
                "stub": gateway.auth_scheme == "none",
                "capabilities": dict(gateway.capabilities),
            }
            for name, gateway in self.gateways.items()
        ]

    def get_exchanges_with_feature(self, feature: str) -> List[str]:
        return [name for name, gateway in self.gateways.items() if gateway.supports(feature)]

    def __repr__(self) -> str:
        return f"<ExchangeManager(gateways={list(self.gateways.keys())})>"

    def __len__(self) -> int:
        return len(self.gateways)


# ============================================
# Global Manager Instance
# ============================================

_manager: Optional[ExchangeManager] = None


def get_manager() -> ExchangeManager:
    """
    Get the global ExchangeManager instance (singleton pattern).

    Example:
        >>> from core.exchange_manager import get_manager
        >>> gateway = get_manager().get_gateway("bybit")
    """
    global _manager
    if _manager is None:
        _manager = ExchangeManager()
        logger.debug("Created global ExchangeManager instance")
    return _manager
