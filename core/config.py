"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Per-exchange credential pairs in three tiers (live, demo, legacy/unversioned)
- OAuth client credentials for cTrader, with an overridable token endpoint
- Provides type-safe access to configuration values
- Converts comma-separated strings to lists (stub exchanges, CORS origins)

Credential naming:
    <EXCHANGE>_LIVE_API_KEY / <EXCHANGE>_LIVE_API_SECRET     live mode
    <EXCHANGE>_DEMO_API_KEY / <EXCHANGE>_DEMO_API_SECRET     demo mode
    <EXCHANGE>_API_KEY / <EXCHANGE>_API_SECRET               legacy (pre mode split)

    cTrader uses CLIENT_ID / CLIENT_SECRET in place of API_KEY / API_SECRET.

Usage:
    from core.config import settings

    print(settings.bybit_base_url)
    print(settings.stub_exchanges_list)
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.
    Credential fields default to empty strings: an empty value means "tier not
    configured" and the credential resolver moves on to the next tier.
    """

    # ============================================
    # Exchange Endpoints
    # ============================================

    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Binance REST API base URL"
    )

    bybit_base_url: str = Field(
        default="https://api.bybit.com",
        description="Bybit REST API base URL (v5)"
    )

    ctrader_api_base_url: str = Field(
        default="https://openapi.ctrader.com",
        description="cTrader Open API REST base URL"
    )

    ctrader_token_url: str = Field(
        default="https://openapi.ctrader.com/apps/token",
        description="cTrader OAuth2 token endpoint"
    )

    # ============================================
    # Binance Credentials
    # ============================================

    binance_live_api_key: str = Field(default="", description="Binance live API key")
    binance_live_api_secret: str = Field(default="", description="Binance live API secret")
    binance_demo_api_key: str = Field(default="", description="Binance testnet API key")
    binance_demo_api_secret: str = Field(default="", description="Binance testnet API secret")
    binance_api_key: str = Field(default="", description="Legacy Binance API key")
    binance_api_secret: str = Field(default="", description="Legacy Binance API secret")

    # ============================================
    # Bybit Credentials
    # ============================================

    bybit_live_api_key: str = Field(default="", description="Bybit live API key")
    bybit_live_api_secret: str = Field(default="", description="Bybit live API secret")
    bybit_demo_api_key: str = Field(default="", description="Bybit demo API key")
    bybit_demo_api_secret: str = Field(default="", description="Bybit demo API secret")
    bybit_api_key: str = Field(default="", description="Legacy Bybit API key")
    bybit_api_secret: str = Field(default="", description="Legacy Bybit API secret")

    # ============================================
    # cTrader OAuth Client Credentials
    # ============================================

    ctrader_live_client_id: str = Field(default="", description="cTrader live OAuth client id")
    ctrader_live_client_secret: str = Field(default="", description="cTrader live OAuth client secret")
    ctrader_demo_client_id: str = Field(default="", description="cTrader demo OAuth client id")
    ctrader_demo_client_secret: str = Field(default="", description="cTrader demo OAuth client secret")
    ctrader_client_id: str = Field(default="", description="Legacy cTrader OAuth client id")
    ctrader_client_secret: str = Field(default="", description="Legacy cTrader OAuth client secret")

    # ============================================
    # Gateways
    # ============================================

    stub_exchanges: str = Field(
        default="",
        description="Comma-separated exchange ids served by the stub gateway (canned trades)"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Timeouts & Refresh Policy
    # ============================================

    request_timeout: float = Field(
        default=10.0,
        description="Upstream HTTP request timeout in seconds"
    )

    token_refresh_margin_seconds: int = Field(
        default=60,
        description="Refresh OAuth tokens proactively this many seconds before expiry"
    )

    leaderboard_refresh_seconds: int = Field(
        default=30,
        description="Interval between leaderboard re-rank cycles"
    )

    leaderboard_limit: int = Field(
        default=50,
        description="Default number of leaderboard rows returned"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Properties
    # ============================================

    @property
    def stub_exchanges_list(self) -> List[str]:
        """
        Exchange ids that should be served by the stub gateway.

        Example:
            >>> Settings(stub_exchanges="Binance, bybit").stub_exchanges_list
            ['binance', 'bybit']
        """
        return [s.strip().lower() for s in self.stub_exchanges.split(",") if s.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated CORS origins string to a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def get(self, field_name: str) -> Optional[str]:
        """
        Look up a credential field by its settings name.

        Used by the credential resolver, which builds field names from its
        declarative rules (e.g. "bybit_demo_api_key").

        Returns:
            The configured value, or None when the field does not exist
        """
        if field_name not in type(self).model_fields:
            return None
        return getattr(self, field_name)


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def validate_configuration(config: Optional[Settings] = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid

    Secrets are never logged; only whether each OAuth tier is configured.
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    if config.log_level.upper() not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if config.leaderboard_refresh_seconds <= 0:
        raise ValueError("LEADERBOARD_REFRESH_SECONDS must be positive")

    if config.request_timeout <= 0:
        raise ValueError("REQUEST_TIMEOUT must be positive")

    if not config.ctrader_token_url.startswith("http"):
        raise ValueError(f"Invalid CTRADER_TOKEN_URL: '{config.ctrader_token_url}'")

    oauth_tiers = {
        "live": bool(config.ctrader_live_client_id and config.ctrader_live_client_secret),
        "demo": bool(config.ctrader_demo_client_id and config.ctrader_demo_client_secret),
        "legacy": bool(config.ctrader_client_id and config.ctrader_client_secret),
    }

    logger.info("Configuration validated successfully")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")
    logger.info(f"cTrader token endpoint: {config.ctrader_token_url}")
    logger.info(f"cTrader OAuth tiers configured: {', '.join(k for k, v in oauth_tiers.items() if v) or 'none'}")
    if config.stub_exchanges_list:
        logger.warning(f"Stub gateway serving: {', '.join(config.stub_exchanges_list)}")
