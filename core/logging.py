"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire application.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import logger, get_logger

    logger.info("Application started")
    log = get_logger(__name__)  # "alphaedge.<module>"

Secrets policy:
    API secrets, client secrets, signatures and tokens are never passed to the
    logger. Helpers below redact credential-looking parameters before logging.

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional


APP_LOGGER_NAME = "alphaedge"

# Query/body keys that must never reach the log output
REDACTED_KEYS = {
    "apikey", "api_key", "apisecret", "api_secret", "secret", "signature", "sign",
    "client_secret", "code", "access_token", "refresh_token",
}


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include module name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] alphaedge: Application started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, 'log_level') else "INFO"
except ImportError:
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Child of the "alphaedge" logger

    Example:
        # In exchanges/bybit/api_client.py:
        logger = get_logger(__name__)  # "alphaedge.exchanges.bybit.api_client"
    """
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# ============================================
# Log Helper Functions
# ============================================

def redact(params: Optional[dict]) -> dict:
    """
    Copy of params with credential-looking values masked.

    Example:
        >>> redact({"symbol": "BTCUSDT", "apiSecret": "abc"})
        {'symbol': 'BTCUSDT', 'apiSecret': '***'}
    """
    if not params:
        return {}
    return {k: ("***" if k.lower() in REDACTED_KEYS else v) for k, v in params.items()}


def log_api_request(exchange: str, endpoint: str, params: dict = None) -> None:
    """
    Log an outbound API request with consistent formatting.

    Example:
        >>> log_api_request("bybit", "/v5/position/closed-pnl", {"category": "linear"})
        [DEBUG] API Request: bybit /v5/position/closed-pnl | Params: {'category': 'linear'}
    """
    if params:
        logger.debug(f"API Request: {exchange} {endpoint} | Params: {redact(params)}")
    else:
        logger.debug(f"API Request: {exchange} {endpoint}")


def log_api_response(exchange: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an API response with status and timing information.

    Example:
        >>> log_api_response("bybit", "/v5/position/closed-pnl", 200, 0.342)
        [DEBUG] API Response: bybit /v5/position/closed-pnl | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    level = logging.WARNING if status >= 400 else logging.DEBUG
    logger.log(level, f"API Response: {exchange} {endpoint} | Status: {status}{time_str}")


logger.debug("Logging system initialized")
