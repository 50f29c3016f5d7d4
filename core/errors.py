"""
Error Taxonomy

Every failure raised by the exchange-integration layer derives from
AlphaEdgeError and carries a stable `kind` string, a human readable message
and, where one exists, the upstream status/body for diagnosis.

Hierarchy:
    AlphaEdgeError
    ├── ConfigurationError           missing/empty secret or server setting
    ├── InvalidRequestError          caller parameter outside the accepted values
    ├── MissingCredentialError       no tier of the fallback chain resolved
    ├── UnsupportedPlatformError     unknown exchange id (raised before any I/O)
    ├── NoRefreshTokenError          refresh requested with nothing stored
    └── UpstreamError                upstream non-2xx (status + body)
        ├── UpstreamRateLimitedError carries retry_after (seconds)
        ├── UpstreamFormatError      non-JSON body (usually an HTML error page)
        ├── TokenExchangeError       OAuth token endpoint failure
        └── UpstreamTimeoutError     caller-side timeout

NormalizationSkipWarning is not raised: the normalizer collects one per skipped
record and returns them next to the records that did normalize.

Nothing in this layer retries automatically. Callers decide on backoff from
`retry_after` and `status`.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil import parser as dateparser


DEFAULT_RETRY_AFTER_SECONDS = 300


class AlphaEdgeError(Exception):
    """Base exception for the exchange-integration layer."""

    kind = "internal_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body returned to API clients."""
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class ConfigurationError(AlphaEdgeError):
    kind = "configuration_error"
    http_status = 500


class InvalidRequestError(AlphaEdgeError):
    kind = "invalid_request"
    http_status = 400


class MissingCredentialError(AlphaEdgeError):
    """
    Raised when no tier of the credential fallback chain produced a full pair.

    Attributes:
        exchange_id: Exchange the credential was requested for
        mode: "live" or "demo"
        checked: Variable sets that were looked at, in evaluation order
    """

    kind = "missing_credential"
    http_status = 400

    def __init__(self, exchange_id: str, mode: str, checked: list):
        self.exchange_id = exchange_id
        self.mode = mode
        self.checked = list(checked)
        message = (
            f"No credentials for {exchange_id} ({mode}): provide them in the request "
            f"or set one of {', '.join(self.checked)}"
        )
        super().__init__(message, details={"exchange": exchange_id, "mode": mode, "checked": self.checked})


class UnsupportedPlatformError(AlphaEdgeError):
    kind = "unsupported_platform"
    http_status = 400

    def __init__(self, exchange_id: str, available: Optional[list] = None, reason: Optional[str] = None):
        self.exchange_id = exchange_id
        message = reason or f"Platform '{exchange_id}' is not supported"
        if available:
            message += f". Available: {', '.join(available)}"
        super().__init__(message, details={"platform": exchange_id})


class NoRefreshTokenError(AlphaEdgeError):
    kind = "no_refresh_token"
    http_status = 401

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("No refresh token stored for this session")


class UpstreamError(AlphaEdgeError):
    """
    Upstream provider answered with a failure.

    Attributes:
        status: Upstream HTTP status (None when the connection itself failed)
        body: Parsed JSON body when available, raw text otherwise
    """

    kind = "upstream_error"
    http_status = 502

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status = status
        self.body = body
        merged = {"status": status, "body": body}
        merged.update(details or {})
        super().__init__(message, details=merged)

    @property
    def response_status(self) -> int:
        """HTTP status to forward to our own client."""
        return self.status if self.status and self.status >= 400 else self.http_status


class UpstreamRateLimitedError(UpstreamError):
    kind = "upstream_rate_limited"
    http_status = 429

    def __init__(self, message: str, retry_after: Optional[int] = None, status: int = 429, body: Any = None):
        self.retry_after = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
        super().__init__(message, status=status, body=body, details={"retry_after": self.retry_after})

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retry_after"] = self.retry_after
        return body


class UpstreamFormatError(UpstreamError):
    kind = "upstream_format_error"
    http_status = 400

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None,
                 content_type: Optional[str] = None):
        self.content_type = content_type
        super().__init__(message, status=status, body=body, details={"content_type": content_type})

    @property
    def response_status(self) -> int:
        return self.http_status


class TokenExchangeError(UpstreamError):
    kind = "token_exchange_failed"


class UpstreamTimeoutError(UpstreamError):
    kind = "upstream_timeout"
    http_status = 504

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message, status=None, body=None, details={"timeout": timeout})


class NormalizationSkipWarning(UserWarning):
    """
    One skipped record during trade normalization.

    Attributes:
        exchange: Exchange the payload came from
        index: Position of the record in the raw payload
        reason: Why it was skipped
    """

    def __init__(self, exchange: str, index: int, reason: str):
        super().__init__(f"{exchange} record #{index} skipped: {reason}")
        self.exchange = exchange
        self.index = index
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"exchange": self.exchange, "index": self.index, "reason": self.reason}


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> int:
    """
    Seconds to wait from a Retry-After header.

    Accepts the delay-seconds form and the HTTP-date form. Absent, non-finite
    or unparseable values give the default.

    Example:
        >>> parse_retry_after("30")
        30
        >>> parse_retry_after("inf")
        300
    """
    if not value or not value.strip():
        return DEFAULT_RETRY_AFTER_SECONDS
    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        return _seconds_until(text, now or datetime.now(timezone.utc))
    if not math.isfinite(seconds):
        return DEFAULT_RETRY_AFTER_SECONDS
    return max(0, int(seconds))


def _seconds_until(http_date: str, now: datetime) -> int:
    try:
        when = dateparser.parse(http_date)
    except (ValueError, OverflowError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, math.ceil((when - now).total_seconds()))
