"""
Signature Engine

Computes exchange-specific HMAC-SHA256 signatures over canonical strings and
assembles single-use SignedRequest objects.

Canonicalization schemes:
    timestamp (Binance):
        caller params in their given order, then "timestamp=<ms>".
        With no params the canonical string is exactly "timestamp=<ms>".

    v5 (Bybit v5):
        timestamp + apiKey + recvWindow + sortedQueryString
        recvWindow is fixed at 5000 ms.

    legacy (Bybit pre-v5):
        caller params plus api_key and timestamp, sorted alphabetically by key,
        "key=value" pairs joined by "&".

Every function here is pure: no network, no mutable state. The only impure
input is the millisecond clock, which is injectable and read immediately
before signing so the timestamp stays inside the provider's receive window.
"""

import hashlib
import hmac
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from core.errors import ConfigurationError
from core.schemas import Credential, SignedRequest
from core.utils.time import now_ms


RECV_WINDOW_MS = 5000

SCHEME_TIMESTAMP = "timestamp"
SCHEME_V5 = "v5"
SCHEME_LEGACY = "legacy"


def sign(secret: str, canonical: str) -> str:
    """
    HMAC-SHA256 of the canonical string, hex encoded.

    Raises:
        ConfigurationError: If the secret is absent or empty
    """
    if not secret:
        raise ConfigurationError("Cannot sign request: API secret is missing or empty")
    return hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def _stringify(params: Optional[Mapping]) -> Dict[str, str]:
    return {str(k): str(v) for k, v in (params or {}).items() if v is not None}


def sorted_query(params: Optional[Mapping]) -> str:
    """
    Deterministic query string: keys sorted, values URL-encoded.

    Example:
        >>> sorted_query({"symbol": "BTCUSDT", "category": "linear"})
        'category=linear&symbol=BTCUSDT'
    """
    return urlencode(sorted(_stringify(params).items()))


def timestamp_query(params: Optional[Mapping], timestamp: int) -> str:
    """
    Canonical string for the timestamp scheme.

    Example:
        >>> timestamp_query(None, 1704110400000)
        'timestamp=1704110400000'
        >>> timestamp_query({"type": "SPOT"}, 1704110400000)
        'type=SPOT&timestamp=1704110400000'
    """
    pairs = list(_stringify(params).items())
    pairs.append(("timestamp", str(timestamp)))
    return urlencode(pairs)


def v5_payload(timestamp: int, api_key: str, query_string: str, recv_window: int = RECV_WINDOW_MS) -> str:
    """Canonical string for the Bybit v5 scheme."""
    return f"{timestamp}{api_key}{recv_window}{query_string}"


def legacy_query(api_key: str, timestamp: int, params: Optional[Mapping] = None) -> str:
    """
    Canonical string for the legacy scheme.

    Example:
        >>> legacy_query("KEY", 1704110400000, {"symbol": "BTCUSDT"})
        'api_key=KEY&symbol=BTCUSDT&timestamp=1704110400000'
    """
    merged = _stringify(params)
    merged["api_key"] = api_key
    merged["timestamp"] = str(timestamp)
    return "&".join(f"{k}={v}" for k, v in sorted(merged.items()))


class SignatureEngine:
    """
    Builds SignedRequest objects for signature-based exchanges.

    Attributes:
        clock: Callable returning epoch milliseconds (injectable for tests)

    Example:
        >>> engine = SignatureEngine(clock=lambda: 1704110400000)
        >>> req = engine.build("timestamp", "https://api.binance.com/api/v3/account", credential)
        >>> req.query_string
        'timestamp=1704110400000&signature=...'
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock

    def build(
        self,
        scheme: str,
        url: str,
        credential: Credential,
        params: Optional[Mapping] = None,
        method: str = "GET",
    ) -> SignedRequest:
        """
        Sign one request.

        Args:
            scheme: "timestamp", "v5" or "legacy"
            url: Full endpoint URL without query string
            credential: Resolved credential (key + secret)
            params: Caller query parameters

        Returns:
            SignedRequest with exchange-specific headers and query string

        Raises:
            ConfigurationError: Unknown scheme or empty secret
        """
        if not credential.secret:
            raise ConfigurationError(f"Cannot sign {credential.exchange_id} request: secret is empty")

        # Timestamp is taken as late as possible: right before signing
        timestamp = self.clock()

        if scheme == SCHEME_TIMESTAMP:
            canonical = timestamp_query(params, timestamp)
            signature = sign(credential.secret, canonical)
            return SignedRequest(
                method=method,
                url=url,
                headers={"X-MBX-APIKEY": credential.key_id},
                query_string=f"{canonical}&signature={signature}",
                signature=signature,
                timestamp=timestamp,
            )

        if scheme == SCHEME_V5:
            query_string = sorted_query(params)
            signature = sign(credential.secret, v5_payload(timestamp, credential.key_id, query_string))
            return SignedRequest(
                method=method,
                url=url,
                headers={
                    "X-BAPI-API-KEY": credential.key_id,
                    "X-BAPI-TIMESTAMP": str(timestamp),
                    "X-BAPI-RECV-WINDOW": str(RECV_WINDOW_MS),
                    "X-BAPI-SIGN": signature,
                    "Content-Type": "application/json",
                },
                query_string=query_string,
                signature=signature,
                timestamp=timestamp,
            )

        if scheme == SCHEME_LEGACY:
            canonical = legacy_query(credential.key_id, timestamp, params)
            signature = sign(credential.secret, canonical)
            return SignedRequest(
                method=method,
                url=url,
                headers={"Content-Type": "application/json"},
                query_string=f"{canonical}&sign={signature}",
                signature=signature,
                timestamp=timestamp,
            )

        raise ConfigurationError(f"Unknown signature scheme: {scheme}")
