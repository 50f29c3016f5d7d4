"""
Credential Resolver

Selects which credential pair to use for an exchange call, walking an ordered,
declarative list of resolution rules:

    1. request        apiKey + apiSecret supplied by the caller
    2. mode           <EXCHANGE>_<MODE>_<KEY> / <EXCHANGE>_<MODE>_<SECRET>
    3. legacy         <EXCHANGE>_<KEY> / <EXCHANGE>_<SECRET> (pre mode split)
    4. live fallback  demo only: the live pair, logged as a degraded path

The first rule yielding a pair with both halves non-empty wins. A half-filled
pair never resolves. The same rules serve API key pairs (Binance, Bybit) and
OAuth client pairs (cTrader): only the field names in CREDENTIAL_FIELDS differ.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from core.config import Settings, settings as default_settings
from core.errors import MissingCredentialError, UnsupportedPlatformError
from core.logging import get_logger
from core.schemas import Credential


# exchange id -> (key field suffix, secret field suffix)
CREDENTIAL_FIELDS: Dict[str, Tuple[str, str]] = {
    "binance": ("api_key", "api_secret"),
    "bybit": ("api_key", "api_secret"),
    "ctrader": ("client_id", "client_secret"),
}


@dataclass(frozen=True)
class CredentialRule:
    """
    One tier of the fallback chain.

    Attributes:
        tier: Rule name, reported in logs and errors
        mode: Which mode's variables to read ("live", "demo"), "request" for the
            caller-supplied pair, or None for the unversioned legacy variables
        applies_to: Modes this rule participates in
        degraded: Log a warning when this rule wins
    """

    tier: str
    mode: Optional[str]
    applies_to: Tuple[str, ...] = ("live", "demo")
    degraded: bool = False

    def field_names(self, exchange_id: str, requested_mode: str) -> Optional[Tuple[str, str]]:
        if self.mode == "request":
            return None
        key_suffix, secret_suffix = CREDENTIAL_FIELDS[exchange_id]
        if self.mode is None:
            return f"{exchange_id}_{key_suffix}", f"{exchange_id}_{secret_suffix}"
        mode = requested_mode if self.mode == "requested" else self.mode
        return f"{exchange_id}_{mode}_{key_suffix}", f"{exchange_id}_{mode}_{secret_suffix}"


RESOLUTION_RULES: List[CredentialRule] = [
    CredentialRule(tier="request", mode="request"),
    CredentialRule(tier="mode", mode="requested"),
    CredentialRule(tier="legacy", mode=None),
    CredentialRule(tier="live_fallback", mode="live", applies_to=("demo",), degraded=True),
]


class CredentialResolver:
    """
    Resolve a full Credential for (exchange, mode) or fail naming what is missing.

    Example:
        >>> resolver = CredentialResolver(Settings(bybit_api_key="k", bybit_api_secret="s"))
        >>> resolver.resolve("bybit", "demo").source
        'environment'
    """

    def __init__(self, config: Optional[Settings] = None, rules: Optional[List[CredentialRule]] = None):
        self.config = config or default_settings
        self.rules = rules or RESOLUTION_RULES
        self.logger = get_logger(__name__)

    def supports(self, exchange_id: str) -> bool:
        return exchange_id.lower() in CREDENTIAL_FIELDS

    def resolve(
        self,
        exchange_id: str,
        mode: str = "live",
        request_key: Optional[str] = None,
        request_secret: Optional[str] = None,
    ) -> Credential:
        """
        Walk the rules in order and return the first complete pair.

        Args:
            exchange_id: "binance", "bybit" or "ctrader"
            mode: "live" or "demo"
            request_key: Caller-supplied API key / client id
            request_secret: Caller-supplied API secret / client secret

        Raises:
            UnsupportedPlatformError: Unknown exchange id
            MissingCredentialError: No rule produced a full pair
        """
        exchange_id = exchange_id.lower()
        if exchange_id not in CREDENTIAL_FIELDS:
            raise UnsupportedPlatformError(exchange_id, available=sorted(CREDENTIAL_FIELDS))
        if mode not in ("live", "demo"):
            raise ValueError(f"Invalid mode '{mode}'. Must be 'live' or 'demo'")

        checked: List[str] = []

        for rule in self.rules:
            if mode not in rule.applies_to:
                continue

            fields = rule.field_names(exchange_id, mode)
            if fields is None:
                key, secret = request_key, request_secret
                checked.append("request apiKey/apiSecret")
                source = "request"
            else:
                key, secret = self.config.get(fields[0]), self.config.get(fields[1])
                checked.append(f"{fields[0].upper()}/{fields[1].upper()}")
                source = "environment"

            if key and secret:
                if rule.degraded:
                    self.logger.warning(
                        f"No demo credentials for {exchange_id}; falling back to live credentials ({rule.tier})"
                    )
                else:
                    self.logger.debug(f"Resolved {exchange_id} ({mode}) credentials from tier '{rule.tier}'")
                return Credential(
                    exchange_id=exchange_id,
                    key_id=key,
                    secret=secret,
                    mode=mode,
                    source=source,
                    degraded=rule.degraded,
                )

        self.logger.error(f"Missing credentials for {exchange_id} ({mode}); checked: {', '.join(checked)}")
        raise MissingCredentialError(exchange_id, mode, checked)
