"""
Normalized Data Schemas

This module defines Pydantic models for every data shape that crosses a
component boundary in the exchange-integration layer.

Key Principle:
    Regardless of which provider a trade comes from (Binance, Bybit, cTrader or
    the stub gateway), it gets normalized into TradeRecord. Scoring and ranking
    only ever see canonical records, never provider payloads.

Models:
    - Credential: Resolved key/secret pair for one request
    - Token: OAuth access/refresh pair with expiry (epoch ms)
    - SignedRequest: Fully signed outbound HTTP request (single use)
    - TradeRecord: Canonical trade
    - TraderProfile: Aggregated trader statistics
    - Reliability / EloResult: Scoring output
    - LeaderboardEntry: Ranked projection of a profile
    - NormalizationResult: Records plus skip report
    - Request bodies for the HTTP boundary
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Mode = Literal["live", "demo"]
Direction = Literal["buy", "sell"]
TradeSource = Literal["closed-pnl", "orders"]
EloCategory = Literal[
    "Elite", "Professional", "Consistent", "Unstable", "Developing", "Intermediate", "Beginner"
]


# ============================================
# Credentials & Tokens
# ============================================

class Credential(BaseModel):
    """
    Resolved credential pair for a single exchange call.

    Immutable, request-scoped, never persisted. The secret is excluded from
    repr and from serialization so it cannot leak through logs or responses.

    Attributes:
        exchange_id: Exchange the credential belongs to (lowercase)
        key_id: API key (or OAuth client id)
        secret: API secret (or OAuth client secret)
        mode: "live" or "demo"
        source: "request" when supplied by the caller, "environment" otherwise
        degraded: True when a demo request fell back to live credentials
    """

    model_config = ConfigDict(frozen=True)

    exchange_id: str
    key_id: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1, repr=False, exclude=True)
    mode: Mode = "live"
    source: Literal["request", "environment"] = "environment"
    degraded: bool = False

    @field_validator("exchange_id")
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        return v.lower()


class Token(BaseModel):
    """
    OAuth2 token pair owned by the TokenLifecycleManager.

    Attributes:
        access_token: Bearer token
        refresh_token: Refresh token (providers may omit it)
        issued_at: Epoch milliseconds when the token was obtained
        expires_at: Epoch milliseconds (issued_at + expires_in * 1000);
            None means "unknown expiry" and is treated as expired
        token_type: Usually "bearer"
        scope: Granted scope, if the provider reports one
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    issued_at: int = Field(..., ge=0)
    expires_at: Optional[int] = Field(None, ge=0)
    token_type: str = "bearer"
    scope: Optional[str] = None

    def is_expired_at(self, now_ms: int) -> bool:
        """Fail closed: a token without recorded expiry counts as expired."""
        return self.expires_at is None or now_ms >= self.expires_at


class SignedRequest(BaseModel):
    """
    One outbound, fully signed HTTP request.

    Constructed immediately before dispatch and never reused: the embedded
    timestamp invalidates it once the provider's receive window passes.
    """

    model_config = ConfigDict(frozen=True)

    method: Literal["GET", "POST"] = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    query_string: str = ""
    signature: str = ""
    timestamp: int = 0

    @property
    def full_url(self) -> str:
        return f"{self.url}?{self.query_string}" if self.query_string else self.url


# ============================================
# Trades & Profiles
# ============================================

class TradeRecord(BaseModel):
    """
    Canonical Trade Record

    The one trade shape scoring and ranking work with. Created by the
    TradeNormalizer, persisted by the storage collaborator, immutable once
    written except for corrective re-sync (same id replaces the record).

    Invariants:
        - volume >= 0
        - close_time >= open_time when both are present

    Example:
        >>> TradeRecord(
        ...     id="bybit:1a2b", trader_profile_id="p1", symbol="btcusdt",
        ...     direction="buy", entry_price=50000, exit_price=50500,
        ...     volume=0.1, net_profit=50, commission=0.5, exchange="Bybit",
        ... ).symbol
        'BTCUSDT'
    """

    id: str = Field(..., min_length=1)
    trader_profile_id: Optional[str] = None
    symbol: str = Field(..., min_length=1)
    direction: Direction
    entry_price: float = Field(..., ge=0)
    exit_price: Optional[float] = Field(None, ge=0)
    volume: float = Field(..., ge=0)
    net_profit: float = 0.0
    commission: float = 0.0
    open_time: Optional[datetime] = None
    close_time: Optional[datetime] = None
    exchange: str

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()

    @field_validator("exchange")
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        """Ensure exchange is lowercase"""
        return v.lower()

    @model_validator(mode="after")
    def validate_times(self) -> "TradeRecord":
        if self.open_time and self.close_time and self.close_time < self.open_time:
            raise ValueError(
                f"close_time ({self.close_time.isoformat()}) precedes open_time ({self.open_time.isoformat()})"
            )
        return self

    @property
    def is_win(self) -> bool:
        return self.net_profit > 0

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "bybit:1a2b3c",
                "trader_profile_id": "trader-42",
                "symbol": "BTCUSDT",
                "direction": "buy",
                "entry_price": 50000.0,
                "exit_price": 50500.0,
                "volume": 0.1,
                "net_profit": 50.0,
                "commission": 0.55,
                "open_time": "2024-01-01T12:00:00Z",
                "close_time": "2024-01-01T14:30:00Z",
                "exchange": "bybit"
            }
        }
    )


class TraderProfile(BaseModel):
    """
    Aggregated trader statistics, recomputed from the current TradeRecord set.

    Attributes:
        elo_score: Persisted rating; None means "never scored" (the scoring
            engine then uses the 1000 baseline)
        win_rate: Percentage of trades with net_profit > 0, in [0, 100]
    """

    id: str = Field(..., min_length=1)
    nickname: str = ""
    broker: str = ""
    is_live_account: bool = True
    total_trades: int = Field(0, ge=0)
    win_rate: float = Field(0.0, ge=0, le=100)
    elo_score: Optional[float] = Field(None, ge=0)
    updated_at: Optional[datetime] = None


# ============================================
# Scoring
# ============================================

class Reliability(BaseModel):
    """How much weight a trader's score deserves given their history."""

    total_trades: int = Field(..., ge=0)
    confidence_coefficient: float = Field(..., ge=0, le=1)
    data_coverage: float = Field(..., ge=0, le=1)
    reliability_multiplier: float = Field(..., ge=0, le=1)


class Penalty(BaseModel):
    """A deduction applied to the rating, in rating points (negative)."""

    name: str
    points: float = Field(..., le=0)
    reason: str


class EloResult(BaseModel):
    """
    Derived rating for one trader. Recomputed on demand, never mutated.

    Attributes:
        elo_score: Effective score after reliability weighting
        raw_score: Persisted score (or baseline) before weighting
        category: One of 7 ordered bands
        color: Fixed display color of the band
        blocks: Block scores (0-100) behind the rating; empty when no trade
            snapshot was supplied
        penalties: Deductions applied on top of the weighted blocks
        missing_metrics: Metrics the trade data could not support
    """

    elo_score: float = Field(..., ge=0)
    raw_score: float = Field(..., ge=0)
    category: EloCategory
    color: str
    reliability: Reliability
    blocks: Dict[str, float] = Field(default_factory=dict)
    penalties: List[Penalty] = Field(default_factory=list)
    missing_metrics: List[str] = Field(default_factory=list)


class RatingPoint(BaseModel):
    """One entry of a trader's rating history, recorded at each profile rebuild."""

    recorded_at: datetime
    elo_score: float = Field(..., ge=0)
    raw_score: float = Field(..., ge=0)
    category: EloCategory
    total_trades: int = Field(..., ge=0)


class LeaderboardEntry(BaseModel):
    """Ranked projection of a TraderProfile. Rank comes from the sort, never stored."""

    rank: int = Field(..., ge=1)
    trader_profile_id: str
    nickname: str = ""
    elo_result: EloResult
    win_rate: float = Field(..., ge=0, le=100)
    total_trades: int = Field(..., ge=0)


class NormalizationResult(BaseModel):
    """
    Output of one normalization pass: valid records plus the skip report.

    Attributes:
        skipped: Malformed records (one warning each)
        filtered: Well-formed records deliberately left out (unfilled orders,
            deals that are still open)
    """

    exchange: str
    records: List[TradeRecord] = Field(default_factory=list)
    skipped: int = Field(0, ge=0)
    filtered: int = Field(0, ge=0)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================
# HTTP Request Bodies
# ============================================

class CredentialValidationRequest(BaseModel):
    """Body of POST /validate/{exchange_id}."""

    apiKey: Optional[str] = None
    apiSecret: Optional[str] = None


class TokenExchangeRequest(BaseModel):
    """Body of POST /oauth/token-exchange."""

    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    account_type: Mode = "live"


class TraderSyncRequest(BaseModel):
    """Body of POST /traders/{profile_id}/sync."""

    exchange: str
    account_type: Mode = "live"
    apiKey: Optional[str] = None
    apiSecret: Optional[str] = None
    nickname: str = ""
    source: Optional[TradeSource] = Field(None, description="Bybit trade source: closed-pnl or orders")
