"""
Trade Normalizer

Maps provider-shaped trade payloads onto the canonical TradeRecord.

Every provider row is first parsed into a strict intermediate model with
explicit required/optional fields (BybitClosedPnl, BybitOrder, BinanceTrade,
CTraderDeal, StubTrade). Upstream schema drift therefore fails at the
intermediate model for that one row, which is skipped and reported; the rest
of the batch still normalizes.

Output order is not guaranteed to follow input order (rows sharing an id
collapse to the last one seen).
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.errors import NormalizationSkipWarning, UnsupportedPlatformError
from core.logging import get_logger
from core.schemas import NormalizationResult, TradeRecord
from core.utils.time import parse_timestamp


logger = get_logger(__name__)


# ============================================
# Provider Intermediate Models
# ============================================

class _ProviderRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BybitClosedPnl(_ProviderRow):
    """Row of GET /v5/position/closed-pnl. Numbers arrive as strings."""

    orderId: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    side: Literal["Buy", "Sell"]
    qty: float
    avgEntryPrice: float
    avgExitPrice: Optional[float] = None
    closedPnl: float
    openFee: float = 0.0
    closeFee: float = 0.0
    createdTime: Optional[int] = None
    updatedTime: Optional[int] = None

    @property
    def direction(self) -> str:
        # `side` is the closing order; a Sell closes a long position
        return "buy" if self.side == "Sell" else "sell"


class BybitOrder(_ProviderRow):
    """Row of GET /v5/order/history."""

    orderId: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    side: Literal["Buy", "Sell"]
    orderStatus: str
    avgPrice: Optional[float] = None
    cumExecQty: float = 0.0
    cumExecFee: float = 0.0
    createdTime: Optional[int] = None
    updatedTime: Optional[int] = None

    @field_validator("avgPrice", mode="before")
    @classmethod
    def empty_price(cls, v: Any) -> Any:
        return None if v == "" else v


class BinanceTrade(_ProviderRow):
    """Row of GET /api/v3/myTrades (spot) or /fapi/v1/userTrades (futures)."""

    id: int
    symbol: str = Field(..., min_length=1)
    price: float
    qty: float
    commission: float = 0.0
    time: int
    isBuyer: Optional[bool] = None
    side: Optional[Literal["BUY", "SELL"]] = None
    realizedPnl: Optional[float] = None

    @property
    def direction(self) -> str:
        if self.isBuyer is not None:
            return "buy" if self.isBuyer else "sell"
        if self.side is not None:
            return self.side.lower()
        raise ValueError("neither isBuyer nor side present")


class CTraderCloseDetail(_ProviderRow):
    entryPrice: Optional[float] = None
    grossProfit: Optional[int] = None
    commission: Optional[int] = None
    swap: Optional[int] = None
    moneyDigits: Optional[int] = None


class CTraderDeal(_ProviderRow):
    """
    Deal from the cTrader Open API.

    Integer prices and volumes are scaled by 100000, integer profit is in cents.
    """

    dealId: Union[int, str]
    symbol: Optional[str] = Field(None, alias="symbolName")
    symbolId: Optional[Union[int, str]] = None
    tradeSide: Union[int, str]
    volume: Union[int, float]
    executionPrice: Optional[Union[int, float]] = Field(None, alias="executedPrice")
    profit: Optional[Union[int, float]] = None
    commission: Optional[Union[int, float]] = None
    createTimestamp: Optional[int] = None
    closeTimestamp: Optional[int] = None
    closePositionDetail: Optional[CTraderCloseDetail] = None

    @property
    def is_closed(self) -> bool:
        return bool(self.closeTimestamp and self.closeTimestamp > 0)

    @property
    def direction(self) -> str:
        side = str(self.tradeSide).upper()
        if side in ("1", "BUY"):
            return "buy"
        if side in ("2", "SELL"):
            return "sell"
        raise ValueError(f"unknown tradeSide {self.tradeSide!r}")


class StubTrade(_ProviderRow):
    """Canned trade from StubGateway (already close to canonical)."""

    id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    direction: str
    volume: float
    price: float
    exit_price: Optional[float] = None
    net_profit: float = 0.0
    commission: float = 0.0
    time: Optional[datetime] = None
    close_time: Optional[datetime] = None

    @field_validator("direction")
    @classmethod
    def lower_direction(cls, v: str) -> str:
        v = v.lower()
        if v not in ("buy", "sell"):
            raise ValueError(f"unknown direction {v!r}")
        return v


# ============================================
# Mapping to TradeRecord
# ============================================

def _ms(value: Optional[int]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


def _scaled(value: Optional[Union[int, float]], factor: float) -> Optional[float]:
    if value is None:
        return None
    return value / factor if isinstance(value, int) else float(value)


def map_bybit_closed_pnl(row: BybitClosedPnl, profile_id: Optional[str]) -> TradeRecord:
    return TradeRecord(
        id=f"bybit:{row.orderId}",
        trader_profile_id=profile_id,
        symbol=row.symbol,
        direction=row.direction,
        entry_price=row.avgEntryPrice,
        exit_price=row.avgExitPrice,
        volume=row.qty,
        net_profit=row.closedPnl,
        commission=row.openFee + row.closeFee,
        open_time=_ms(row.createdTime),
        close_time=_ms(row.updatedTime),
        exchange="bybit",
    )


def map_bybit_order(row: BybitOrder, profile_id: Optional[str]) -> Optional[TradeRecord]:
    if row.orderStatus != "Filled":
        return None
    if row.avgPrice is None:
        raise ValueError("filled order without avgPrice")
    return TradeRecord(
        id=f"bybit:{row.orderId}",
        trader_profile_id=profile_id,
        symbol=row.symbol,
        direction=row.side.lower(),
        entry_price=row.avgPrice,
        volume=row.cumExecQty,
        # Raw fills carry no realized P&L
        net_profit=0.0,
        commission=row.cumExecFee,
        open_time=_ms(row.createdTime),
        close_time=_ms(row.updatedTime),
        exchange="bybit",
    )


def map_binance_trade(row: BinanceTrade, profile_id: Optional[str]) -> TradeRecord:
    executed = _ms(row.time)
    return TradeRecord(
        id=f"binance:{row.symbol}:{row.id}",
        trader_profile_id=profile_id,
        symbol=row.symbol,
        direction=row.direction,
        entry_price=row.price,
        volume=row.qty,
        net_profit=row.realizedPnl or 0.0,
        commission=row.commission,
        open_time=executed,
        close_time=executed,
        exchange="binance",
    )


def map_ctrader_deal(row: CTraderDeal, profile_id: Optional[str]) -> Optional[TradeRecord]:
    if not row.is_closed:
        return None

    detail = row.closePositionDetail
    if row.profit is not None:
        net_profit = _scaled(row.profit, 100)
    elif detail is not None and detail.grossProfit is not None:
        factor = 10 ** (detail.moneyDigits if detail.moneyDigits is not None else 2)
        net_profit = (detail.grossProfit + (detail.commission or 0) + (detail.swap or 0)) / factor
    else:
        raise ValueError("closed deal without profit")

    price = _scaled(row.executionPrice, 100000)
    if price is None:
        raise ValueError("deal without execution price")

    entry_price = detail.entryPrice if detail is not None and detail.entryPrice is not None else price
    symbol = row.symbol or (str(row.symbolId) if row.symbolId is not None else None)
    if not symbol:
        raise ValueError("deal without symbol")

    return TradeRecord(
        id=f"ctrader:{row.dealId}",
        trader_profile_id=profile_id,
        symbol=symbol,
        direction=row.direction,
        entry_price=entry_price,
        exit_price=price,
        volume=_scaled(row.volume, 100000),
        net_profit=net_profit,
        commission=abs(_scaled(row.commission, 100) or 0.0),
        open_time=_ms(row.createTimestamp),
        close_time=_ms(row.closeTimestamp),
        exchange="ctrader",
    )


def map_stub_trade(row: StubTrade, profile_id: Optional[str], exchange: str) -> TradeRecord:
    return TradeRecord(
        id=f"{exchange}:{row.id}",
        trader_profile_id=profile_id,
        symbol=row.symbol,
        direction=row.direction,
        entry_price=row.price,
        exit_price=row.exit_price,
        volume=row.volume,
        net_profit=row.net_profit,
        commission=row.commission,
        open_time=parse_timestamp(row.time) if row.time else None,
        close_time=parse_timestamp(row.close_time) if row.close_time else None,
        exchange=exchange,
    )


# ============================================
# Envelope Unwrapping
# ============================================

ENVELOPE_KEYS = ("list", "deal", "deals", "trades", "data", "rows")


def unwrap(payload: Any) -> List[Any]:
    """
    Pull the row list out of a provider envelope.

    Example:
        >>> unwrap({"retCode": 0, "result": {"list": [{"a": 1}]}})
        [{'a': 1}]
        >>> unwrap({"deal": [1, 2]})
        [1, 2]

    Raises:
        ValueError: Nothing list-like found
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if "result" in payload and isinstance(payload["result"], (dict, list)):
            return unwrap(payload["result"])
        for key in ENVELOPE_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
    raise ValueError(f"unrecognized payload envelope ({type(payload).__name__})")


# ============================================
# Normalizer
# ============================================

Adapter = Tuple[Type[_ProviderRow], Callable[..., Optional[TradeRecord]]]


class TradeNormalizer:
    """
    normalize(exchange_id, payload) -> NormalizationResult

    Example:
        >>> result = TradeNormalizer().normalize("bybit", {"result": {"list": [row]}})
        >>> result.records[0].entry_price
        50000.0
    """

    SUPPORTED = ("bybit", "binance", "ctrader")

    def __init__(self):
        self._logger = logger

    def normalize(self, exchange_id: str, payload: Any,
                  trader_profile_id: Optional[str] = None) -> NormalizationResult:
        exchange = exchange_id.lower()
        is_stub = isinstance(payload, dict) and payload.get("stub") is True
        if not is_stub and exchange not in self.SUPPORTED:
            raise UnsupportedPlatformError(exchange_id, available=list(self.SUPPORTED))

        result = NormalizationResult(exchange=exchange)

        try:
            rows = unwrap(payload)
        except ValueError as e:
            self._skip(result, exchange, -1, str(e))
            return result

        records: Dict[str, TradeRecord] = {}
        for index, raw in enumerate(rows):
            try:
                model_cls, mapper = self._select(exchange, raw, is_stub)
                row = model_cls.model_validate(raw)
                record = mapper(row, trader_profile_id, exchange) if is_stub else mapper(row, trader_profile_id)
            except (ValueError, TypeError) as e:
                self._skip(result, exchange, index, _reason(e))
                continue

            if record is None:
                result.filtered += 1
                continue
            records[record.id] = record

        result.records = list(records.values())
        self._logger.info(
            f"Normalized {len(result.records)} {exchange} trade(s) "
            f"(skipped={result.skipped}, filtered={result.filtered})"
        )
        return result

    def _select(self, exchange: str, raw: Any, is_stub: bool) -> Adapter:
        if not isinstance(raw, dict):
            raise TypeError(f"expected an object, got {type(raw).__name__}")
        if is_stub:
            return StubTrade, map_stub_trade
        if exchange == "bybit":
            if "orderStatus" in raw:
                return BybitOrder, map_bybit_order
            return BybitClosedPnl, map_bybit_closed_pnl
        if exchange == "binance":
            return BinanceTrade, map_binance_trade
        return CTraderDeal, map_ctrader_deal

    def _skip(self, result: NormalizationResult, exchange: str, index: int, reason: str) -> None:
        warning = NormalizationSkipWarning(exchange, index, reason)
        result.skipped += 1
        result.warnings.append(warning.to_dict())
        self._logger.warning(str(warning))


def _reason(error: Exception) -> str:
    errors = getattr(error, "errors", None)
    if callable(errors):
        parts = []
        for item in errors()[:3]:
            loc = ".".join(str(p) for p in item.get("loc", ())) or "record"
            parts.append(f"{loc}: {item.get('msg')}")
        return "; ".join(parts)
    return str(error)


def normalize_many(batches: Iterable[Tuple[str, Any]], trader_profile_id: Optional[str] = None) -> List[TradeRecord]:
    """Normalize several (exchange_id, payload) batches into one record list."""
    normalizer = TradeNormalizer()
    records: List[TradeRecord] = []
    for exchange_id, payload in batches:
        records.extend(normalizer.normalize(exchange_id, payload, trader_profile_id).records)
    return records
