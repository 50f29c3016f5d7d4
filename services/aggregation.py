"""
Profile Aggregation

Rebuilds a TraderProfile from the current TradeRecord set. Idempotent: the
profile holds no state that is not derived from the trades, apart from the
descriptive fields (nickname, broker, account type) carried over from the
previous version.
"""

from typing import Optional, Sequence

from core.schemas import EloResult, RatingPoint, TradeRecord, TraderProfile
from core.utils.time import current_utc_datetime
from services.scoring import rate


def win_rate(trades: Sequence[TradeRecord]) -> float:
    """
    Percentage of trades with net_profit > 0.

    Example:
        >>> win_rate([])
        0.0
    """
    if not trades:
        return 0.0
    wins = sum(1 for t in trades if t.net_profit > 0)
    return round(wins / len(trades) * 100, 4)


def build_profile(
    profile_id: str,
    trades: Sequence[TradeRecord],
    previous: Optional[TraderProfile] = None,
    nickname: Optional[str] = None,
    broker: Optional[str] = None,
    is_live_account: Optional[bool] = None,
) -> TraderProfile:
    """
    Aggregate trades into a TraderProfile.

    Args:
        profile_id: Trader profile id
        trades: Every stored trade of the trader (all providers)
        previous: Prior profile, for descriptive fields
        nickname / broker / is_live_account: Overrides for descriptive fields

    Returns:
        TraderProfile with total_trades, win_rate and elo_score recomputed
    """
    if broker is None:
        exchanges = sorted({t.exchange for t in trades})
        broker = ", ".join(exchanges) if exchanges else (previous.broker if previous else "")

    return TraderProfile(
        id=profile_id,
        nickname=nickname or (previous.nickname if previous else "") or profile_id,
        broker=broker,
        is_live_account=is_live_account if is_live_account is not None else (
            previous.is_live_account if previous else True
        ),
        total_trades=len(trades),
        win_rate=win_rate(trades),
        elo_score=rate(trades),
        updated_at=current_utc_datetime(),
    )


def rating_point(profile: TraderProfile, result: EloResult) -> RatingPoint:
    """History entry for a freshly rebuilt profile and its EloResult."""
    return RatingPoint(
        recorded_at=profile.updated_at or current_utc_datetime(),
        elo_score=result.elo_score,
        raw_score=result.raw_score,
        category=result.category,
        total_trades=profile.total_trades,
    )
