"""
Scoring Engine

Two pure computations over a trader's trade snapshot:

    rate(trades) -> float
        Derives the persisted rating from trade history. Four blocks are
        scored 0..100 and combined into a 0..100 composite, penalties are
        subtracted, and the result is spread over the rating range:

            composite = (4*P + 3*R + 2*C + 1*H) / 10
            rating    = 1000 + (composite - penalties) * 30   clamped to [1000, 4000]

        P performance      win rate, payoff ratio, expectancy
        R risk control     max drawdown of the cumulative P&L curve
        C consistency      share of profitable months, profit concentration
        H account health   commission drag on gross P&L

        A block with no computable metric scores a neutral 50.

        Penalties (composite units, only when the data supports the metric):
            profit_concentration  top 10% of trades > 60% of profit       15
            risk_spike            largest exposure > 3x / > 5x average    15 / 30
            bot_probability       human variability below 30              10..25

    score(profile, trades) -> EloResult
        Weights the persisted rating by how much history backs it:

            reliability_multiplier = min(1, sqrt(n / 300))
            data_coverage          = share of trades with entry, exit, open and close
            confidence_coefficient = 0.5 + 0.5 * data_coverage     (0 with no trades)
            effective = 1000 + (raw - 1000) * reliability_multiplier * confidence_coefficient

        raw is the persisted elo_score, or 1000 when the profile was never scored.
        Without a trade snapshot, n is the profile's total_trades and coverage
        is taken as full.

Both are deterministic for a given snapshot; "now" never enters the result.
"""

import math
from collections import Counter, defaultdict
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from core.logging import get_logger
from core.schemas import EloResult, Penalty, Reliability, TradeRecord, TraderProfile


logger = get_logger(__name__)

BASELINE = 1000.0
MAX_RATING = 4000.0
FULL_RELIABILITY_TRADES = 300
RATING_POINTS_PER_UNIT = 30

# (inclusive lower bound, category, color), highest first
CATEGORY_BANDS: List[Tuple[float, str, str]] = [
    (3500, "Elite", "#10B981"),
    (3000, "Professional", "#3B82F6"),
    (2500, "Consistent", "#8B5CF6"),
    (2200, "Unstable", "#F59E0B"),
    (1800, "Developing", "#F97316"),
    (1400, "Intermediate", "#0EA5E9"),
    (float("-inf"), "Beginner", "#EF4444"),
]

BLOCK_WEIGHTS = {
    "performance": 4,
    "risk": 3,
    "consistency": 2,
    "health": 1,
}

NEUTRAL_BLOCK = 50.0

PROFIT_CONCENTRATION_LIMIT = 0.6
PROFIT_CONCENTRATION_PENALTY = 15.0
RISK_SPIKE_LIMITS = [(5.0, 30.0), (3.0, 15.0)]
BOT_VARIABILITY_THRESHOLD = 30.0
MIN_TRADES_CONCENTRATION = 10
MIN_TRADES_RISK_SPIKE = 5
MIN_TRADES_VARIABILITY = 10


class Evaluation(NamedTuple):
    rating: float
    blocks: Dict[str, float]
    penalties: List[Penalty]
    missing_metrics: List[str]


# ============================================
# Banding
# ============================================

def categorize(score: float) -> Tuple[str, str]:
    """
    Category and color for a score.

    Example:
        >>> categorize(3500)
        ('Elite', '#10B981')
        >>> categorize(3499.999)
        ('Professional', '#3B82F6')
    """
    for lower, category, color in CATEGORY_BANDS:
        if score >= lower:
            return category, color
    return CATEGORY_BANDS[-1][1], CATEGORY_BANDS[-1][2]


# ============================================
# Reliability
# ============================================

def has_full_data(trade: TradeRecord) -> bool:
    return (
        trade.exit_price is not None
        and trade.open_time is not None
        and trade.close_time is not None
    )


def reliability_for_count(n: int, coverage: float = 1.0) -> Reliability:
    """
    Monotonic in trade count: 0 trades -> 0, 75 -> 0.5, 300+ -> 1.
    """
    if n <= 0:
        return Reliability(total_trades=0, confidence_coefficient=0.0, data_coverage=0.0,
                           reliability_multiplier=0.0)
    return Reliability(
        total_trades=n,
        confidence_coefficient=0.5 + 0.5 * coverage,
        data_coverage=coverage,
        reliability_multiplier=min(1.0, math.sqrt(n / FULL_RELIABILITY_TRADES)),
    )


def reliability(trades: Sequence[TradeRecord]) -> Reliability:
    if not trades:
        return reliability_for_count(0)
    coverage = sum(1 for t in trades if has_full_data(t)) / len(trades)
    return reliability_for_count(len(trades), coverage)


def score(profile: TraderProfile, trades: Optional[Sequence[TradeRecord]] = None) -> EloResult:
    """
    EloResult for a profile and, when given, its trade snapshot.

    Example:
        >>> score(TraderProfile(id="p1", elo_score=3000, total_trades=75)).elo_score
        2000.0
    """
    raw = profile.elo_score if profile.elo_score is not None else BASELINE
    if trades is None:
        rel = reliability_for_count(profile.total_trades)
        evaluation = None
    else:
        rel = reliability(trades)
        evaluation = evaluate(trades)

    effective = BASELINE + (raw - BASELINE) * rel.reliability_multiplier * rel.confidence_coefficient
    effective = max(0.0, effective)
    category, color = categorize(effective)

    return EloResult(
        elo_score=round(effective, 2),
        raw_score=raw,
        category=category,
        color=color,
        reliability=rel,
        blocks=evaluation.blocks if evaluation else {},
        penalties=evaluation.penalties if evaluation else [],
        missing_metrics=evaluation.missing_metrics if evaluation else [],
    )


# ============================================
# Blocks
# ============================================

def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else NEUTRAL_BLOCK


def performance_block(trades: Sequence[TradeRecord]) -> float:
    pnls = [t.net_profit for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [-p for p in pnls if p < 0]

    metrics = [_clamp(len(wins) / len(pnls) * 100)]

    if wins and losses:
        avg_win = sum(wins) / len(wins)
        avg_loss = sum(losses) / len(losses)
        # payoff ratio 0..4 -> 0..100
        metrics.append(_clamp(min(avg_win / avg_loss, 4.0) / 4.0 * 100))
        # expectancy in units of average loss, -2..2 -> 0..100
        expectancy = (len(wins) * avg_win - len(losses) * avg_loss) / len(pnls) / avg_loss
        metrics.append(_clamp(50 + max(-2.0, min(2.0, expectancy)) * 25))

    return _mean(metrics)


def risk_block(trades: Sequence[TradeRecord]) -> Optional[float]:
    ordered = sorted(trades, key=_sort_key)
    gross = sum(abs(t.net_profit) for t in ordered)
    if gross == 0:
        return None

    equity = peak = max_drawdown = 0.0
    for trade in ordered:
        equity += trade.net_profit
        peak = max(peak, equity)
        max_drawdown = max(max_drawdown, peak - equity)

    # drawdown as a share of gross traded P&L, inverted
    return _clamp(100 - max_drawdown / gross * 100)


def consistency_block(trades: Sequence[TradeRecord]) -> float:
    metrics: List[float] = []

    monthly: Dict[Tuple[int, int], float] = defaultdict(float)
    for trade in trades:
        if trade.close_time is not None:
            monthly[(trade.close_time.year, trade.close_time.month)] += trade.net_profit
    if monthly:
        positive = sum(1 for v in monthly.values() if v > 0)
        metrics.append(positive / len(monthly) * 100)

    concentration = profit_concentration(trades)
    if concentration is not None:
        metrics.append(_clamp(100 - min(1.0, concentration) * 100))

    return _mean(metrics)


def health_block(trades: Sequence[TradeRecord]) -> float:
    gross = sum(abs(t.net_profit) for t in trades)
    fees = sum(abs(t.commission) for t in trades)
    if gross == 0:
        return NEUTRAL_BLOCK
    return _clamp(100 - fees / gross * 100)


def blocks(trades: Sequence[TradeRecord]) -> Dict[str, float]:
    if not trades:
        return {name: NEUTRAL_BLOCK for name in BLOCK_WEIGHTS}
    risk = risk_block(trades)
    return {
        "performance": performance_block(trades),
        "risk": NEUTRAL_BLOCK if risk is None else risk,
        "consistency": consistency_block(trades),
        "health": health_block(trades),
    }


# ============================================
# Penalty Metrics
# ============================================

def profit_concentration(trades: Sequence[TradeRecord]) -> Optional[float]:
    """
    Share of total profit earned by the top 10% of trades. None below 10
    trades or when the history is not net profitable.
    """
    if len(trades) < MIN_TRADES_CONCENTRATION:
        return None
    total = sum(t.net_profit for t in trades)
    if total <= 0:
        return None
    top_n = max(1, len(trades) // 10)
    top = sum(sorted((t.net_profit for t in trades), reverse=True)[:top_n])
    return top / total


def risk_spike(trades: Sequence[TradeRecord]) -> Optional[float]:
    """
    Largest position exposure (entry price x volume) over the average one.
    None with fewer than 5 sized trades.
    """
    exposures = [t.entry_price * t.volume for t in trades if t.entry_price * t.volume > 0]
    if len(exposures) < MIN_TRADES_RISK_SPIKE:
        return None
    return max(exposures) / (sum(exposures) / len(exposures))


def _normalized_entropy(values: Sequence[int]) -> float:
    counts = Counter(values)
    if len(counts) < 2:
        return 0.0
    n = len(values)
    entropy = -sum(c / n * math.log2(c / n) for c in counts.values())
    return entropy / math.log2(len(counts))


def human_variability(trades: Sequence[TradeRecord]) -> Optional[float]:
    """
    0..100, higher is more human-like. Automation shows as repeated position
    sizes, regular opening hours and round-thousand sizes. None with fewer
    than 10 timestamped, sized trades.
    """
    valid = [t for t in trades if t.open_time is not None and t.volume > 0]
    if len(valid) < MIN_TRADES_VARIABILITY:
        return None

    sizes = [t.volume for t in valid]
    automation = (1 - len(set(sizes)) / len(sizes)) * 25
    automation += (1 - _normalized_entropy([t.open_time.hour for t in valid])) * 25
    automation += sum(1 for s in sizes if s % 1000 == 0) / len(sizes) * 25
    return _clamp(100 - automation)


def penalties(trades: Sequence[TradeRecord]) -> Tuple[List[Penalty], List[str]]:
    """
    Penalties the trade data supports, and the penalty metrics it could not
    compute. Penalty points are in rating points.
    """
    applied: List[Penalty] = []
    missing: List[str] = []

    def deduct(name: str, units: float, reason: str) -> None:
        applied.append(Penalty(name=name, points=-round(units * RATING_POINTS_PER_UNIT, 2), reason=reason))

    concentration = profit_concentration(trades)
    if concentration is None:
        missing.append("profit_concentration")
    elif concentration > PROFIT_CONCENTRATION_LIMIT:
        deduct("profit_concentration", PROFIT_CONCENTRATION_PENALTY,
               f"Top 10% of trades account for {concentration:.0%} of profit")

    spike = risk_spike(trades)
    if spike is None:
        missing.append("risk_spike")
    else:
        for limit, units in RISK_SPIKE_LIMITS:
            if spike > limit:
                deduct("risk_spike", units, f"Largest exposure is {spike:.1f}x the average (over {limit:.0f}x)")
                break

    variability = human_variability(trades)
    if variability is None:
        missing.append("human_variability")
    elif variability < BOT_VARIABILITY_THRESHOLD:
        units = min(25.0, max(10.0, (BOT_VARIABILITY_THRESHOLD - variability) / 2))
        deduct("bot_probability", units, f"Low human variability score: {variability:.1f}")

    return applied, missing


def _missing_block_metrics(trades: Sequence[TradeRecord]) -> List[str]:
    missing: List[str] = []
    if not (any(t.net_profit > 0 for t in trades) and any(t.net_profit < 0 for t in trades)):
        missing.append("payoff_ratio")
    if risk_block(trades) is None:
        missing.append("max_drawdown")
    if not any(t.close_time is not None for t in trades):
        missing.append("monthly_consistency")
    return missing


# ============================================
# Rating From Trade History
# ============================================

def evaluate(trades: Sequence[TradeRecord]) -> Evaluation:
    """
    Rating together with the block scores, penalties and missing metrics
    behind it.
    """
    block_scores = blocks(trades)
    applied, missing = penalties(trades)
    missing = _missing_block_metrics(trades) + missing

    if not trades:
        return Evaluation(BASELINE, block_scores, [], missing)

    composite = sum(BLOCK_WEIGHTS[name] * value for name, value in block_scores.items()) / sum(BLOCK_WEIGHTS.values())
    rating = BASELINE + composite * RATING_POINTS_PER_UNIT + sum(p.points for p in applied)
    logger.debug(
        f"Rated {len(trades)} trade(s): blocks={block_scores} "
        f"penalties={[p.name for p in applied]} rating={rating:.2f}"
    )
    return Evaluation(round(max(BASELINE, min(MAX_RATING, rating)), 2), block_scores, applied, missing)


def rate(trades: Sequence[TradeRecord]) -> float:
    """
    Persisted rating from trade history, in [1000, 4000].

    Example:
        >>> rate([])
        1000.0
    """
    return evaluate(trades).rating


def _sort_key(trade: TradeRecord):
    moment = trade.close_time or trade.open_time
    return (moment is None, moment.timestamp() if moment else 0.0, trade.id)


class ScoringEngine:
    """Object facade over the module functions, for injection into services."""

    baseline = BASELINE

    def score(self, profile: TraderProfile, trades: Optional[Sequence[TradeRecord]] = None) -> EloResult:
        return score(profile, trades)

    def rate(self, trades: Sequence[TradeRecord]) -> float:
        return rate(trades)

    def evaluate(self, trades: Sequence[TradeRecord]) -> Evaluation:
        return evaluate(trades)

    def categorize(self, value: float) -> Tuple[str, str]:
        return categorize(value)
