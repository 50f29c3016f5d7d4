"""
Leaderboard Aggregator

Ranks trader profiles by effective rating and keeps a committed snapshot
fresh in the background.

Ordering:
    descending elo_score, then descending total_trades, then ascending id.
    Ranks are 1..n taken from that order and never stored on the profile.

Refresh policy:
    LeaderboardRefresher re-ranks every `leaderboard_refresh_seconds` (30).
    Readers always get the last committed snapshot without waiting. A refresh
    requested while one is running joins it instead of starting another.
"""

import asyncio
import contextlib
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from core.config import settings
from core.logging import get_logger
from core.schemas import LeaderboardEntry, TradeRecord, TraderProfile
from core.utils.time import current_utc_datetime
from services.scoring import CATEGORY_BANDS, score
from storage.trade_store import TradeStore, get_trade_store


PODIUM_SIZE = 3

TradesLookup = Callable[[str], Sequence[TradeRecord]]


def rank(profiles: Iterable[TraderProfile], trades_for: Optional[TradesLookup] = None) -> List[LeaderboardEntry]:
    """
    Score and rank profiles.

    Args:
        profiles: Profiles to rank
        trades_for: profile id -> trade snapshot. Without it, reliability is
            weighted from each profile's total_trades.

    Example:
        >>> entries = rank([
        ...     TraderProfile(id="a", elo_score=3000, total_trades=75),
        ...     TraderProfile(id="b", elo_score=1500, total_trades=300),
        ... ])
        >>> [(e.trader_profile_id, e.elo_result.elo_score) for e in entries]
        [('a', 2000.0), ('b', 1500.0)]
    """
    scored = [
        (profile, score(profile, trades_for(profile.id) if trades_for is not None else None))
        for profile in profiles
    ]
    scored.sort(key=lambda item: (-item[1].elo_score, -item[0].total_trades, item[0].id))

    return [
        LeaderboardEntry(
            rank=position,
            trader_profile_id=profile.id,
            nickname=profile.nickname,
            elo_result=result,
            win_rate=profile.win_rate,
            total_trades=profile.total_trades,
        )
        for position, (profile, result) in enumerate(scored, start=1)
    ]


def podium(entries: Sequence[LeaderboardEntry]) -> List[LeaderboardEntry]:
    return list(entries[:PODIUM_SIZE])


def listing(entries: Sequence[LeaderboardEntry], limit: Optional[int] = None) -> List[LeaderboardEntry]:
    if limit is None:
        return list(entries)
    return list(entries[:max(0, limit)])


def statistics(entries: Sequence[LeaderboardEntry], top: int = 10) -> Dict[str, Any]:
    """
    Aggregate view: trader count, average rating, category distribution and
    the top performers.
    """
    distribution = Counter(entry.elo_result.category for entry in entries)
    average = sum(e.elo_result.elo_score for e in entries) / len(entries) if entries else 0.0

    return {
        "total_traders": len(entries),
        "average_elo": round(average, 2),
        "category_distribution": {category: distribution.get(category, 0) for _, category, _ in CATEGORY_BANDS},
        "top_performers": [entry.model_dump() for entry in entries[:top]],
    }


class LeaderboardRefresher:
    """
    Background re-ranking loop with single-flight refresh.
    """

    def __init__(self, store: Optional[TradeStore] = None, interval_seconds: Optional[int] = None) -> None:
        self._logger = get_logger(__name__)
        self._store = store or get_trade_store()
        self._interval = interval_seconds or settings.leaderboard_refresh_seconds
        self._running = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._entries: List[LeaderboardEntry] = []
        self._refreshed_at = None
        self._cycles = 0

    @property
    def entries(self) -> List[LeaderboardEntry]:
        """Last committed snapshot."""
        return self._entries

    @property
    def refreshed_at(self):
        return self._refreshed_at

    @property
    def cycles(self) -> int:
        return self._cycles

    async def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        self._logger.info(f"Starting leaderboard refresher (every {self._interval}s)...")
        self._task = asyncio.create_task(self._run(), name="leaderboard_refresher")

    async def stop(self) -> None:
        if not self._running.is_set():
            return
        self._logger.info("Stopping leaderboard refresher...")
        self._running.clear()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def refresh(self) -> List[LeaderboardEntry]:
        """
        Re-rank now, or join the refresh already in progress.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._rebuild())
        else:
            self._logger.debug("Refresh already in flight; joining it")
        return await asyncio.shield(self._inflight)

    async def _rebuild(self) -> List[LeaderboardEntry]:
        profiles = self._store.profiles()
        entries = rank(profiles, self._store.trades)
        # Commit as one swap so readers never see a partial list
        self._entries = entries
        self._refreshed_at = current_utc_datetime()
        self._cycles += 1
        self._logger.debug(f"Leaderboard refreshed: {len(entries)} trader(s)")
        return entries

    # ============================================
    # Core Loop
    # ============================================

    async def _run(self) -> None:
        while self._running.is_set():
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(f"Leaderboard refresh failed: {e}")
            await asyncio.sleep(self._interval)


_refresher: Optional[LeaderboardRefresher] = None


def get_leaderboard_refresher() -> LeaderboardRefresher:
    global _refresher
    if _refresher is None:
        _refresher = LeaderboardRefresher()
    return _refresher
