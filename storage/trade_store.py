"""
In-Memory Trade Repository

Stores canonical TradeRecords per trader profile and the TraderProfile built
from them. Writing a record with an existing id replaces it (corrective
re-sync); nothing else mutates a stored record.

Each profile also keeps its rating history, one RatingPoint per rebuild,
oldest first and capped at `history_limit` entries.
"""

from typing import Dict, Iterable, List, Optional

from core.logging import get_logger
from core.schemas import RatingPoint, TradeRecord, TraderProfile


HISTORY_LIMIT = 500


class TradeStore:
    """
    Example:
        >>> store = TradeStore()
        >>> store.upsert_trades("p1", records)
        2
        >>> len(store.trades("p1"))
        2
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT):
        self._trades: Dict[str, Dict[str, TradeRecord]] = {}
        self._profiles: Dict[str, TraderProfile] = {}
        self._history: Dict[str, List[RatingPoint]] = {}
        self.history_limit = history_limit
        self._logger = get_logger(__name__)

    # ============================================
    # Trades
    # ============================================

    def upsert_trades(self, profile_id: str, records: Iterable[TradeRecord]) -> int:
        """Insert or replace records by id. Returns how many were written."""
        bucket = self._trades.setdefault(profile_id, {})
        written = 0
        for record in records:
            if record.trader_profile_id != profile_id:
                record = record.model_copy(update={"trader_profile_id": profile_id})
            bucket[record.id] = record
            written += 1
        self._logger.debug(f"Stored {written} trade(s) for profile {profile_id} (total {len(bucket)})")
        return written

    def trades(self, profile_id: str) -> List[TradeRecord]:
        return list(self._trades.get(profile_id, {}).values())

    # ============================================
    # Profiles
    # ============================================

    def save_profile(self, profile: TraderProfile) -> None:
        self._profiles[profile.id] = profile

    def get_profile(self, profile_id: str) -> Optional[TraderProfile]:
        return self._profiles.get(profile_id)

    def profiles(self) -> List[TraderProfile]:
        return list(self._profiles.values())

    # ============================================
    # Rating History
    # ============================================

    def record_rating(self, profile_id: str, point: RatingPoint) -> None:
        history = self._history.setdefault(profile_id, [])
        history.append(point)
        if len(history) > self.history_limit:
            del history[:len(history) - self.history_limit]

    def rating_history(self, profile_id: str) -> List[RatingPoint]:
        return list(self._history.get(profile_id, []))

    def __len__(self) -> int:
        return len(self._profiles)


_store: Optional[TradeStore] = None


def get_trade_store() -> TradeStore:
    """Get the process-wide TradeStore (singleton pattern)."""
    global _store
    if _store is None:
        _store = TradeStore()
    return _store
