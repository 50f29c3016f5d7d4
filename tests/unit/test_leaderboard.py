"""
Unit Tests for Leaderboard Ranking, Profile Aggregation and the Trade Store

Run with:
    pytest tests/unit/test_leaderboard.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.schemas import RatingPoint, TradeRecord, TraderProfile
from services.aggregation import build_profile, rating_point, win_rate
from services.leaderboard import LeaderboardRefresher, listing, podium, rank, statistics
from services.scoring import score
from storage.trade_store import TradeStore


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def trade(trade_id, profit, exchange="bybit", profile_id=None):
    return TradeRecord(
        id=trade_id,
        trader_profile_id=profile_id,
        symbol="BTCUSDT",
        direction="buy",
        entry_price=100.0,
        exit_price=101.0,
        volume=1.0,
        net_profit=profit,
        open_time=START,
        close_time=START + timedelta(hours=1),
        exchange=exchange,
    )


def full_history(n=300):
    return [trade(f"t{i}", 1.0) for i in range(n)]


def point(elo, minutes=0):
    return RatingPoint(
        recorded_at=START + timedelta(minutes=minutes),
        elo_score=elo,
        raw_score=elo,
        category="Beginner",
        total_trades=1,
    )


class TestRank:

    def test_orders_by_effective_score(self):
        profiles = [
            TraderProfile(id="low", elo_score=1500, total_trades=300),
            TraderProfile(id="high", elo_score=3600, total_trades=300),
            TraderProfile(id="mid", elo_score=2600, total_trades=300),
        ]

        entries = rank(profiles, lambda _: full_history())

        assert [e.trader_profile_id for e in entries] == ["high", "mid", "low"]
        assert [e.rank for e in entries] == [1, 2, 3]
        assert entries[0].elo_result.category == "Elite"

    def test_ties_broken_by_trades_then_id(self):
        profiles = [
            TraderProfile(id="b", elo_score=2000, total_trades=5),
            TraderProfile(id="a", elo_score=2000, total_trades=5),
            TraderProfile(id="c", elo_score=2000, total_trades=9),
        ]

        entries = rank(profiles)

        assert [e.trader_profile_id for e in entries] == ["c", "a", "b"]

    def test_thin_history_ranks_below_proven(self):
        profiles = [
            TraderProfile(id="lucky", elo_score=3900, total_trades=3),
            TraderProfile(id="proven", elo_score=3000, total_trades=300),
        ]
        histories = {"lucky": full_history(3), "proven": full_history(300)}

        entries = rank(profiles, histories.get)

        assert entries[0].trader_profile_id == "proven"

    def test_without_lookup_orders_by_profile_score(self):
        profiles = [
            TraderProfile(id="weak", elo_score=1000, total_trades=10),
            TraderProfile(id="strong", elo_score=3900, total_trades=5),
        ]

        entries = rank(profiles)

        assert [e.trader_profile_id for e in entries] == ["strong", "weak"]
        assert entries[0].elo_result.elo_score > 1000.0
        assert entries[1].elo_result.elo_score == 1000.0

    def test_reranking_is_stable(self):
        profiles = [
            TraderProfile(id=f"p{i}", elo_score=1000 + (i % 4) * 500, total_trades=(i % 3) * 100)
            for i in range(12)
        ]

        first = rank(profiles)
        second = rank(list(reversed(profiles)))

        assert [e.trader_profile_id for e in first] == [e.trader_profile_id for e in rank(profiles)]
        assert [e.trader_profile_id for e in first] == [e.trader_profile_id for e in second]

    def test_podium_and_listing(self):
        entries = rank([TraderProfile(id=f"p{i}", elo_score=1000 + i) for i in range(5)])

        assert len(podium(entries)) == 3
        assert len(listing(entries, 2)) == 2
        assert len(listing(entries)) == 5
        assert listing(entries, 0) == []

    def test_statistics(self):
        entries = rank(
            [TraderProfile(id="a", elo_score=3600), TraderProfile(id="b", elo_score=1000)],
            lambda _: full_history(),
        )

        stats = statistics(entries)

        assert stats["total_traders"] == 2
        assert stats["average_elo"] == 2300.0
        assert stats["category_distribution"]["Elite"] == 1
        assert stats["category_distribution"]["Beginner"] == 1
        assert stats["category_distribution"]["Consistent"] == 0
        assert len(stats["category_distribution"]) == 7
        assert stats["top_performers"][0]["trader_profile_id"] == "a"

    def test_statistics_empty(self):
        stats = statistics([])
        assert stats["total_traders"] == 0
        assert stats["average_elo"] == 0.0


class TestAggregation:

    def test_win_rate(self):
        assert win_rate([]) == 0.0
        assert win_rate([trade("a", 1), trade("b", -1), trade("c", 0)]) == pytest.approx(33.3333)

    def test_build_profile_across_providers(self):
        trades = [trade("bybit:1", 10.0), trade("binance:1", -2.0, exchange="binance")]

        profile = build_profile("p1", trades)

        assert profile.total_trades == 2
        assert profile.win_rate == 50.0
        assert profile.broker == "binance, bybit"
        assert profile.nickname == "p1"
        assert 1000.0 <= profile.elo_score <= 4000.0

    def test_build_profile_keeps_descriptive_fields(self):
        previous = TraderProfile(id="p1", nickname="Ace", is_live_account=False)

        profile = build_profile("p1", [], previous=previous)

        assert profile.nickname == "Ace"
        assert profile.is_live_account is False
        assert profile.elo_score == 1000.0

    def test_idempotent(self):
        trades = [trade("x", 5.0), trade("y", -1.0)]
        first = build_profile("p1", trades)
        second = build_profile("p1", trades, previous=first)

        assert (first.total_trades, first.win_rate, first.elo_score) == (
            second.total_trades, second.win_rate, second.elo_score)

    def test_rating_point(self):
        profile = build_profile("p1", [trade("a", 5.0), trade("b", -1.0)])

        entry = rating_point(profile, score(profile, []))

        assert entry.recorded_at == profile.updated_at
        assert entry.raw_score == profile.elo_score
        assert entry.elo_score == 1000.0
        assert entry.category == "Beginner"
        assert entry.total_trades == 2


class TestTradeStore:

    def test_upsert_replaces_by_id(self):
        store = TradeStore()

        store.upsert_trades("p1", [trade("a", 1.0), trade("b", 2.0)])
        store.upsert_trades("p1", [trade("a", -3.0)])

        by_id = {t.id: t for t in store.trades("p1")}
        assert len(by_id) == 2
        assert by_id["a"].net_profit == -3.0

    def test_upsert_assigns_profile(self):
        store = TradeStore()
        store.upsert_trades("p1", [trade("a", 1.0, profile_id="other")])

        assert store.trades("p1")[0].trader_profile_id == "p1"

    def test_profiles(self):
        store = TradeStore()
        store.save_profile(TraderProfile(id="p1"))

        assert store.get_profile("p1").id == "p1"
        assert store.get_profile("missing") is None
        assert len(store) == 1

    def test_rating_history_in_order(self):
        store = TradeStore()
        for i in range(3):
            store.record_rating("p1", point(1000 + i * 100, minutes=i))

        history = store.rating_history("p1")

        assert [p.elo_score for p in history] == [1000.0, 1100.0, 1200.0]
        assert store.rating_history("missing") == []

    def test_rating_history_capped(self):
        store = TradeStore(history_limit=2)
        for i in range(5):
            store.record_rating("p1", point(1000 + i, minutes=i))

        assert [p.elo_score for p in store.rating_history("p1")] == [1003.0, 1004.0]

    def test_rating_history_is_a_copy(self):
        store = TradeStore()
        store.record_rating("p1", point(1000))

        store.rating_history("p1").clear()

        assert len(store.rating_history("p1")) == 1


class TestLeaderboardRefresher:

    @pytest.mark.asyncio
    async def test_refresh_commits_snapshot(self):
        store = TradeStore()
        store.save_profile(TraderProfile(id="p1", elo_score=2000, total_trades=1))
        refresher = LeaderboardRefresher(store=store, interval_seconds=3600)

        assert refresher.entries == []
        entries = await refresher.refresh()

        assert [e.trader_profile_id for e in entries] == ["p1"]
        assert refresher.entries == entries
        assert refresher.refreshed_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_join(self):
        refresher = LeaderboardRefresher(store=TradeStore(), interval_seconds=3600)

        await asyncio.gather(refresher.refresh(), refresher.refresh(), refresher.refresh())

        assert refresher.cycles == 1

    @pytest.mark.asyncio
    async def test_start_runs_first_cycle_and_stop(self):
        refresher = LeaderboardRefresher(store=TradeStore(), interval_seconds=3600)

        await refresher.start()
        await asyncio.sleep(0.01)
        await refresher.stop()

        assert refresher.cycles == 1
