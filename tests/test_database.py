"""
Tests for the SQLite persistence layer.

Tests cover:
1. Snapshot assembly and streak computation
2. Badge persistence (insert once per type)
3. Server-side completed quest ledger
4. XP and level bookkeeping
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest

from questline.core.errors import SnapshotUnavailableError
from questline.storage.database import Database, compute_streak, level_for_xp
from questline.system.badges import BADGE_RULES


def run(coro):
    return asyncio.run(coro)


class TestStreak:
    """Tests for compute_streak()"""

    def test_consecutive_days_ending_today(self):
        today = date(2024, 5, 10)
        days = [today - timedelta(days=i) for i in range(4)]

        assert compute_streak(days, today) == 4

    def test_streak_may_end_yesterday(self):
        today = date(2024, 5, 10)
        days = [today - timedelta(days=i) for i in range(1, 4)]

        assert compute_streak(days, today) == 3

    def test_gap_breaks_streak(self):
        today = date(2024, 5, 10)

        assert compute_streak([today, today - timedelta(days=2)], today) == 1
        assert compute_streak([today - timedelta(days=2)], today) == 0


class TestLevels:

    @pytest.mark.parametrize("xp,level", [(0, 1), (999, 1), (1000, 2), (2500, 3)])
    def test_level_for_xp(self, xp, level):
        assert level_for_xp(xp) == level


class TestSnapshot:
    """Tests for get_activity_snapshot()"""

    def test_snapshot_reflects_recorded_activity(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            now = datetime.now()
            await db.record_session("alice", 1500, now)
            await db.record_session("alice", 3000, now - timedelta(days=1))
            await db.record_task("alice", "write tests", completed=True)
            await db.record_task("alice", "open task")
            await db.record_goal("alice", "ship", completed=True)
            await db.record_mentor_chat("alice")
            snapshot = await db.get_activity_snapshot("alice")
            await db.close()
            return snapshot

        snapshot = run(scenario())

        assert snapshot.session_count == 2
        assert snapshot.longest_session_seconds == 3000
        assert snapshot.completed_task_count == 1
        assert snapshot.completed_goal_count == 1
        assert snapshot.mentor_chat_count == 1
        assert snapshot.streak_days == 2
        assert snapshot.current_level == 1

    def test_unknown_user_has_empty_snapshot(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            snapshot = await db.get_activity_snapshot("nobody")
            await db.close()
            return snapshot

        snapshot = run(scenario())

        assert snapshot.session_count == 0
        assert snapshot.level == 1

    def test_disconnected_database_raises(self):
        db = Database(":memory:")

        with pytest.raises(SnapshotUnavailableError):
            run(db.get_activity_snapshot("alice"))


class TestBadgesAndLedger:
    """Tests for badge persistence and completed quest ids"""

    def test_badge_persisted_once_per_type(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            badge = BADGE_RULES[0].create()
            first = await db.persist_badge("alice", badge)
            second = await db.persist_badge("alice", BADGE_RULES[0].create())
            held = await db.get_badges("alice")
            await db.close()
            return first, second, held

        first, second, held = run(scenario())

        assert first is True
        assert second is False
        assert [b.type for b in held] == ["first-focus"]

    def test_completed_ids_banked_once(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            first = await db.persist_completed_quest_ids("alice", ["focus-3", "goal-1"])
            second = await db.persist_completed_quest_ids("alice", ["goal-1", "tasks-10"])
            ids = await db.get_completed_quest_ids("alice")
            await db.close()
            return first, second, ids

        first, second, ids = run(scenario())

        assert first == ["focus-3", "goal-1"]
        assert second == ["tasks-10"]
        assert ids == ["focus-3", "goal-1", "tasks-10"]

    def test_credit_xp_levels_up(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            small = await db.credit_xp("alice", 400)
            big = await db.credit_xp("alice", 700)
            await db.close()
            return small, big

        small, big = run(scenario())

        assert small == (400, 1, 1)
        assert big == (1100, 1, 2)

    def test_daily_quest_cache(self, db_path):
        async def scenario():
            db = Database(db_path)
            await db.connect()
            day = date(2024, 5, 1)
            await db.save_daily_quest("alice", day, {"id": "daily-20240501", "title": "Daily"})
            cached = await db.get_daily_quest("alice", day)
            other = await db.get_daily_quest("alice", day + timedelta(days=1))
            await db.close()
            return cached, other

        cached, other = run(scenario())

        assert cached["id"] == "daily-20240501"
        assert other is None
