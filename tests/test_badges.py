"""
Tests for the badge engine.

Tests cover:
1. Individual badge rules
2. Held-badge deduplication and idempotent awarding
3. Tolerance of incomplete snapshots
4. Badge catalogue
"""
from datetime import datetime

from questline.storage.models import ActivitySnapshot, Badge, TimerSession
from questline.system import badges


class TestBadgeRules:
    """Tests for evaluate() against single snapshots"""

    def test_three_sessions_award_first_focus_only(self, snapshot_factory):
        """Three plain sessions earn exactly the first-focus badge"""
        new = badges.evaluate(snapshot_factory(sessions=3), [])

        assert [b.type for b in new] == ["first-focus"]

    def test_fifty_minute_session_awards_deep_diver(self, snapshot_factory):
        """A single 3000 second session is a deep dive"""
        new = badges.evaluate(snapshot_factory(sessions=1, duration=3000), ["first-focus"])

        assert [b.type for b in new] == ["deep-diver"]

    def test_session_just_short_of_deep_dive(self, snapshot_factory):
        new = badges.evaluate(snapshot_factory(sessions=1, duration=2999), ["first-focus"])

        assert new == []

    def test_early_session_awards_early_bird(self, snapshot_factory):
        """A session starting before 08:00 local time"""
        snapshot = snapshot_factory(sessions=1, start_time=datetime(2024, 5, 1, 7, 59))

        types = [b.type for b in badges.evaluate(snapshot, [])]

        assert "early-bird" in types

    def test_eight_oclock_is_not_early(self, snapshot_factory):
        snapshot = snapshot_factory(sessions=1, start_time=datetime(2024, 5, 1, 8, 0))

        types = [b.type for b in badges.evaluate(snapshot, [])]

        assert "early-bird" not in types

    def test_thresholds(self, snapshot_factory):
        """Streak, pomodoro, task, goal and mentor thresholds all fire together"""
        snapshot = snapshot_factory(
            sessions=20, completed_tasks=10, completed_goals=1, mentor_chats=5, streak=7,
        )

        types = [b.type for b in badges.evaluate(snapshot, [])]

        assert types == [
            "first-focus", "7-day-streak", "mentor-buddy", "pomodoro-pro",
            "task-slayer", "goal-getter", "mentor-streak",
        ]

    def test_badge_id_and_date(self, snapshot_factory):
        now = datetime(2024, 5, 1, 12, 0)

        badge = badges.evaluate(snapshot_factory(sessions=1), [], now=now)[0]

        assert badge.id == "first-focus"
        assert badge.date_awarded == now


class TestHeldBadges:
    """Tests for deduplication against held badges"""

    def test_second_call_with_awarded_badges_is_empty(self, snapshot_factory):
        """Awarding is idempotent once the first result is held"""
        snapshot = snapshot_factory(sessions=25, completed_tasks=12, mentor_chats=6, streak=9)
        first = badges.evaluate(snapshot, [])

        second = badges.evaluate(snapshot, first)

        assert first
        assert second == []

    def test_held_badges_as_dicts_and_strings(self, snapshot_factory):
        snapshot = snapshot_factory(sessions=1, mentor_chats=1)
        held = [{"type": "first-focus"}, "mentor-buddy"]

        assert badges.evaluate(snapshot, held) == []

    def test_each_type_held_at_most_once(self, snapshot_factory):
        snapshot = snapshot_factory(sessions=30)

        types = [b.type for b in badges.evaluate(snapshot, [])]

        assert len(types) == len(set(types))


class TestIncompleteSnapshots:
    """Absent fields count as zero rather than raising"""

    def test_none_snapshot(self):
        assert badges.evaluate(None, None) == []

    def test_null_fields(self):
        snapshot = ActivitySnapshot(
            timer_sessions=None, tasks=None, goals=None, mentor_chats=None, streak=None, level=None,
        )

        assert badges.evaluate(snapshot, []) == []

    def test_session_without_duration_or_start(self):
        snapshot = ActivitySnapshot(timer_sessions=[TimerSession(duration=None, start_time=None)])

        types = [b.type for b in badges.evaluate(snapshot, [])]

        assert types == ["first-focus"]


class TestDescribe:
    """Tests for the badge catalogue"""

    def test_catalogue_counts(self):
        held = [Badge(id="goal-getter", type="goal-getter", name="Goal Getter", description="", icon="🎯")]

        catalogue = badges.describe(held)

        assert catalogue["total"] == len(badges.BADGE_RULES)
        assert catalogue["unlocked"] == 1
        assert catalogue["remaining"] == catalogue["total"] - 1
        unlocked = [b["type"] for b in catalogue["badges"] if b["unlocked"]]
        assert unlocked == ["goal-getter"]
