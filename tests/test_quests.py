"""
Tests for the quest engine.

Tests cover:
1. Rule quest status and progress
2. Banked quests are never re-emitted
3. Monotonic progress
4. Validation and merging of external quest records
"""
import pytest

from questline.core.errors import InvalidQuestError
from questline.storage.models import QuestStatus
from questline.system import quests


def by_id(quest_list):
    return {q.id: q for q in quest_list}


class TestRuleQuests:
    """Tests for generate()"""

    def test_three_sessions_complete_focus_quest(self, snapshot_factory):
        focus = by_id(quests.generate(snapshot_factory(sessions=3)))["focus-3"]

        assert focus.status == QuestStatus.COMPLETED
        assert focus.progress == 100
        assert focus.reward_badge == "first-focus"

    def test_fresh_user_level_quest(self, snapshot_factory):
        """Level 1 of 5 is 20% progress"""
        level = by_id(quests.generate(snapshot_factory(level=1), completed_ids=[]))["level-5"]

        assert level.progress == 20
        assert level.status == QuestStatus.ACTIVE

    def test_all_rules_emitted_for_fresh_user(self, snapshot_factory):
        result = quests.generate(snapshot_factory())

        assert [q.id for q in result] == [r.id for r in quests.QUEST_RULES]

    def test_progress_capped_at_100(self, snapshot_factory):
        tasks = by_id(quests.generate(snapshot_factory(completed_tasks=25)))["tasks-10"]

        assert tasks.progress == 100
        assert tasks.is_completed

    def test_context_overrides_snapshot(self, snapshot_factory):
        context = quests.QuestContext(level=5, streak=3)

        result = by_id(quests.generate(snapshot_factory(), context))

        assert result["level-5"].is_completed
        assert result["streak-7"].progress == pytest.approx(3 / 7 * 100)

    def test_null_snapshot_fields(self):
        from questline.storage.models import ActivitySnapshot

        result = by_id(quests.generate(ActivitySnapshot(level=None, streak=None, mentor_chats=None)))

        assert result["level-5"].progress == 0
        assert result["mentor-3"].status == QuestStatus.ACTIVE


class TestCompletionPermanence:
    """Banked ids are omitted whatever the snapshot says"""

    def test_banked_quest_omitted_even_when_completed(self, snapshot_factory):
        result = quests.generate(snapshot_factory(completed_tasks=15), completed_ids=["tasks-10"])

        assert "tasks-10" not in by_id(result)

    @pytest.mark.parametrize("sessions", [0, 3, 40])
    def test_banked_quest_never_returns(self, snapshot_factory, sessions):
        result = quests.generate(snapshot_factory(sessions=sessions), completed_ids={"focus-3"})

        assert "focus-3" not in by_id(result)


class TestMonotonicProgress:
    """More activity never lowers progress"""

    def test_compute_progress_is_monotonic(self):
        for goal in (1, 3, 7, 10):
            values = [quests.compute_progress(count, goal) for count in range(0, 15)]
            assert values == sorted(values)

    def test_rule_progress_is_monotonic(self, snapshot_factory):
        before = by_id(quests.generate(snapshot_factory(sessions=1, completed_tasks=4)))
        after = by_id(quests.generate(snapshot_factory(sessions=2, completed_tasks=9)))

        for quest_id, quest in before.items():
            assert after[quest_id].progress >= quest.progress

    def test_zero_goal_counts_as_done(self):
        assert quests.compute_progress(0, 0) == 100.0


class TestValidateQuest:
    """Tests for validate_quest() on external records"""

    def _record(self, **overrides):
        record = {
            "id": "ai-1",
            "title": "Read the docs",
            "description": "One session of reading",
            "type": "ai_enhanced",
            "status": "active",
            "progress": 0,
            "goal": 1,
            "rewardXp": 25,
            "meta": {"timeEstimate": "25 minutes", "personalized": True},
        }
        record.update(overrides)
        return record

    def test_valid_record(self):
        quest = quests.validate_quest(self._record())

        assert quest.type == "ai_enhanced"
        assert quest.reward_xp == 25
        assert quest.meta["timeEstimate"] == "25 minutes"

    def test_name_accepted_for_title(self):
        record = self._record(name="Named quest")
        del record["title"]

        assert quests.validate_quest(record).title == "Named quest"

    @pytest.mark.parametrize("field,value", [
        ("id", ""),
        ("type", None),
        ("status", "finished"),
        ("goal", 0),
        ("progress", 120),
        ("rewardXp", -5),
        ("meta", ["not", "a", "dict"]),
    ])
    def test_invalid_records(self, field, value):
        with pytest.raises(InvalidQuestError):
            quests.validate_quest(self._record(**{field: value}))

    def test_missing_title_and_name(self):
        record = self._record()
        del record["title"]

        with pytest.raises(InvalidQuestError):
            quests.validate_quest(record)


class TestMergeQuests:
    """Tests for merge_quests()"""

    def test_rule_quests_first_and_invalid_dropped(self, snapshot_factory):
        rule_quests = quests.generate(snapshot_factory())
        external = [
            {"id": "ai-1", "title": "A", "type": "ai_enhanced"},
            {"id": "", "title": "broken", "type": "ai_enhanced"},
            {"id": "focus-3", "title": "duplicate", "type": "fallback"},
        ]

        merged = quests.merge_quests(rule_quests, external)

        ids = [q.id for q in merged]
        assert ids[:len(rule_quests)] == [q.id for q in rule_quests]
        assert ids[len(rule_quests):] == ["ai-1"]
        assert by_id(merged)["focus-3"].title == "Focus Novice"

    def test_banked_external_quest_skipped(self):
        merged = quests.merge_quests([], [{"id": "ai-1", "title": "A", "type": "ai_enhanced"}], ["ai-1"])

        assert merged == []
