"""
Quest engine
Rule-based quest states recomputed from the activity snapshot every cycle,
plus shape validation for quests produced by external generators.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..core.errors import InvalidQuestError
from ..storage.models import ActivitySnapshot, Quest, QuestStatus
from .badges import BADGE_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestContext:
    level: int = 1
    streak: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: ActivitySnapshot) -> "QuestContext":
        return cls(level=snapshot.current_level, streak=snapshot.streak_days)


Metric = Callable[[ActivitySnapshot, QuestContext], int]


@dataclass(frozen=True)
class QuestRule:
    id: str
    title: str
    description: str
    type: str
    goal: int
    reward_xp: int
    metric: Metric
    reward_badge: str | None = None

    def build(self, count: int) -> Quest:
        return Quest(
            id=self.id,
            title=self.title,
            description=self.description,
            type=self.type,
            status=QuestStatus.COMPLETED if count >= self.goal else QuestStatus.ACTIVE,
            progress=compute_progress(count, self.goal),
            goal=self.goal,
            reward_xp=self.reward_xp,
            reward_badge=self.reward_badge,
        )


QUEST_RULES: list[QuestRule] = [
    QuestRule(
        id="focus-3",
        title="Focus Novice",
        description="Complete 3 focus sessions",
        type="focus",
        goal=3,
        reward_xp=30,
        metric=lambda s, c: s.session_count,
        reward_badge="first-focus",
    ),
    QuestRule(
        id="tasks-10",
        title="Task Initiate",
        description="Complete 10 tasks",
        type="tasks",
        goal=10,
        reward_xp=50,
        metric=lambda s, c: s.completed_task_count,
        reward_badge="task-slayer",
    ),
    QuestRule(
        id="level-5",
        title="Level Up!",
        description="Reach level 5",
        type="level",
        goal=5,
        reward_xp=100,
        metric=lambda s, c: c.level,
    ),
    QuestRule(
        id="mentor-3",
        title="Mentor Seeker",
        description="Chat with the AI mentor 3 times",
        type="mentor",
        goal=3,
        reward_xp=20,
        metric=lambda s, c: s.mentor_chat_count,
        reward_badge="mentor-buddy",
    ),
    QuestRule(
        id="streak-7",
        title="Streak Adventurer",
        description="Maintain a 7-day focus streak",
        type="streak",
        goal=7,
        reward_xp=70,
        metric=lambda s, c: c.streak,
        reward_badge="7-day-streak",
    ),
    QuestRule(
        id="goal-1",
        title="Goal Getter",
        description="Complete a goal",
        type="goal",
        goal=1,
        reward_xp=40,
        metric=lambda s, c: s.completed_goal_count,
        reward_badge="goal-getter",
    ),
]

QUEST_RULES_BY_ID: dict[str, QuestRule] = {rule.id: rule for rule in QUEST_RULES}

# Quest and badge rule tables must stay in lockstep
_unknown_badges = {r.reward_badge for r in QUEST_RULES if r.reward_badge} - BADGE_TYPES
assert not _unknown_badges, f"quest rules reference unknown badges: {_unknown_badges}"


def compute_progress(count: int | float | None, goal: int) -> float:
    """Percentage in [0, 100]"""
    if goal <= 0:
        return 100.0
    count = max(0, count or 0)
    return min(100.0, count / goal * 100)


def generate(
    snapshot: ActivitySnapshot,
    context: QuestContext | None = None,
    completed_ids: Iterable[str] = (),
) -> list[Quest]:
    """Full list of rule quests that are not banked yet"""
    snapshot = snapshot or ActivitySnapshot()
    context = context or QuestContext.from_snapshot(snapshot)
    banked = set(completed_ids or ())
    quests = []
    for rule in QUEST_RULES:
        if rule.id in banked:
            continue
        count = rule.metric(snapshot, context) or 0
        quests.append(rule.build(count))
    return quests


# ── External quest records ────────────────────────

_REQUIRED_FIELDS = ("id", "type")


def validate_quest(record: Quest | dict[str, Any]) -> Quest:
    """Check the common Quest shape of an externally produced record.

    `meta` is carried through untouched.
    """
    if isinstance(record, Quest):
        record = record.to_dict()
    if not isinstance(record, dict):
        raise InvalidQuestError("record", f"expected a mapping, got {type(record).__name__}")

    for key in _REQUIRED_FIELDS:
        value = record.get(key)
        if not isinstance(value, str) or not value.strip():
            raise InvalidQuestError(key, "missing or not a non-empty string")

    title = record.get("title") or record.get("name")
    if not isinstance(title, str) or not title.strip():
        raise InvalidQuestError("title", "missing title/name")

    raw_status = record.get("status", QuestStatus.ACTIVE.value)
    try:
        status = QuestStatus(raw_status)
    except ValueError:
        raise InvalidQuestError("status", f"unknown status {raw_status!r}")

    goal = record.get("goal", 1)
    if isinstance(goal, bool) or not isinstance(goal, (int, float)) or goal <= 0:
        raise InvalidQuestError("goal", f"must be a positive number, got {goal!r}")

    progress = record.get("progress", 0)
    if isinstance(progress, bool) or not isinstance(progress, (int, float)):
        raise InvalidQuestError("progress", f"must be a number, got {progress!r}")
    if not 0 <= progress <= 100:
        raise InvalidQuestError("progress", f"out of range [0, 100]: {progress}")

    reward_xp = record.get("rewardXp", record.get("reward_xp", 0))
    if isinstance(reward_xp, bool) or not isinstance(reward_xp, (int, float)) or reward_xp < 0:
        raise InvalidQuestError("rewardXp", f"must be a non-negative number, got {reward_xp!r}")

    reward_badge = record.get("rewardBadge", record.get("badgeReward"))
    if reward_badge is not None and not isinstance(reward_badge, str):
        raise InvalidQuestError("rewardBadge", "must be a string")

    meta = record.get("meta") or {}
    if not isinstance(meta, dict):
        raise InvalidQuestError("meta", "must be a mapping")

    return Quest(
        id=record["id"],
        title=title,
        name=record.get("name"),
        description=str(record.get("description") or ""),
        type=record["type"],
        status=status,
        progress=float(progress),
        goal=int(goal),
        reward_xp=int(reward_xp),
        reward_badge=reward_badge,
        category=record.get("category"),
        meta=meta,
    )


def merge_quests(
    rule_quests: Iterable[Quest],
    external: Iterable[Quest | dict[str, Any]],
    completed_ids: Iterable[str] = (),
) -> list[Quest]:
    """Rule quests first, then valid external quests; ids are unique and never banked"""
    banked = set(completed_ids or ())
    merged: list[Quest] = []
    seen: set[str] = set()

    for quest in rule_quests:
        if quest.id in banked or quest.id in seen:
            continue
        merged.append(quest)
        seen.add(quest.id)

    for record in external or ():
        try:
            quest = validate_quest(record)
        except InvalidQuestError as e:
            logger.warning("Dropping external quest: %s", e)
            continue
        if quest.id in banked or quest.id in seen:
            continue
        merged.append(quest)
        seen.add(quest.id)

    return merged
