"""
Badge engine
Derives newly earned badges from an activity snapshot. Each badge type is held at most once.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from ..storage.models import ActivitySnapshot, Badge


DEEP_DIVE_SECONDS = 50 * 60
EARLY_BIRD_HOUR = 8


@dataclass(frozen=True)
class BadgeRule:
    type: str
    name: str
    description: str
    icon: str
    predicate: Callable[[ActivitySnapshot], bool]

    def create(self, now: datetime | None = None) -> Badge:
        return Badge(
            id=self.type,
            type=self.type,
            name=self.name,
            description=self.description,
            icon=self.icon,
            date_awarded=now or datetime.now(),
        )


# Evaluation order is table order
BADGE_RULES: list[BadgeRule] = [
    BadgeRule(
        type="first-focus",
        name="First Focus",
        description="Completed your first focus session!",
        icon="🏅",
        predicate=lambda s: s.session_count > 0,
    ),
    BadgeRule(
        type="7-day-streak",
        name="7 Day Streak",
        description="Focused for 7 days in a row!",
        icon="🔥",
        predicate=lambda s: s.streak_days >= 7,
    ),
    BadgeRule(
        type="mentor-buddy",
        name="Mentor Buddy",
        description="Chatted with the AI mentor!",
        icon="🤖",
        predicate=lambda s: s.mentor_chat_count > 0,
    ),
    BadgeRule(
        type="pomodoro-pro",
        name="Pomodoro Pro",
        description="Completed 20 Pomodoros!",
        icon="⏲️",
        predicate=lambda s: s.session_count >= 20,
    ),
    BadgeRule(
        type="task-slayer",
        name="Task Slayer",
        description="Completed 10 tasks!",
        icon="🗡️",
        predicate=lambda s: s.completed_task_count >= 10,
    ),
    BadgeRule(
        type="goal-getter",
        name="Goal Getter",
        description="Completed a goal!",
        icon="🎯",
        predicate=lambda s: s.completed_goal_count > 0,
    ),
    BadgeRule(
        type="deep-diver",
        name="Deep Diver",
        description="Completed a 50+ minute deep focus session!",
        icon="🌊",
        predicate=lambda s: s.longest_session_seconds >= DEEP_DIVE_SECONDS,
    ),
    BadgeRule(
        type="early-bird",
        name="Early Bird",
        description="Focused before 8am!",
        icon="🐦",
        predicate=lambda s: s.has_session_before(EARLY_BIRD_HOUR),
    ),
    BadgeRule(
        type="mentor-streak",
        name="Mentor Streak",
        description="Chatted with the AI mentor 5 times!",
        icon="💬",
        predicate=lambda s: s.mentor_chat_count >= 5,
    ),
]

BADGE_TYPES: frozenset[str] = frozenset(rule.type for rule in BADGE_RULES)


def held_types(held_badges: Iterable[Any] | None) -> set[str]:
    """Reduce held badges (Badge objects, dicts or type strings) to a set of types"""
    types: set[str] = set()
    for badge in held_badges or ():
        if isinstance(badge, Badge):
            types.add(badge.type)
        elif isinstance(badge, dict):
            if badge.get("type"):
                types.add(badge["type"])
        elif isinstance(badge, str):
            types.add(badge)
    return types


def evaluate(
    snapshot: ActivitySnapshot,
    held_badges: Iterable[Any] | None = None,
    now: datetime | None = None,
) -> list[Badge]:
    """Return the badges whose rule holds for the snapshot and that are not yet held"""
    snapshot = snapshot or ActivitySnapshot()
    held = held_types(held_badges)
    awarded_at = now or datetime.now()
    new_badges: list[Badge] = []
    for rule in BADGE_RULES:
        if rule.type in held:
            continue
        if rule.predicate(snapshot):
            new_badges.append(rule.create(awarded_at))
            held.add(rule.type)
    return new_badges


def describe(held_badges: Iterable[Any] | None = None) -> dict[str, Any]:
    """Catalogue of all badges with unlock state"""
    held = held_types(held_badges)
    items = [
        {
            "type": rule.type,
            "name": rule.name,
            "description": rule.description,
            "icon": rule.icon,
            "unlocked": rule.type in held,
        }
        for rule in BADGE_RULES
    ]
    unlocked = sum(1 for item in items if item["unlocked"])
    total = len(items)
    return {
        "badges": items,
        "total": total,
        "unlocked": unlocked,
        "progress": round(unlocked / total, 2) if total > 0 else 0,
        "remaining": total - unlocked,
    }
