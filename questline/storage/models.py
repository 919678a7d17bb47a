"""
Data models - activity snapshot, badges, quests
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class QuestStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"       # only produced by time-boxed external quests


class QuestType(str, Enum):
    FOCUS = "focus"
    TASKS = "tasks"
    LEVEL = "level"
    MENTOR = "mentor"
    STREAK = "streak"
    GOAL = "goal"
    AI_ENHANCED = "ai_enhanced"
    FALLBACK = "fallback"
    DAILY = "daily"


@dataclass
class TimerSession:
    """One finished timer session"""
    duration: int = 0                    # seconds
    start_time: datetime | None = None   # local time


@dataclass
class TaskRecord:
    completed: bool = False
    title: str = ""


@dataclass
class GoalRecord:
    completed: bool = False
    title: str = ""


@dataclass
class ActivitySnapshot:
    """Read-only projection of a user's activity at evaluation time"""
    user_id: str = ""
    timer_sessions: list[TimerSession] | None = None
    tasks: list[TaskRecord] | None = None
    goals: list[GoalRecord] | None = None
    mentor_chats: int | None = 0
    streak: int | None = 0
    level: int | None = 1

    def __post_init__(self):
        if self.timer_sessions is None:
            self.timer_sessions = []
        if self.tasks is None:
            self.tasks = []
        if self.goals is None:
            self.goals = []

    @property
    def session_count(self) -> int:
        return len(self.timer_sessions or [])

    @property
    def completed_task_count(self) -> int:
        return sum(1 for t in self.tasks or [] if t is not None and t.completed)

    @property
    def completed_goal_count(self) -> int:
        return sum(1 for g in self.goals or [] if g is not None and g.completed)

    @property
    def mentor_chat_count(self) -> int:
        return self.mentor_chats or 0

    @property
    def streak_days(self) -> int:
        return self.streak or 0

    @property
    def current_level(self) -> int:
        return self.level or 0

    @property
    def longest_session_seconds(self) -> int:
        durations = [s.duration or 0 for s in self.timer_sessions or [] if s is not None]
        return max(durations, default=0)

    def has_session_before(self, hour: int) -> bool:
        """Whether any session started before the given local hour"""
        return any(
            s is not None and s.start_time is not None and s.start_time.hour < hour
            for s in self.timer_sessions or []
        )


@dataclass
class Badge:
    """Permanent achievement; `type` is the deduplication key"""
    id: str
    type: str
    name: str
    description: str
    icon: str
    date_awarded: datetime | None = None

    def __post_init__(self):
        if self.date_awarded is None:
            self.date_awarded = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "dateAwarded": self.date_awarded.isoformat() if self.date_awarded else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Badge":
        awarded = data.get("dateAwarded") or data.get("date_awarded")
        if isinstance(awarded, str):
            awarded = datetime.fromisoformat(awarded)
        return cls(
            id=str(data.get("id") or data["type"]),
            type=data["type"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            date_awarded=awarded,
        )


@dataclass
class Quest:
    """Quest state as displayed and delivered over the channel"""
    id: str
    title: str
    description: str
    type: str
    status: QuestStatus = QuestStatus.ACTIVE
    progress: float = 0.0
    goal: int = 1
    reward_xp: int = 0
    reward_badge: str | None = None
    name: str | None = None
    category: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == QuestStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "name": self.name or self.title,
            "description": self.description,
            "type": self.type,
            "status": self.status.value,
            "progress": self.progress,
            "goal": self.goal,
            "rewardXp": self.reward_xp,
        }
        if self.reward_badge:
            data["rewardBadge"] = self.reward_badge
        if self.category:
            data["category"] = self.category
        if self.meta:
            data["meta"] = self.meta
        return data
