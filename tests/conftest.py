"""
Shared fixtures
"""
from datetime import datetime

import pytest

from questline.storage.models import ActivitySnapshot, GoalRecord, TaskRecord, TimerSession


def make_snapshot(
    sessions: int = 0,
    duration: int = 25 * 60,
    start_time: datetime | None = None,
    completed_tasks: int = 0,
    completed_goals: int = 0,
    mentor_chats: int = 0,
    streak: int = 0,
    level: int = 1,
) -> ActivitySnapshot:
    return ActivitySnapshot(
        user_id="alice",
        timer_sessions=[TimerSession(duration=duration, start_time=start_time) for _ in range(sessions)],
        tasks=[TaskRecord(completed=True, title=f"task {i}") for i in range(completed_tasks)],
        goals=[GoalRecord(completed=True, title=f"goal {i}") for i in range(completed_goals)],
        mentor_chats=mentor_chats,
        streak=streak,
        level=level,
    )


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "questline.db")
