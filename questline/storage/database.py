"""
SQLite persistence
Async storage of the activity a snapshot is built from, awarded badges and banked quests
"""

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from ..core.errors import SnapshotUnavailableError
from .models import ActivitySnapshot, Badge, GoalRecord, TaskRecord, TimerSession

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 1000


def level_for_xp(total_xp: int) -> int:
    return max(0, total_xp) // XP_PER_LEVEL + 1


def compute_streak(session_days: Iterable[date], today: date | None = None) -> int:
    """Consecutive days with at least one session, ending today or yesterday"""
    today = today or date.today()
    days = set(session_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class Database:
    """Async SQLite database"""

    def __init__(self, db_path: str = "data/questline.db"):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._init_tables()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def _init_tables(self) -> None:
        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT DEFAULT '',
                total_xp INTEGER DEFAULT 0,
                level INTEGER DEFAULT 1,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS timer_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                duration INTEGER DEFAULT 0,
                start_time TEXT
            );

            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                title TEXT DEFAULT '',
                completed INTEGER DEFAULT 0,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS goals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                title TEXT DEFAULT '',
                completed INTEGER DEFAULT 0,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS mentor_chats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS badges (
                id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                name TEXT,
                description TEXT,
                icon TEXT,
                date_awarded TEXT,
                PRIMARY KEY (user_id, type)
            );

            CREATE TABLE IF NOT EXISTS completed_quests (
                user_id TEXT NOT NULL,
                quest_id TEXT NOT NULL,
                banked_at TEXT,
                PRIMARY KEY (user_id, quest_id)
            );

            CREATE TABLE IF NOT EXISTS daily_quests (
                user_id TEXT NOT NULL,
                day TEXT NOT NULL,
                quest_json TEXT NOT NULL,
                PRIMARY KEY (user_id, day)
            );

            CREATE TABLE IF NOT EXISTS delivered_quests (
                user_id TEXT NOT NULL,
                quest_id TEXT NOT NULL,
                reward_xp INTEGER DEFAULT 0,
                delivered_at TEXT,
                PRIMARY KEY (user_id, quest_id)
            );
        """)
        await self._db.commit()

    # ── Users ─────────────────────────────────────────

    async def ensure_user(self, user_id: str, name: str = "") -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO users (id, name, total_xp, level, created_at) VALUES (?, ?, 0, 1, ?)",
            (user_id, name, datetime.now().isoformat()),
        )
        await self._db.commit()

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        async with self._db.execute("SELECT * FROM users WHERE id=?", (user_id,)) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            return {
                "id": row["id"],
                "name": row["name"],
                "total_xp": row["total_xp"],
                "level": row["level"],
            }

    async def credit_xp(self, user_id: str, amount: int) -> tuple[int, int, int]:
        """Add XP; returns (total_xp, level_before, level_after)"""
        await self.ensure_user(user_id)
        user = await self.get_user(user_id)
        level_before = user["level"]
        total_xp = user["total_xp"] + max(0, amount)
        level_after = max(level_before, level_for_xp(total_xp))
        await self._db.execute(
            "UPDATE users SET total_xp=?, level=? WHERE id=?",
            (total_xp, level_after, user_id),
        )
        await self._db.commit()
        return total_xp, level_before, level_after

    # ── Activity recorders ────────────────────────────

    async def record_session(self, user_id: str, duration: int, start_time: datetime | None = None) -> None:
        await self.ensure_user(user_id)
        await self._db.execute(
            "INSERT INTO timer_sessions (user_id, duration, start_time) VALUES (?, ?, ?)",
            (user_id, duration, (start_time or datetime.now()).isoformat()),
        )
        await self._db.commit()

    async def record_task(self, user_id: str, title: str = "", completed: bool = False) -> None:
        await self.ensure_user(user_id)
        await self._db.execute(
            "INSERT INTO tasks (user_id, title, completed, created_at) VALUES (?, ?, ?, ?)",
            (user_id, title, int(completed), datetime.now().isoformat()),
        )
        await self._db.commit()

    async def record_goal(self, user_id: str, title: str = "", completed: bool = False) -> None:
        await self.ensure_user(user_id)
        await self._db.execute(
            "INSERT INTO goals (user_id, title, completed, created_at) VALUES (?, ?, ?, ?)",
            (user_id, title, int(completed), datetime.now().isoformat()),
        )
        await self._db.commit()

    async def record_mentor_chat(self, user_id: str) -> None:
        await self.ensure_user(user_id)
        await self._db.execute(
            "INSERT INTO mentor_chats (user_id, created_at) VALUES (?, ?)",
            (user_id, datetime.now().isoformat()),
        )
        await self._db.commit()

    # ── Snapshot ──────────────────────────────────────

    async def get_activity_snapshot(self, user_id: str) -> ActivitySnapshot:
        """Assemble a fresh snapshot; raises SnapshotUnavailableError on any storage failure"""
        if self._db is None:
            raise SnapshotUnavailableError(user_id, "database not connected")
        try:
            async with self._db.execute(
                "SELECT duration, start_time FROM timer_sessions WHERE user_id=? ORDER BY start_time",
                (user_id,),
            ) as cursor:
                sessions = [
                    TimerSession(
                        duration=row["duration"] or 0,
                        start_time=datetime.fromisoformat(row["start_time"]) if row["start_time"] else None,
                    )
                    for row in await cursor.fetchall()
                ]

            async with self._db.execute(
                "SELECT title, completed FROM tasks WHERE user_id=?", (user_id,)
            ) as cursor:
                tasks = [TaskRecord(completed=bool(row["completed"]), title=row["title"] or "")
                         for row in await cursor.fetchall()]

            async with self._db.execute(
                "SELECT title, completed FROM goals WHERE user_id=?", (user_id,)
            ) as cursor:
                goals = [GoalRecord(completed=bool(row["completed"]), title=row["title"] or "")
                         for row in await cursor.fetchall()]

            async with self._db.execute(
                "SELECT COUNT(*) AS n FROM mentor_chats WHERE user_id=?", (user_id,)
            ) as cursor:
                mentor_chats = (await cursor.fetchone())["n"]

            user = await self.get_user(user_id)
        except (aiosqlite.Error, ValueError) as e:
            raise SnapshotUnavailableError(user_id, str(e)) from e

        streak = compute_streak(s.start_time.date() for s in sessions if s.start_time)
        return ActivitySnapshot(
            user_id=user_id,
            timer_sessions=sessions,
            tasks=tasks,
            goals=goals,
            mentor_chats=mentor_chats,
            streak=streak,
            level=user["level"] if user else 1,
        )

    # ── Badges ────────────────────────────────────────

    async def persist_badge(self, user_id: str, badge: Badge) -> bool:
        """Store a badge; returns False when the user already holds that type"""
        cursor = await self._db.execute("""
            INSERT OR IGNORE INTO badges
            (id, user_id, type, name, description, icon, date_awarded)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            badge.id, user_id, badge.type, badge.name, badge.description, badge.icon,
            badge.date_awarded.isoformat() if badge.date_awarded else None,
        ))
        await self._db.commit()
        return cursor.rowcount == 1

    async def get_badges(self, user_id: str) -> list[Badge]:
        async with self._db.execute(
            "SELECT * FROM badges WHERE user_id=? ORDER BY date_awarded DESC", (user_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [
                Badge(
                    id=row["id"],
                    type=row["type"],
                    name=row["name"] or "",
                    description=row["description"] or "",
                    icon=row["icon"] or "",
                    date_awarded=datetime.fromisoformat(row["date_awarded"]) if row["date_awarded"] else None,
                )
                for row in rows
            ]

    # ── Completed quests ──────────────────────────────

    async def persist_completed_quest_ids(self, user_id: str, ids: Iterable[str]) -> list[str]:
        """Bank quest ids; returns only the ids that were not banked before"""
        newly_banked = []
        now = datetime.now().isoformat()
        for quest_id in ids:
            cursor = await self._db.execute(
                "INSERT OR IGNORE INTO completed_quests (user_id, quest_id, banked_at) VALUES (?, ?, ?)",
                (user_id, quest_id, now),
            )
            if cursor.rowcount == 1:
                newly_banked.append(quest_id)
        await self._db.commit()
        return newly_banked

    async def get_completed_quest_ids(self, user_id: str) -> list[str]:
        async with self._db.execute(
            "SELECT quest_id FROM completed_quests WHERE user_id=? ORDER BY banked_at, rowid",
            (user_id,),
        ) as cursor:
            return [row["quest_id"] for row in await cursor.fetchall()]

    # ── Quest of the day ──────────────────────────────

    async def get_daily_quest(self, user_id: str, day: date) -> dict[str, Any] | None:
        async with self._db.execute(
            "SELECT quest_json FROM daily_quests WHERE user_id=? AND day=?",
            (user_id, day.isoformat()),
        ) as cursor:
            row = await cursor.fetchone()
            return json.loads(row["quest_json"]) if row else None

    async def save_daily_quest(self, user_id: str, day: date, quest: dict[str, Any]) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO daily_quests (user_id, day, quest_json) VALUES (?, ?, ?)",
            (user_id, day.isoformat(), json.dumps(quest, default=str)),
        )
        await self._db.commit()

    # ── Delivered quests ──────────────────────────────

    async def record_delivered_quests(self, user_id: str, quests: Iterable[tuple[str, int]]) -> None:
        """Remember (quest_id, reward_xp) pairs handed to the user by a generator"""
        now = datetime.now().isoformat()
        await self._db.executemany(
            "INSERT OR REPLACE INTO delivered_quests (user_id, quest_id, reward_xp, delivered_at) "
            "VALUES (?, ?, ?, ?)",
            [(user_id, quest_id, reward_xp, now) for quest_id, reward_xp in quests],
        )
        await self._db.commit()

    async def get_delivered_reward(self, user_id: str, quest_id: str) -> int | None:
        """Reward of a delivered quest, None when it was never delivered to this user"""
        async with self._db.execute(
            "SELECT reward_xp FROM delivered_quests WHERE user_id=? AND quest_id=?",
            (user_id, quest_id),
        ) as cursor:
            row = await cursor.fetchone()
            return row["reward_xp"] if row else None

    async def prune_delivered_quests(self, before: datetime) -> int:
        """Forget unbanked deliveries older than `before`; returns the number removed"""
        cursor = await self._db.execute(
            "DELETE FROM delivered_quests WHERE delivered_at < ? AND NOT EXISTS ("
            "SELECT 1 FROM completed_quests c "
            "WHERE c.user_id = delivered_quests.user_id AND c.quest_id = delivered_quests.quest_id)",
            (before.isoformat(),),
        )
        await self._db.commit()
        return cursor.rowcount
