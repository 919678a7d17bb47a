"""
Progression service
Runs the badge and quest engines against a fresh snapshot, persists what they
award exactly once, settles banked quests into XP and feeds the channel pushes.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from ..core.errors import InvalidQuestError, SnapshotUnavailableError
from ..core.events import EventBus, EventType
from ..storage.database import Database
from ..storage.models import ActivitySnapshot, Badge, Quest
from . import badges as badge_engine
from . import quests as quest_engine
from .generator import TemplateQuestGenerator

logger = logging.getLogger(__name__)

# unbanked generated quests older than this can no longer be settled
DELIVERY_RETENTION = timedelta(days=7)


@dataclass
class EvaluationResult:
    user_id: str
    quests: list[Quest]
    badges: list[Badge]
    new_badges: list[Badge] = field(default_factory=list)
    evaluated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "quests": [q.to_dict() for q in self.quests],
            "badges": [b.to_dict() for b in self.badges],
            "newBadges": [b.to_dict() for b in self.new_badges],
            "evaluatedAt": self.evaluated_at.isoformat(),
        }


@dataclass
class SettlementResult:
    user_id: str
    banked: list[str]
    xp_gained: int
    total_xp: int
    level: int
    rejected: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "banked": self.banked,
            "rejected": self.rejected,
            "xpGained": self.xp_gained,
            "totalXp": self.total_xp,
            "level": self.level,
        }


class ProgressionService:
    """Per-user evaluation, settlement and on-demand quest generation"""

    def __init__(self, db: Database, bus: EventBus, generator=None, max_suggestions: int = 3):
        self.db = db
        self.bus = bus
        self.generator = generator or TemplateQuestGenerator()
        self.max_suggestions = max_suggestions
        self._last_results: dict[str, EvaluationResult] = {}

    def last_result(self, user_id: str) -> EvaluationResult | None:
        return self._last_results.get(user_id)

    # ── Evaluation ────────────────────────────────────

    async def evaluate_user(self, user_id: str) -> EvaluationResult | None:
        """Evaluate against the latest snapshot.

        Returns None when the snapshot cannot be read; the previous result is
        kept untouched so callers can keep showing it.
        """
        try:
            snapshot = await self.db.get_activity_snapshot(user_id)
        except SnapshotUnavailableError as e:
            logger.warning("Skipping evaluation: %s", e)
            return None

        held = await self.db.get_badges(user_id)
        awarded: list[Badge] = []
        for badge in badge_engine.evaluate(snapshot, held):
            if await self.db.persist_badge(user_id, badge):
                awarded.append(badge)
                logger.info("Badge %s awarded to %s", badge.type, user_id)
                await self.bus.emit_simple(EventType.BADGE_AWARDED, user_id=user_id, badge=badge.to_dict())

        banked = await self.db.get_completed_quest_ids(user_id)
        quests = quest_engine.generate(snapshot, completed_ids=banked)

        previous = self._last_results.get(user_id)
        was_completed = {q.id for q in previous.quests if q.is_completed} if previous else set()
        for quest in quests:
            if quest.is_completed and quest.id not in was_completed:
                await self.bus.emit_simple(EventType.QUEST_COMPLETED, user_id=user_id, quest=quest.to_dict())

        await self.bus.emit_simple(
            EventType.QUEST_PROGRESS, user_id=user_id, quests=[q.to_dict() for q in quests],
        )

        result = EvaluationResult(
            user_id=user_id,
            quests=quests,
            badges=awarded + held,
            new_badges=awarded,
        )
        self._last_results[user_id] = result
        await self.bus.emit_simple(
            EventType.SNAPSHOT_EVALUATED,
            user_id=user_id,
            quest_count=len(quests),
            new_badges=[b.type for b in awarded],
        )
        return result

    # ── Settlement ────────────────────────────────────

    async def _settlement_reward(self, user_id: str, quest_id: str, snapshot: ActivitySnapshot) -> int | None:
        """XP a quest pays when banked now, None when it may not be banked"""
        rule = quest_engine.QUEST_RULES_BY_ID.get(quest_id)
        if rule:
            ctx = quest_engine.QuestContext.from_snapshot(snapshot)
            return rule.reward_xp if rule.metric(snapshot, ctx) >= rule.goal else None
        return await self.db.get_delivered_reward(user_id, quest_id)

    async def settle(self, user_id: str, quest_ids: Iterable[str]) -> SettlementResult:
        """Bank completed quest ids server-side; only newly banked ids earn their XP.

        Rule quests must be complete in a fresh snapshot and generated quests must
        have been delivered to this user; anything else is rejected, not banked.
        Raises SnapshotUnavailableError when the snapshot cannot be read.
        """
        snapshot = await self.db.get_activity_snapshot(user_id)
        await self.db.ensure_user(user_id)
        ids = [qid for qid in dict.fromkeys(quest_ids) if isinstance(qid, str) and qid]

        rewards: dict[str, int] = {}
        rejected: list[str] = []
        for quest_id in ids:
            reward = await self._settlement_reward(user_id, quest_id, snapshot)
            if reward is None:
                rejected.append(quest_id)
            else:
                rewards[quest_id] = reward
        if rejected:
            logger.info("Not banking %s for %s: incomplete or never delivered", rejected, user_id)

        banked = await self.db.persist_completed_quest_ids(user_id, rewards)
        xp = sum(rewards[qid] for qid in banked)

        if xp > 0:
            total_xp, level_before, level_after = await self.db.credit_xp(user_id, xp)
            await self.bus.emit_simple(
                EventType.XP_GAINED, user_id=user_id, amount=xp, total_xp=total_xp, quest_ids=banked,
            )
            if level_after > level_before:
                logger.info("%s reached level %d", user_id, level_after)
                await self.bus.emit_simple(
                    EventType.LEVEL_UP, user_id=user_id, level=level_after, previous_level=level_before,
                )
        else:
            user = await self.db.get_user(user_id)
            total_xp, level_after = user["total_xp"], user["level"]

        return SettlementResult(
            user_id=user_id,
            banked=banked,
            xp_gained=xp,
            total_xp=total_xp,
            level=level_after,
            rejected=rejected,
        )

    # ── Generated quests ──────────────────────────────

    async def _snapshot_or_empty(self, user_id: str) -> ActivitySnapshot:
        try:
            return await self.db.get_activity_snapshot(user_id)
        except SnapshotUnavailableError as e:
            logger.warning("Generating without activity: %s", e)
            return ActivitySnapshot(user_id=user_id)

    async def _remember(self, user_id: str, quests: Iterable[Quest]) -> None:
        """Record generated quests so their reward can be paid at settlement"""
        await self.db.record_delivered_quests(user_id, [(q.id, q.reward_xp) for q in quests])

    async def generate_for(self, user_id: str, category: str, trigger: str | None = None) -> list[Quest]:
        """On-demand quests for one category; raises QuestlineError subclasses on failure"""
        snapshot = await self.db.get_activity_snapshot(user_id)
        generated = await self.generator.generate(category, snapshot, trigger)
        banked = await self.db.get_completed_quest_ids(user_id)
        quests = quest_engine.merge_quests([], generated, banked)
        await self._remember(user_id, quests)
        return quests

    async def quest_of_the_day(self, user_id: str, today: date | None = None) -> Quest | None:
        """The user's single daily quest, generated once and cached for the day"""
        today = today or date.today()
        quest = None
        cached = await self.db.get_daily_quest(user_id, today)
        if cached:
            try:
                quest = quest_engine.validate_quest(cached)
            except InvalidQuestError as e:
                logger.warning("Discarding cached daily quest for %s: %s", user_id, e)

        if quest is None:
            snapshot = await self._snapshot_or_empty(user_id)
            quest = await self.generator.quest_of_the_day(snapshot)
            await self.db.save_daily_quest(user_id, today, quest.to_dict())
            removed = await self.db.prune_delivered_quests(datetime.now() - DELIVERY_RETENTION)
            if removed:
                logger.info("Forgot %d stale delivered quests", removed)

        if quest.id in await self.db.get_completed_quest_ids(user_id):
            return None
        await self._remember(user_id, [quest])
        await self.bus.emit_simple(EventType.QUEST_OF_THE_DAY, user_id=user_id, quest=quest.to_dict())
        return quest

    async def suggestions(self, user_id: str) -> list[Quest]:
        snapshot = await self._snapshot_or_empty(user_id)
        generated = await self.generator.suggestions(snapshot, self.max_suggestions)
        banked = await self.db.get_completed_quest_ids(user_id)
        quests = quest_engine.merge_quests([], generated, banked)[:self.max_suggestions]
        if quests:
            await self._remember(user_id, quests)
            await self.bus.emit_simple(
                EventType.QUEST_SUGGESTIONS, user_id=user_id, quests=[q.to_dict() for q in quests],
            )
        return quests
