"""
Client quest/badge state
One injectable container per client session; the completed-quest registry is the
only part that survives a restart, everything else is rebuilt from pushes and responses.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..core.errors import InvalidQuestError
from ..storage.models import Badge, Quest
from ..storage.registry import CompletedQuestRegistry
from ..system.quests import validate_quest

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    to_display: list[Quest] = field(default_factory=list)
    newly_completed: list[Quest] = field(default_factory=list)


class ClientStateStore:
    """Last-known quests, badges and pushed payloads for one account"""

    def __init__(self, registry: CompletedQuestRegistry | None = None):
        self.registry = registry or CompletedQuestRegistry()
        self.quests: list[Quest] = []
        self.badges: dict[str, Badge] = {}
        self.quest_of_the_day: Quest | None = None
        self.suggestions: list[Quest] = []
        self.responses: dict[str, list[Quest]] = {}
        self.messages: dict[str, str] = {}
        self.loading: dict[str, bool] = {}
        self.last_error: str | None = None

    def _valid(self, records: Iterable[Quest | dict[str, Any]]) -> list[Quest]:
        quests = []
        for record in records or ():
            try:
                quests.append(validate_quest(record))
            except InvalidQuestError as e:
                logger.warning("Ignoring malformed quest: %s", e)
        return quests

    # ── Reconciliation ────────────────────────────────

    def reconcile(self, latest_quests: Iterable[Quest | dict[str, Any]]) -> ReconcileResult:
        """Bank newly completed quests and return what to show.

        A quest completed in this call is shown once more with its completed
        status; from the next call on its id is banked and hidden.
        """
        result = ReconcileResult()
        seen: set[str] = set()
        for quest in self._valid(latest_quests):
            if quest.id in seen or quest.id in self.registry:
                continue
            seen.add(quest.id)
            if quest.is_completed:
                result.newly_completed.append(quest)
            result.to_display.append(quest)

        if result.newly_completed:
            self.registry.add_many(q.id for q in result.newly_completed)
        self.quests = result.to_display
        return result

    def visible(self, quests: Iterable[Quest]) -> list[Quest]:
        return [q for q in quests if q.id not in self.registry]

    # ── Pushed and solicited payloads ─────────────────

    def apply_badges(self, records: Iterable[Badge | dict[str, Any]]) -> list[Badge]:
        """Merge badges keeping one per type; returns the ones not known before"""
        added = []
        for record in records or ():
            try:
                badge = record if isinstance(record, Badge) else Badge.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed badge: %s", e)
                continue
            if badge.type in self.badges:
                continue
            self.badges[badge.type] = badge
            added.append(badge)
        return added

    def apply_quest_of_the_day(self, record: Quest | dict[str, Any] | None) -> Quest | None:
        quests = self.visible(self._valid([record] if record else []))
        self.quest_of_the_day = quests[0] if quests else None
        return self.quest_of_the_day

    def apply_suggestions(self, records: Iterable[Quest | dict[str, Any]]) -> list[Quest]:
        self.suggestions = self.visible(self._valid(records))
        return self.suggestions

    def apply_response(self, category: str, envelope: dict[str, Any]) -> list[Quest]:
        """Store a category response envelope and clear that category's loading flag"""
        self.loading[category] = False
        envelope = envelope if isinstance(envelope, dict) else {}
        self.messages[category] = envelope.get("message", "")
        if envelope.get("error"):
            self.last_error = envelope["error"]
            logger.info("%s request failed: %s", category, envelope["error"])
            return self.responses.get(category, [])

        quests = self.visible(self._valid(envelope.get("quests", [])))
        self.responses[category] = quests
        return quests

    # ── Loading flags ─────────────────────────────────

    def set_loading(self, category: str, loading: bool) -> None:
        self.loading[category] = loading

    def is_loading(self, category: str) -> bool:
        return self.loading.get(category, False)
