"""
Quest generator
Category-scoped quests for on-demand requests, quest of the day and suggestions.
Templates always work offline; the AI generator enriches them when configured.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from ..core.config import AIConfig
from ..core.errors import GenerationError, InvalidQuestError, UnknownCategoryError
from ..storage.models import ActivitySnapshot, Quest, QuestStatus, QuestType
from .quests import validate_quest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Category:
    token: str
    request_event: str
    response_event: str
    label: str


def _category(token: str, label: str) -> Category:
    return Category(token, f"request_{token}_quests", f"{token}_quests_response", label)


CATEGORIES: dict[str, Category] = {
    c.token: c for c in (
        _category("task", "Task"),
        _category("focus", "Focus"),
        _category("goal", "Goal"),
        _category("quick_win", "Quick Win"),
        _category("learning", "Learning"),
        _category("wellness", "Wellness"),
        _category("social", "Social"),
        _category("streak", "Streak"),
        _category("note", "Note"),
        _category("enhanced", "Enhanced"),
        Category("goal_task_suggestions", "request_goal_task_suggestions",
                 "goal_task_suggestions_response", "Goal Task Suggestion"),
        Category("contextual", "request_contextual_quests",
                 "contextual_quests_response", "Contextual"),
    )
}

TRIGGER_POINTS = (
    "task_completion",
    "goal_progress",
    "focus_session",
    "note_creation",
    "streak_milestone",
    "level_up",
)


# Per-category templates: (key, title, description, goal, reward_xp, time_estimate, action_steps)
QUEST_TEMPLATES: dict[str, list[tuple]] = {
    "task": [
        ("clear-three", "Clear Three", "Finish three tasks from your list today.",
         3, 40, "1 hour", ["Pick the three smallest tasks", "Finish them one by one", "Mark each as done"]),
        ("oldest-first", "Oldest First", "Complete the oldest open task on your list.",
         1, 25, "30 minutes", ["Sort tasks by creation date", "Work on the oldest one", "Close it out"]),
    ],
    "focus": [
        ("double-pomodoro", "Double Pomodoro", "Run two focus sessions back to back.",
         2, 35, "50 minutes", ["Silence notifications", "Start a 25 minute timer", "Repeat after a short break"]),
        ("deep-block", "Deep Block", "Hold one uninterrupted 50 minute session.",
         1, 50, "50 minutes", ["Choose one hard task", "Start a 50 minute timer", "Do not switch context"]),
    ],
    "goal": [
        ("goal-step", "One Step Closer", "Make measurable progress on one of your goals.",
         1, 40, "45 minutes", ["Open your goals", "Pick the next milestone", "Spend a session on it"]),
        ("goal-review", "Goal Review", "Review your goals and update their status.",
         1, 20, "15 minutes", ["List active goals", "Mark finished ones complete", "Drop what no longer matters"]),
    ],
    "quick_win": [
        ("five-minute-fix", "Five Minute Fix", "Knock out a task that takes less than five minutes.",
         1, 10, "5 minutes", ["Find a tiny task", "Do it now"]),
        ("inbox-zero-lite", "Inbox Sweep", "Archive or answer ten messages.",
         10, 15, "10 minutes", ["Open your inbox", "Answer or archive ten messages"]),
    ],
    "learning": [
        ("read-docs", "Read the Docs", "Spend one focus session reading documentation or a tutorial.",
         1, 30, "25 minutes", ["Pick a topic you are stuck on", "Read for one session", "Write down one takeaway"]),
        ("teach-back", "Teach It Back", "Explain something you learned this week to the mentor.",
         1, 25, "15 minutes", ["Choose a concept", "Explain it in your own words", "Ask the mentor for gaps"]),
    ],
    "wellness": [
        ("stretch-break", "Stretch Break", "Take a 10 minute break away from the screen.",
         1, 15, "10 minutes", ["Stand up", "Stretch or walk for 10 minutes"]),
        ("hydrate", "Hydrate", "Drink a glass of water between every focus session today.",
         3, 15, "All day", ["Keep water at your desk", "Drink after each session"]),
    ],
    "social": [
        ("share-win", "Share a Win", "Tell a friend or teammate about something you finished.",
         1, 15, "5 minutes", ["Pick a recent win", "Share it with someone"]),
        ("accountability", "Accountability Buddy", "Ask someone to check on your progress tomorrow.",
         1, 20, "5 minutes", ["Choose a buddy", "Tell them tomorrow's goal"]),
    ],
    "streak": [
        ("keep-flame", "Keep the Flame", "Complete at least one focus session today to keep your streak.",
         1, 20, "25 minutes", ["Start one focus session before the day ends"]),
        ("streak-push", "Streak Push", "Reach the next 7-day streak milestone.",
         7, 70, "1 week", ["Focus every day", "Check your streak each evening"]),
    ],
    "note": [
        ("capture-notes", "Capture Notes", "Write a note summarising today's work.",
         1, 15, "10 minutes", ["Open a new note", "List what you did", "List what is next"]),
        ("note-to-task", "Note to Task", "Turn one note into a concrete task.",
         1, 20, "10 minutes", ["Pick a note", "Extract the next action", "Create a task"]),
    ],
    "enhanced": [
        ("focus-and-finish", "Focus and Finish", "Run a focus session and complete the task you worked on.",
         2, 60, "45 minutes", ["Pick a task", "Start a focus session", "Complete the task"]),
        ("mentor-plan", "Plan with the Mentor", "Ask the mentor to plan tomorrow with you.",
         1, 30, "15 minutes", ["Open the mentor chat", "Share your goals", "Save the plan as tasks"]),
    ],
    "goal_task_suggestions": [
        ("break-down", "Break It Down", "Split your main goal into three tasks.",
         3, 30, "20 minutes", ["Choose a goal", "Write three concrete tasks for it"]),
        ("first-task", "First Task", "Complete the first task linked to a goal.",
         1, 30, "30 minutes", ["Open the goal", "Complete its first task"]),
    ],
}

CONTEXTUAL_TEMPLATES: dict[str, tuple] = {
    "task_completion": ("momentum", "Ride the Momentum", "You just finished a task. Finish one more while you are warm.",
                        1, 20, "20 minutes", ["Pick the next task", "Start immediately"]),
    "goal_progress": ("goal-milestone", "Next Milestone", "Your goal moved forward. Define its next milestone.",
                      1, 25, "10 minutes", ["Open the goal", "Write the next milestone"]),
    "focus_session": ("cooldown", "Mindful Cooldown", "Take a short break, then plan your next session.",
                      1, 15, "10 minutes", ["Step away for 5 minutes", "Write the goal of the next session"]),
    "note_creation": ("note-action", "From Note to Action", "Turn your new note into one task.",
                      1, 15, "5 minutes", ["Reread the note", "Create one task from it"]),
    "streak_milestone": ("streak-celebrate", "Streak Keeper", "Protect your streak with a session tomorrow morning.",
                         1, 25, "25 minutes", ["Schedule tomorrow's first session"]),
    "level_up": ("level-challenge", "New Level Challenge", "Celebrate the new level with a 50 minute deep session.",
                 1, 50, "50 minutes", ["Choose your hardest task", "Run a 50 minute session"]),
}

DAILY_CATEGORY_ROTATION = ("focus", "task", "goal", "learning", "wellness", "quick_win", "note")


def _tailored(category: str, snapshot: ActivitySnapshot) -> bool:
    """Whether the user's own activity backs this category"""
    return {
        "task": snapshot.completed_task_count > 0 or len(snapshot.tasks or []) > 0,
        "focus": snapshot.session_count > 0,
        "goal": len(snapshot.goals or []) > 0,
        "goal_task_suggestions": len(snapshot.goals or []) > 0,
        "streak": snapshot.streak_days > 0,
        "learning": snapshot.mentor_chat_count > 0,
    }.get(category, False)


class TemplateQuestGenerator:
    """Deterministic, offline generator producing `fallback` quests"""

    quest_type = QuestType.FALLBACK.value

    def __init__(self, clock=datetime.now):
        self._clock = clock

    def _build(self, category: str, template: tuple, snapshot: ActivitySnapshot,
               trigger: str | None = None) -> Quest:
        key, title, description, goal, reward_xp, time_estimate, steps = template
        now = self._clock()
        return Quest(
            id=f"{self.quest_type}-{category}-{key}-{now:%Y%m%d}",
            title=title,
            description=description,
            type=self.quest_type,
            status=QuestStatus.ACTIVE,
            progress=0.0,
            goal=goal,
            reward_xp=reward_xp,
            category=category,
            meta={
                "timeEstimate": time_estimate,
                "actionSteps": list(steps),
                "questType": trigger or category,
                "category": category,
                "personalized": False,
                "tailored": _tailored(category, snapshot),
                "vectorContextUsed": False,
                "generatedAt": now.isoformat(),
            },
        )

    async def generate(self, category: str, snapshot: ActivitySnapshot,
                       trigger: str | None = None) -> list[Quest]:
        if category == "contextual":
            if trigger not in CONTEXTUAL_TEMPLATES:
                raise UnknownCategoryError(str(trigger))
            return [self._build("contextual", CONTEXTUAL_TEMPLATES[trigger], snapshot, trigger)]
        if category not in QUEST_TEMPLATES:
            raise UnknownCategoryError(category)
        return [self._build(category, t, snapshot) for t in QUEST_TEMPLATES[category]]

    async def quest_of_the_day(self, snapshot: ActivitySnapshot) -> Quest:
        today = self._clock().date()
        category = DAILY_CATEGORY_ROTATION[today.toordinal() % len(DAILY_CATEGORY_ROTATION)]
        quest = self._build(category, QUEST_TEMPLATES[category][0], snapshot, "daily")
        quest.id = f"daily-{today:%Y%m%d}"
        quest.type = QuestType.DAILY.value
        return quest

    async def suggestions(self, snapshot: ActivitySnapshot, limit: int = 3) -> list[Quest]:
        """One quest per category the user is active in, falling back to general ones"""
        ranked = [c for c in QUEST_TEMPLATES if _tailored(c, snapshot)]
        ranked += [c for c in ("quick_win", "wellness", "learning") if c not in ranked]
        return [self._build(c, QUEST_TEMPLATES[c][0], snapshot) for c in ranked[:limit]]


GENERATION_PROMPT = """You are a productivity mentor creating {label} quests for a user.

User activity:
- focus sessions: {sessions}
- completed tasks: {tasks}
- completed goals: {goals}
- mentor chats: {mentor_chats}
- streak: {streak} days
- level: {level}
{trigger_line}
Reply with JSON only:
```json
{{"quests": [{{"title": "...", "description": "...", "goal": 1, "rewardXp": 30,
  "timeEstimate": "25 minutes", "actionSteps": ["..."]}}]}}
```
Produce {count} quests.
"""


class AIQuestGenerator:
    """LLM-backed generator producing `ai_enhanced` quests, templates on failure"""

    quest_type = QuestType.AI_ENHANCED.value

    def __init__(self, ai_config: AIConfig, fallback: TemplateQuestGenerator | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.ai_config = ai_config
        self.fallback = fallback or TemplateQuestGenerator()
        self._transport = transport

    async def generate(self, category: str, snapshot: ActivitySnapshot,
                       trigger: str | None = None) -> list[Quest]:
        if category not in CATEGORIES:
            raise UnknownCategoryError(category)
        if category == "contextual" and trigger not in TRIGGER_POINTS:
            raise UnknownCategoryError(str(trigger))
        try:
            return await self._generate_with_ai(category, snapshot, trigger)
        except GenerationError as e:
            logger.warning("%s, using templates", e)
            return await self.fallback.generate(category, snapshot, trigger)

    async def quest_of_the_day(self, snapshot: ActivitySnapshot) -> Quest:
        try:
            quests = await self._generate_with_ai("enhanced", snapshot, None, count=1)
        except GenerationError as e:
            logger.warning("%s, using templates", e)
            return await self.fallback.quest_of_the_day(snapshot)
        quest = quests[0]
        quest.id = f"daily-{datetime.now():%Y%m%d}"
        return quest

    async def suggestions(self, snapshot: ActivitySnapshot, limit: int = 3) -> list[Quest]:
        try:
            quests = await self._generate_with_ai("enhanced", snapshot, None, count=limit)
        except GenerationError as e:
            logger.warning("%s, using templates", e)
            return await self.fallback.suggestions(snapshot, limit)
        return quests[:limit]

    async def _generate_with_ai(self, category: str, snapshot: ActivitySnapshot,
                                trigger: str | None, count: int = 2) -> list[Quest]:
        label = CATEGORIES[category].label
        prompt = GENERATION_PROMPT.format(
            label=label.lower(),
            sessions=snapshot.session_count,
            tasks=snapshot.completed_task_count,
            goals=snapshot.completed_goal_count,
            mentor_chats=snapshot.mentor_chat_count,
            streak=snapshot.streak_days,
            level=snapshot.current_level,
            trigger_line=f"- trigger: {trigger}\n" if trigger else "",
            count=count,
        )
        content = await self._call_ai([{"role": "user", "content": prompt}], category)
        parsed = _parse_json_response(content)
        if not parsed or not isinstance(parsed.get("quests"), list):
            raise GenerationError(category, "AI reply has no quest list")

        now = datetime.now()
        quests = []
        for i, item in enumerate(parsed["quests"]):
            if not isinstance(item, dict):
                continue
            record = {
                "id": f"{self.quest_type}-{category}-{now:%Y%m%d%H%M%S}-{i}",
                "title": item.get("title"),
                "description": item.get("description", ""),
                "type": self.quest_type,
                "status": QuestStatus.ACTIVE.value,
                "progress": 0,
                "goal": item.get("goal", 1),
                "rewardXp": item.get("rewardXp", 20),
                "category": category,
                "meta": {
                    "timeEstimate": item.get("timeEstimate", ""),
                    "actionSteps": item.get("actionSteps", []),
                    "questType": trigger or category,
                    "category": category,
                    "personalized": True,
                    "tailored": _tailored(category, snapshot),
                    "vectorContextUsed": False,
                    "generatedAt": now.isoformat(),
                },
            }
            try:
                quests.append(validate_quest(record))
            except InvalidQuestError as e:
                logger.info("Skipping AI quest %d: %s", i, e)
        if not quests:
            raise GenerationError(category, "AI reply contained no valid quests")
        return quests

    async def _call_ai(self, messages: list[dict], category: str) -> str:
        headers = {}
        if self.ai_config.api_key:
            headers["Authorization"] = f"Bearer {self.ai_config.api_key}"
        url = f"{self.ai_config.api_base.rstrip('/')}/chat/completions"
        payload = {
            "model": self.ai_config.model,
            "messages": messages,
            "max_tokens": self.ai_config.max_tokens,
            "temperature": self.ai_config.temperature,
        }
        try:
            async with httpx.AsyncClient(timeout=self.ai_config.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
            return data["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            raise GenerationError(category, f"AI call failed: {e}") from e


def _parse_json_response(content: str) -> dict[str, Any] | None:
    """Extract a JSON object from a reply, with or without a markdown fence"""
    try:
        data = json.loads(content)
        return data if isinstance(data, dict) else None
    except (json.JSONDecodeError, TypeError):
        pass

    json_match = re.search(r'```(?:json)?\s*\n?(.*?)\n?```', content or "", re.DOTALL)
    if json_match:
        try:
            data = json.loads(json_match.group(1))
            return data if isinstance(data, dict) else None
        except json.JSONDecodeError:
            pass

    logger.info("Could not parse AI reply: %s", (content or "")[:200])
    return None


def build_generator(ai_enabled: bool, ai_config: AIConfig):
    if ai_enabled and ai_config.api_key:
        return AIQuestGenerator(ai_config)
    return TemplateQuestGenerator()
