"""
Event bus - in-process communication between progression, settlement and the channel
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


class EventType(Enum):
    # Evaluation
    SNAPSHOT_EVALUATED = "snapshot_evaluated"
    BADGE_AWARDED = "badge_awarded"
    QUEST_PROGRESS = "quest_progress"
    QUEST_COMPLETED = "quest_completed"

    # Settlement
    XP_GAINED = "xp_gained"
    LEVEL_UP = "level_up"

    # Delivery
    QUEST_OF_THE_DAY = "quest_of_the_day"
    QUEST_SUGGESTIONS = "quest_suggestions"
    CLIENT_CONNECTED = "client_connected"
    CLIENT_DISCONNECTED = "client_disconnected"

    # Lifecycle
    SYSTEM_START = "system_start"
    SYSTEM_STOP = "system_stop"


@dataclass
class Event:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = "system"


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """Async event bus"""

    def __init__(self, max_history: int = 1000):
        self._handlers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._history: list[Event] = []
        self._max_history = max_history

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    async def emit(self, event: Event) -> None:
        """Run all handlers; a failing handler is logged and does not affect the others"""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(event.type, []))
        if not handlers:
            return
        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for %s: %s",
                    getattr(handler, "__qualname__", handler), event.type.value, result,
                )

    async def emit_simple(self, event_type: EventType, **data) -> None:
        await self.emit(Event(type=event_type, data=data))

    def get_history(
        self,
        event_type: EventType | None = None,
        limit: int = 50,
    ) -> list[Event]:
        if event_type:
            filtered = [e for e in self._history if e.type == event_type]
        else:
            filtered = self._history
        return filtered[-limit:]
