"""
Quest delivery channel (server side)
Socket.IO events: connection acks, quest-of-the-day and suggestion pushes,
per-category request/response envelopes and forwarding of progression events.
"""

import asyncio
import logging
from typing import Any

import socketio
from socketio import exceptions

from ..core.config import ChannelConfig
from ..core.errors import QuestlineError
from ..core.events import Event, EventBus, EventType
from ..system.generator import CATEGORIES
from ..system.progression import ProgressionService

logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def parse_request(data: Any) -> tuple[str | None, str | None]:
    """(requestId, triggerPoint) from a request payload.

    Accepts no payload, a bare trigger string, or {"requestId", "triggerPoint"}.
    """
    if isinstance(data, str):
        return None, data
    if isinstance(data, dict):
        request_id = data.get("requestId")
        trigger = data.get("triggerPoint")
        return (
            str(request_id) if request_id is not None else None,
            trigger if isinstance(trigger, str) else None,
        )
    return None, None


class QuestChannelServer:
    """Socket.IO side of quest delivery"""

    def __init__(
        self,
        service: ProgressionService,
        bus: EventBus,
        config: ChannelConfig | None = None,
        sio: socketio.AsyncServer | None = None,
    ):
        self.service = service
        self.bus = bus
        self.config = config or ChannelConfig()
        self.sio = sio or socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
        # one lock per connection keeps its requests in arrival order
        self._locks: dict[str, asyncio.Lock] = {}

        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("connection", self.on_connection)
        self.sio.on("authed_connection", self.on_authed_connection)
        self.sio.on("ping", self.on_ping)
        for category in CATEGORIES.values():
            self.sio.on(category.request_event, self._make_request_handler(category.token))

        self.bus.on(EventType.BADGE_AWARDED, self._forward_badge)
        self.bus.on(EventType.QUEST_PROGRESS, self._forward_quests)

    def asgi_app(self, other_app=None) -> socketio.ASGIApp:
        return socketio.ASGIApp(self.sio, other_asgi_app=other_app, socketio_path=self.config.path)

    def resolve_token(self, token: Any) -> str | None:
        if not isinstance(token, str) or not token:
            return None
        return self.config.tokens.get(token)

    # ── Connection lifecycle ──────────────────────────

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        token = auth.get("token") if isinstance(auth, dict) else None
        if token is None:
            await self.sio.save_session(sid, {"user_id": None})
            return

        user_id = self.resolve_token(token)
        if user_id is None:
            logger.info("Rejected connection %s: invalid token", sid)
            raise exceptions.ConnectionRefusedError("invalid token")

        await self.sio.save_session(sid, {"user_id": user_id})
        await self.sio.enter_room(sid, user_room(user_id))
        await self.bus.emit_simple(EventType.CLIENT_CONNECTED, user_id=user_id, sid=sid)
        logger.info("User %s connected (%s)", user_id, sid)

    async def on_disconnect(self, sid: str, *args) -> None:
        self._locks.pop(sid, None)
        session = await self._session(sid)
        if session.get("user_id"):
            await self.bus.emit_simple(EventType.CLIENT_DISCONNECTED, user_id=session["user_id"], sid=sid)

    async def on_connection(self, sid: str, data: Any = None) -> None:
        await self.sio.emit("connection_ack", {"authenticated": False}, to=sid)

    async def on_authed_connection(self, sid: str, data: Any = None) -> None:
        user_id = (await self._session(sid)).get("user_id")
        if not user_id:
            await self.sio.emit("authed_connection_ack", {"authenticated": False}, to=sid)
            return

        await self.sio.emit("authed_connection_ack", {"authenticated": True, "userId": user_id}, to=sid)
        if self.config.push_on_connect:
            await self.push_personalized(sid, user_id)

    async def on_ping(self, sid: str, data: Any = None) -> None:
        await self.sio.emit("pong", data, to=sid)

    async def push_personalized(self, sid: str, user_id: str) -> None:
        """Quest of the day, then suggestions when there are any"""
        try:
            daily = await self.service.quest_of_the_day(user_id)
            if daily:
                await self.sio.emit("quest_of_the_day", daily.to_dict(), to=sid)
            suggestions = await self.service.suggestions(user_id)
            if suggestions:
                await self.sio.emit("quest_suggestions", [q.to_dict() for q in suggestions], to=sid)
        except QuestlineError as e:
            logger.warning("Personalized push failed for %s: %s", user_id, e)

    # ── Requests ──────────────────────────────────────

    def _make_request_handler(self, category: str):
        async def handler(sid: str, data: Any = None) -> None:
            await self.handle_request(sid, category, data)
        handler.__name__ = f"on_{CATEGORIES[category].request_event}"
        return handler

    async def handle_request(self, sid: str, category: str, data: Any = None) -> dict[str, Any]:
        request_id, trigger = parse_request(data)
        lock = self._locks.setdefault(sid, asyncio.Lock())
        async with lock:
            envelope = await self.build_response(sid, category, trigger)
            if request_id is not None:
                envelope["requestId"] = request_id
            await self.sio.emit(CATEGORIES[category].response_event, envelope, to=sid)
        return envelope

    async def build_response(self, sid: str, category: str, trigger: str | None = None) -> dict[str, Any]:
        label = CATEGORIES[category].label.lower()
        envelope: dict[str, Any] = {"quests": []}
        if category == "contextual":
            envelope["triggerPoint"] = trigger

        user_id = (await self._session(sid)).get("user_id")
        if not user_id:
            envelope["message"] = f"Could not generate {label} quests"
            envelope["error"] = "authentication required"
            return envelope

        try:
            quests = await self.service.generate_for(user_id, category, trigger)
        except QuestlineError as e:
            logger.warning("Generation of %s quests failed for %s: %s", category, user_id, e)
            envelope["message"] = f"Could not generate {label} quests"
            envelope["error"] = str(e)
            return envelope
        except Exception as e:
            logger.exception("Unexpected error generating %s quests for %s", category, user_id)
            envelope["message"] = f"Could not generate {label} quests"
            envelope["error"] = f"internal error: {e}"
            return envelope

        envelope["quests"] = [q.to_dict() for q in quests]
        envelope["message"] = (
            f"Generated {len(quests)} {label} quests" if quests else f"No new {label} quests right now"
        )
        return envelope

    async def _session(self, sid: str) -> dict[str, Any]:
        try:
            return await self.sio.get_session(sid) or {}
        except KeyError:
            return {}

    # ── Bus forwarding ────────────────────────────────

    async def _forward_badge(self, event: Event) -> None:
        user_id = event.data.get("user_id")
        if user_id:
            await self.sio.emit("badge_awarded", event.data.get("badge"), room=user_room(user_id))

    async def _forward_quests(self, event: Event) -> None:
        user_id = event.data.get("user_id")
        if user_id:
            await self.sio.emit("quests_updated", {"quests": event.data.get("quests", [])},
                                room=user_room(user_id))
