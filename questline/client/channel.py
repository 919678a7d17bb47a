"""
Quest delivery channel (client side)
A public and an authenticated Socket.IO connection; category requests carry a
requestId so responses are matched to the request that caused them.
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any

import socketio
from socketio import exceptions

from ..core.config import ChannelConfig
from ..core.errors import ChannelNotConnectedError, UnknownCategoryError
from ..system.generator import CATEGORIES, TRIGGER_POINTS
from .store import ClientStateStore

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class QuestChannelClient:
    """Client for the quest channel, feeding a ClientStateStore"""

    def __init__(
        self,
        url: str,
        token: str,
        store: ClientStateStore | None = None,
        config: ChannelConfig | None = None,
    ):
        self.url = url
        self.token = token
        self.store = store or ClientStateStore()
        self.config = config or ChannelConfig()
        self.state = ConnectionState.DISCONNECTED
        self._closing = False
        self._watcher: asyncio.Task | None = None
        # requestId -> (category, future)
        self._pending: dict[str, tuple[str, asyncio.Future]] = {}

        # fixed delay between attempts, no jitter
        reconnect = dict(
            reconnection=True,
            reconnection_attempts=self.config.reconnection_attempts,
            reconnection_delay=self.config.reconnection_delay,
            reconnection_delay_max=self.config.reconnection_delay,
            randomization_factor=0,
        )
        self.public = socketio.AsyncClient(**reconnect)
        self.authed = socketio.AsyncClient(**reconnect)
        self._register_handlers()

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _register_handlers(self) -> None:
        self.authed.on("connect", self._on_connect)
        self.authed.on("disconnect", self._on_disconnect)
        self.authed.on("connect_error", self._on_connect_error)
        self.authed.on("authed_connection_ack", self._on_authed_ack)
        self.authed.on("quest_of_the_day", self._on_quest_of_the_day)
        self.authed.on("quest_suggestions", self._on_quest_suggestions)
        self.authed.on("badge_awarded", self._on_badge_awarded)
        self.authed.on("quests_updated", self._on_quests_updated)
        for category in CATEGORIES.values():
            self.authed.on(category.response_event, self._make_response_handler(category.token))

    # ── Connection ────────────────────────────────────

    async def connect(self) -> None:
        """Open both connections; raises ChannelNotConnectedError when the server is unreachable"""
        self._closing = False
        self.state = ConnectionState.CONNECTING
        try:
            await self.public.connect(self.url, socketio_path=self.config.path)
            await self.public.emit("connection")
            await self.authed.connect(
                self.url,
                auth={"token": self.token},
                socketio_path=self.config.path,
            )
        except exceptions.ConnectionError as e:
            self.state = ConnectionState.DISCONNECTED
            raise ChannelNotConnectedError("authed") from e
        self._watcher = asyncio.create_task(self._watch_connection())

    async def disconnect(self) -> None:
        self._closing = True
        for client in (self.authed, self.public):
            if client.connected:
                await client.disconnect()
        if self._watcher and not self._watcher.done():
            self._watcher.cancel()
        self._watcher = None
        self.state = ConnectionState.DISCONNECTED

    async def _watch_connection(self) -> None:
        """Settle on DISCONNECTED once the authed client stops reconnecting"""
        await self.authed.wait()
        if self.state != ConnectionState.DISCONNECTED:
            logger.warning("Gave up reconnecting to %s", self.url)
        self.state = ConnectionState.DISCONNECTED

    async def _on_connect(self) -> None:
        self.state = ConnectionState.CONNECTED
        logger.info("Connected to %s", self.url)
        await self.authed.emit("authed_connection")

    async def _on_disconnect(self, *args) -> None:
        if self._closing or not self.config.reconnection_attempts:
            self.state = ConnectionState.DISCONNECTED
        else:
            self.state = ConnectionState.RECONNECTING
        logger.info("Disconnected from %s (%s)", self.url, self.state.value)

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.warning("Connection error: %s", data)
        if self.state == ConnectionState.CONNECTING:
            self.state = ConnectionState.DISCONNECTED

    async def _on_authed_ack(self, data: Any = None) -> None:
        if not (isinstance(data, dict) and data.get("authenticated")):
            logger.warning("Server did not accept the session token")

    async def ping(self) -> None:
        if not self.connected:
            raise ChannelNotConnectedError("authed")
        await self.authed.emit("ping", {"sentAt": asyncio.get_running_loop().time()})

    # ── Pushes ────────────────────────────────────────

    async def _on_quest_of_the_day(self, data: Any) -> None:
        self.store.apply_quest_of_the_day(data)

    async def _on_quest_suggestions(self, data: Any) -> None:
        self.store.apply_suggestions(data or [])

    async def _on_badge_awarded(self, data: Any) -> None:
        if isinstance(data, dict):
            self.store.apply_badges([data])

    async def _on_quests_updated(self, data: Any) -> None:
        if isinstance(data, dict):
            self.store.reconcile(data.get("quests", []))

    # ── Requests ──────────────────────────────────────

    async def request(self, category: str, trigger: str | None = None) -> str:
        """Fire a category request and return its requestId.

        The category is marked loading until its response arrives or the
        request times out. While not connected the request is dropped.
        """
        request_id, _ = await self._send(category, trigger)
        return request_id

    async def _send(self, category: str, trigger: str | None) -> tuple[str, asyncio.Future]:
        if category not in CATEGORIES:
            raise UnknownCategoryError(category)
        if category == "contextual" and trigger not in TRIGGER_POINTS:
            raise UnknownCategoryError(str(trigger))

        loop = asyncio.get_running_loop()
        request_id = uuid.uuid4().hex
        future = loop.create_future()
        self._pending[request_id] = (category, future)
        self.store.set_loading(category, True)
        loop.call_later(self.config.request_timeout, self._expire, request_id)

        if not self.connected:
            logger.info("Not connected, dropping %s request", category)
            return request_id, future

        payload: dict[str, Any] = {"requestId": request_id}
        if trigger:
            payload["triggerPoint"] = trigger
        try:
            await self.authed.emit(CATEGORIES[category].request_event, payload)
        except exceptions.SocketIOError as e:
            logger.info("Dropping %s request: %s", category, e)
        return request_id, future

    async def request_contextual(self, trigger: str) -> str:
        return await self.request("contextual", trigger)

    async def request_and_wait(self, category: str, trigger: str | None = None) -> dict[str, Any] | None:
        """Request and wait for the matching envelope; None on timeout"""
        _, future = await self._send(category, trigger)
        return await future

    def _expire(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        category, future = pending
        if not future.done():
            future.set_result(None)
        logger.info("%s request %s timed out", category, request_id)
        if not any(c == category for c, _ in self._pending.values()):
            self.store.set_loading(category, False)

    def _make_response_handler(self, category: str):
        async def handler(envelope: Any) -> None:
            self._on_response(category, envelope)
        return handler

    def _on_response(self, category: str, envelope: Any) -> None:
        envelope = envelope if isinstance(envelope, dict) else {}
        self.store.apply_response(category, envelope)

        request_id = envelope.get("requestId")
        if request_id is None:
            # uncorrelated response: settle the oldest request of that category
            request_id = next((rid for rid, (c, _) in self._pending.items() if c == category), None)
        if request_id not in self._pending:
            return
        _, future = self._pending.pop(request_id)
        if not future.done():
            future.set_result(envelope)
        if any(c == category for c, _ in self._pending.values()):
            self.store.set_loading(category, True)
