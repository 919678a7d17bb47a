"""
End-to-end tests for the quest channel.

QuestChannelServer is served by uvicorn on a local port and QuestChannelClient
talks to it over real Socket.IO connections.

Tests cover:
1. Authed connect triggers the quest-of-the-day push
2. A contextual request comes back with its requestId and trigger point
3. An unknown token is refused
"""
import asyncio
import socket
from datetime import datetime

import pytest
import uvicorn

from questline.api.channel import QuestChannelServer
from questline.client.channel import ConnectionState, QuestChannelClient
from questline.client.store import ClientStateStore
from questline.core.config import ChannelConfig
from questline.core.errors import ChannelNotConnectedError
from questline.core.events import EventBus
from questline.storage.database import Database
from questline.system.generator import TemplateQuestGenerator
from questline.system.progression import ProgressionService

TOKENS = {"tok-alice": "alice"}


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def wait_for(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


async def serving(db_path, scenario):
    """Start db, channel and uvicorn, run `scenario(url)`, then shut everything down"""
    db = Database(db_path)
    await db.connect()
    bus = EventBus()
    generator = TemplateQuestGenerator(clock=lambda: datetime(2024, 5, 1, 9, 0))
    channel = QuestChannelServer(ProgressionService(db, bus, generator=generator), bus, ChannelConfig(tokens=TOKENS))

    port = free_port()
    server = uvicorn.Server(uvicorn.Config(
        channel.asgi_app(), host="127.0.0.1", port=port, log_level="warning", lifespan="off",
    ))
    task = asyncio.create_task(server.serve())
    try:
        assert await wait_for(lambda: server.started)
        return await scenario(f"http://127.0.0.1:{port}")
    finally:
        server.should_exit = True
        await task
        await db.close()


class TestRoundTrip:
    """Client and server over a live Socket.IO connection"""

    def test_push_then_contextual_request(self, db_path):
        async def scenario(url):
            store = ClientStateStore()
            client = QuestChannelClient(url, "tok-alice", store, ChannelConfig(request_timeout=5))
            await client.connect()
            try:
                pushed = await wait_for(lambda: store.quest_of_the_day is not None)
                envelope = await client.request_and_wait("contextual", "focus_session")
                return client.state, pushed, store, envelope, dict(client._pending)
            finally:
                await client.disconnect()

        state, pushed, store, envelope, pending = asyncio.run(serving(db_path, scenario))

        assert state == ConnectionState.CONNECTED
        assert pushed
        assert store.quest_of_the_day.id == "daily-20240501"
        assert envelope is not None
        assert envelope["requestId"]
        assert envelope["triggerPoint"] == "focus_session"
        assert envelope["quests"]
        assert "error" not in envelope
        assert pending == {}
        assert [q.id for q in store.responses["contextual"]] == [q["id"] for q in envelope["quests"]]

    def test_unknown_token_refused(self, db_path):
        async def scenario(url):
            client = QuestChannelClient(url, "tok-mallory", ClientStateStore(), ChannelConfig())
            try:
                with pytest.raises(ChannelNotConnectedError):
                    await client.connect()
                return client.state
            finally:
                await client.disconnect()

        state = asyncio.run(serving(db_path, scenario))

        assert state == ConnectionState.DISCONNECTED
