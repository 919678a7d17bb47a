"""
Questline - main system
Wires storage, progression and the delivery channel, then serves HTTP + Socket.IO
"""

import asyncio
import logging
from datetime import datetime

import uvicorn

from .config import load_config, Config
from .events import EventBus, EventType
from .logging_setup import setup_logging
from ..api.channel import QuestChannelServer
from ..api.server import app as fastapi_app, set_system_ref
from ..storage.database import Database
from ..system.generator import build_generator
from ..system.progression import ProgressionService

logger = logging.getLogger(__name__)


class QuestlineSystem:
    """Questline core"""

    def __init__(self, config: Config | None = None):
        self.config = config or load_config()
        self.bus = EventBus()
        self.running = False
        self.start_time: datetime | None = None

        self.db = Database(self.config.storage.database)
        self.generator = build_generator(self.config.quests.ai_enabled, self.config.ai)
        self.progression = ProgressionService(
            self.db,
            self.bus,
            generator=self.generator,
            max_suggestions=self.config.quests.max_suggestions,
        )
        self.channel = QuestChannelServer(self.progression, self.bus, self.config.channel)
        self.asgi_app = self.channel.asgi_app(fastapi_app)

        self.bus.on(EventType.LEVEL_UP, self._on_level_up)

    async def start(self) -> None:
        """Start the system"""
        await self.db.connect()
        self.running = True
        self.start_time = datetime.now()
        set_system_ref(self)
        await self.bus.emit_simple(EventType.SYSTEM_START)

        logger.info("%s v%s started", self.config.system.name, self.config.system.version)
        logger.info("Web: http://%s:%d", self.config.web.host, self.config.web.port)
        logger.info("Channel path: /%s", self.config.channel.path.strip("/"))
        logger.info("Quest generator: %s", type(self.generator).__name__)

        await self._start_web()

    async def stop(self) -> None:
        """Stop the system"""
        self.running = False
        await self.bus.emit_simple(EventType.SYSTEM_STOP)
        await self.db.close()
        set_system_ref(None)
        logger.info("System stopped")

    async def _start_web(self) -> None:
        if not self.config.web.enabled:
            return

        config = uvicorn.Config(
            self.asgi_app,
            host=self.config.web.host,
            port=self.config.web.port,
            log_level=self.config.logging.level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

    async def _on_level_up(self, event) -> None:
        logger.info("Level up: %s -> Lv.%s", event.data.get("user_id"), event.data.get("level"))


async def main():
    """Entry point"""
    config = load_config()
    setup_logging(config.logging)
    system = QuestlineSystem(config)
    try:
        await system.start()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    except Exception:
        logger.exception("Fatal error")
    finally:
        await system.stop()


if __name__ == "__main__":
    asyncio.run(main())
