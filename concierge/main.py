"""
concierge entry point.
Initialises storage and clients, then runs the sync and proactive schedules.

    python -m concierge.main
"""

import asyncio
import logging
import os
import signal

from .agents.proactive import ProactiveAgent
from .ai.claude_client import ClaudeClient
from .ai.orchestrator import ConversationOrchestrator
from .ai.tools import ToolCatalog, ToolDispatcher
from .cache import (
    ActivityStore,
    CacheStore,
    ChatStore,
    DatabaseManager,
    InstructionStore,
    SyncRunStore,
    UserStore,
)
from .clients import ClientFactory
from .config import settings
from .health import run_health_server, set_ready
from .logging_config import setup_logging
from .scheduler.proactive import ProactiveScheduler
from .scheduler.queue import APSchedulerJobQueue
from .scheduler.sync_jobs import SyncScheduler
from .sync.engine import SyncEngine
from .vector import Embedder, Retriever, VectorIndex, VectorProjector

logger = logging.getLogger(__name__)


class Application:
    """Owns every long-lived component. Built synchronously, started in the loop."""

    def __init__(self) -> None:
        self.db = DatabaseManager()
        self.cache = CacheStore(self.db)
        self.users = UserStore(self.db)
        self.runs = SyncRunStore(self.db)
        self.instructions = InstructionStore(self.db)
        self.activities = ActivityStore(self.db)
        self.chat_store = ChatStore(self.db)

        self.clients = ClientFactory(self.users)
        self.engine = SyncEngine(
            cache=self.cache,
            run_store=self.runs,
            user_store=self.users,
            clients=self.clients,
        )

        self.embedder = Embedder()
        self.index = VectorIndex(self.db)
        self.projector = VectorProjector(self.cache, self.index, self.embedder)
        self.retriever = Retriever(self.cache, self.index, self.embedder)

        self.claude = ClaudeClient()
        self.catalog = ToolCatalog()
        self.dispatcher = ToolDispatcher(clients=self.clients, cache=self.cache, catalog=self.catalog)
        self.orchestrator = ConversationOrchestrator(
            self.claude, self.retriever, self.dispatcher, self.catalog, self.chat_store
        )
        self.agent = ProactiveAgent(
            claude=self.claude,
            orchestrator=self.orchestrator,
            instructions=self.instructions,
            activities=self.activities,
            cache=self.cache,
            users=self.users,
        )

        self.queue = APSchedulerJobQueue()
        self.sync_scheduler = SyncScheduler(
            engine=self.engine,
            projector=self.projector,
            run_store=self.runs,
            user_store=self.users,
            queue=self.queue,
        )
        self.proactive_scheduler = ProactiveScheduler(self.agent, self.instructions, self.queue)

    async def start(self) -> None:
        await self.db.init()
        await self.runs.mark_interrupted()  # crash recovery: flip stale 'Running' → 'Failed'
        logger.info("Database initialised (vector search %s)",
                    "available" if self.index.available else "unavailable")

        self.queue.start()
        self.sync_scheduler.start()
        self.proactive_scheduler.start()

    async def stop(self) -> None:
        # Stopping the scheduler cancels running jobs, so let syncs wind down first
        self.queue.pause()
        await self.sync_scheduler.shutdown(settings.shutdown_timeout_seconds)
        self.queue.stop()
        await self.db.close()


async def _serve(app: Application) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    # Start health HTTP server immediately so the container is reachable
    # during the /ready 503 "starting" phase
    health_task = asyncio.create_task(run_health_server())
    try:
        await app.start()
        set_ready()
        logger.info("concierge ready")
        await stop.wait()
        logger.info("Shutdown signal received — stopping")
    finally:
        health_task.cancel()
        await app.stop()


def main() -> None:
    # Ensure data directories exist
    os.makedirs(settings.data_dir, exist_ok=True)
    os.makedirs(settings.logs_dir, exist_ok=True)

    # Configure logging
    setup_logging(settings.log_level, settings.logs_dir, settings.azure_environment)

    logger.info(
        "Starting concierge (env=%s, data_dir=%s)",
        "azure" if settings.azure_environment else "local",
        settings.data_dir,
    )
    asyncio.run(_serve(Application()))


if __name__ == "__main__":
    main()
