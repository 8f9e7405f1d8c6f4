"""
Main entry point for the bootstrap configuration ensurer.

Connects to the configuration store, warms the object cache and runs the
bootstrap controller until a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from cache import ObjectCache
from config import get_config
from configuration import new_access
from controller import BootstrapController
from db import DatabaseManager
from events import EventBus
from objects import FlowSchema, PriorityLevelConfiguration

logger = logging.getLogger(__name__)

MANAGED_KINDS = [PriorityLevelConfiguration.kind, FlowSchema.kind]


class Application:
    """Main application that wires the store, cache and controller together."""

    def __init__(self):
        self.config = get_config()
        self.db: Optional[DatabaseManager] = None
        self.event_bus: Optional[EventBus] = None
        self.cache: Optional[ObjectCache] = None
        self.controller: Optional[BootstrapController] = None
        self._tasks: List[asyncio.Task] = []
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing bootstrap configuration ensurer")

        self.event_bus = EventBus(queue_size=self.config.ensurer.cache_queue_size)

        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
            event_bus=self.event_bus,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        self.cache = ObjectCache(self.db, self.event_bus)
        for kind in MANAGED_KINDS:
            await self.cache.sync(kind)

        self.controller = BootstrapController(
            priority_levels=new_access(
                PriorityLevelConfiguration.kind, self.db, self.cache
            ),
            flow_schemas=new_access(FlowSchema.kind, self.db, self.cache),
            config=self.config.ensurer,
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting bootstrap configuration ensurer")

        self._tasks = [
            asyncio.create_task(self.cache.run()),
            asyncio.create_task(self.controller.start()),
        ]

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        logger.info("Stopping bootstrap configuration ensurer")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.cache:
            await self.cache.stop()

        if self.db:
            await self.db.close()

        logger.info("Bootstrap configuration ensurer stopped")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def main():
    """Main entry point."""
    app = Application()
    setup_logging(app.config.logging.log_level)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
