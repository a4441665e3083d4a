"""
DocService Server - Main entry point.

This module starts the DocService server with all components:
- Storage backend connection (SQLite, Cassandra or in-memory)
- Schema confirmation (keyspace + documents/links/references tables)
- HTTP server

Usage:
    python -m dbaas.docservice_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The server does not accept requests before ensure_schema() succeeded
    - A SchemaError or identifier-source failure aborts startup
    - Graceful shutdown stops the HTTP site before closing storage

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_http_app, start_http_site
from .config import ServerConfig
from .documents import DocService
from .ids import VersionIdGenerator, check_clock
from .schema.manager import SchemaManager
from .storage import StorageBackend, create_storage_backend

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("cassandra").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """DocService Server orchestrator.

    Manages the lifecycle of all server components:
    - Storage backend connection
    - Schema confirmation
    - HTTP server

    Attributes:
        config: Server configuration
        backend: Storage backend (shared by every request)
        service: DocService facade

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.backend: StorageBackend | None = None
        self.service: DocService | None = None
        self._runner: web.AppRunner | None = None

    async def start(self, wait: bool = True) -> None:
        """Start the server and all components.

        Args:
            wait: Block until request_shutdown() is called
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting DocService server")
        self.config.log_config()

        try:
            check_clock()

            self.backend = create_storage_backend(self.config)
            await self.backend.connect()
            logger.info("Storage backend connected")

            schema = SchemaManager(
                self.backend,
                keyspace=self.config.schema.keyspace,
                replication_factor=self.config.schema.replication_factor,
            )
            await schema.ensure_schema()

            self.service = DocService(self.backend, VersionIdGenerator())

            app = create_http_app(self.service, self.config.http)
            self._runner = await start_http_site(
                app, self.config.http.host, self.config.http.port
            )

            self._running = True
            logger.info("DocService server started successfully")

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._teardown()
            raise

        if wait:
            await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping DocService server")
        await self._teardown()
        self._running = False
        logger.info("DocService server stopped")

    async def _teardown(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

        if self.backend is not None:
            await self.backend.close()
            self.backend = None

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    exit_code = 0
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    except Exception:
        exit_code = 1
    finally:
        loop.run_until_complete(server.stop())
        loop.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
