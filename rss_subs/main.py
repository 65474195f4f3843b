"""
Main entry point for RSS Subs.

Builds the server context, then runs the poll loop and the command loop
until a termination signal arrives.
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs
import structlog
import yaml
from pydantic import ValidationError

from rss_subs.commands import CommandInterpreter
from rss_subs.config import AppConfig, LoggingConfig, config_from_env, load_config
from rss_subs.errors import PersistenceError, TransportError
from rss_subs.fetcher import FeedFetcher
from rss_subs.poller import CycleReport, Poller
from rss_subs.registry import SubscriptionRegistry
from rss_subs.seen import SeenSetStore
from rss_subs.state import StateGateway
from rss_subs.storage import BlobStore
from rss_subs.telegram import TelegramTransport
from rss_subs.transport import Transport

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


class Server:
    """
    RSS Subs server context.

    Owns the subscription registry, the seen-set store and every
    collaborator, and runs the long-lived tasks of the bot.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: Transport | None = None,
        fetcher: FeedFetcher | None = None,
        store: BlobStore | None = None,
    ):
        """
        Initialize the server.

        Parameters
        ----------
        config : AppConfig
            Application configuration.
        transport : Transport | None
            Chat transport, defaults to a TelegramTransport.
        fetcher : FeedFetcher | None
            Feed fetcher, defaults to one built from the polling settings.
        store : BlobStore | None
            Durable store, defaults to the configured SQLite database.
        """
        self.config = config
        polling = config.polling

        if polling.proxy:
            logger.info("Using proxy: %s", redact_proxy_url(polling.proxy))

        self.fetcher = fetcher or FeedFetcher(
            timeout=polling.request_timeout,
            max_retries=polling.max_retries,
            user_agent=polling.user_agent,
            proxy_url=polling.proxy,
        )
        self.transport = transport or TelegramTransport(config.telegram, proxy_url=polling.proxy)
        self.store = store or BlobStore(config.storage.database_path)
        self.gateway = StateGateway(self.store, config.storage.state_key)

        self.registry = SubscriptionRegistry(self.fetcher)
        self.seen = SeenSetStore()
        self.poller = Poller(
            self.registry,
            self.seen,
            self.fetcher,
            self.transport,
            max_age=timedelta(hours=polling.max_age_hours),
            queue_size=polling.queue_size,
        )
        self.interpreter = CommandInterpreter(
            self.registry,
            self.seen,
            trigger_update=self.trigger_update,
            admin_username=config.telegram.admin_username,
        )

        self._stopped = False
        self._state_loaded = False
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start the bot and run until its tasks are cancelled."""
        logger.info("Starting RSS Subs")

        try:
            await self.store.initialize()
        except PersistenceError as e:
            logger.error("Failed to open storage, exiting: %s", e)
            await self.stop()
            sys.exit(1)

        await self.gateway.restore(self.registry, self.seen)
        self._state_loaded = True

        if not await self.transport.test_connection():
            logger.error("Failed to connect to Telegram, exiting")
            await self.stop()
            sys.exit(1)

        self._tasks = [
            asyncio.create_task(
                self.poller.run_forever(self.config.polling.interval, self.save)
            ),
            asyncio.create_task(self.respond()),
        ]

        logger.info(
            "RSS Subs started with %d feed(s), polling every %d seconds",
            len(self.registry),
            self.config.polling.interval,
        )

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Server tasks cancelled")

    async def stop(self) -> None:
        """Stop the bot, saving the state one last time."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping RSS Subs")

        tasks = self._tasks + list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._state_loaded:
            await self.save()

        await self.fetcher.close()
        await self.transport.close()
        await self.store.close()

        logger.info("RSS Subs stopped")

    async def save(self) -> bool:
        """Snapshot the state to durable storage."""
        return await self.gateway.snapshot(self.registry, self.seen)

    def trigger_update(self) -> asyncio.Task:
        """Start a poll cycle followed by a snapshot in the background."""
        task = asyncio.create_task(self.update())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def update(self) -> CycleReport | None:
        """Run one poll cycle and save the state."""
        try:
            report = await self.poller.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Manual poll cycle failed: %s", e)
            report = None
        await self.save()
        return report

    async def respond(self) -> None:
        """Handle inbound commands one at a time, in arrival order."""
        logger.debug("Starting command loop")

        async for message in self.transport.updates():
            try:
                reply = await self.interpreter.handle(
                    message.chat_id, message.username, message.text
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Failed to handle command from chat %d: %s", message.chat_id, e)
                continue

            if reply is None:
                continue

            try:
                await self.transport.send_text(message.chat_id, reply)
            except TransportError as e:
                logger.error("Failed to send reply: %s", e)


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    config : LoggingConfig | None
        Level and output format, defaults to info level text output.
    verbose : bool
        If True, set log level to DEBUG.
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper())

    if config.format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=[
                    structlog.stdlib.add_log_level,
                    structlog.stdlib.add_logger_name,
                    structlog.processors.TimeStamper(fmt="iso"),
                ],
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(level)
    else:
        coloredlogs.install(
            level=level,
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Telegram bot forwarding new RSS/Atom articles to subscribed chats",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to a YAML configuration file (environment variables otherwise)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    try:
        if args.config:
            config = load_config(Path(args.config))
        else:
            config = config_from_env()
    except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
        setup_logging(verbose=args.verbose)
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    setup_logging(config.logging, args.verbose)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(server.start())

    def signal_handler():
        logger.info("Received shutdown signal")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
