"""
Shared fixtures for RSS Subs tests.

Provides common test fixtures for use across all test modules.
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from rss_subs.articles import FeedItem, ParsedFeed
from rss_subs.config import AppConfig, TelegramConfig
from rss_subs.errors import FetchError
from rss_subs.registry import SubscriptionRegistry
from rss_subs.seen import SeenSetStore
from rss_subs.storage import BlobStore


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Reference "now" used by poll cycle tests
NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeFetcher:
    """
    In-memory stand-in for FeedFetcher.

    Serves ParsedFeed objects by URL; unknown URLs and registered exceptions
    raise. Every requested URL is recorded in ``calls``. ``delay`` applies to
    every fetch, ``delays`` overrides it per URL.
    """

    def __init__(self, feeds: dict[str, ParsedFeed | Exception] | None = None):
        self.feeds: dict[str, ParsedFeed | Exception] = dict(feeds or {})
        self.calls: list[str] = []
        self.delay = 0.0
        self.delays: dict[str, float] = {}
        self.closed = False

    async def fetch(self, url: str) -> ParsedFeed:
        self.calls.append(url)
        delay = self.delays.get(url, self.delay)
        if delay:
            await asyncio.sleep(delay)
        result = self.feeds.get(url)
        if result is None:
            raise FetchError(url, "404 Not Found")
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


def make_item(title: str, age: timedelta, link: str | None = None, updated: bool = False) -> FeedItem:
    """
    Build a FeedItem dated ``age`` before NOW.

    Parameters
    ----------
    title : str
        Item title.
    age : timedelta
        Age of the item relative to NOW.
    link : str | None
        Item link, derived from the title when omitted.
    updated : bool
        Put the timestamp in ``updated`` instead of ``published``.
    """
    when = NOW - age
    return FeedItem(
        title=title,
        link=link or f"https://example.com/{title.lower().replace(' ', '-')}",
        published=None if updated else when,
        updated=when if updated else None,
    )


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_rss_content(fixtures_dir: Path) -> str:
    """Return contents of sample RSS feed."""
    return (fixtures_dir / "sample_rss.xml").read_text()


@pytest.fixture
def sample_atom_content(fixtures_dir: Path) -> str:
    """Return contents of sample Atom feed."""
    return (fixtures_dir / "sample_atom.xml").read_text()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    """Create an empty fake fetcher."""
    return FakeFetcher()


@pytest.fixture
def registry(fake_fetcher: FakeFetcher) -> SubscriptionRegistry:
    """Create an empty registry backed by the fake fetcher."""
    return SubscriptionRegistry(fake_fetcher)


@pytest.fixture
def seen() -> SeenSetStore:
    """Create an empty seen-set store."""
    return SeenSetStore()


@pytest.fixture
def mock_transport() -> MagicMock:
    """
    Create a mock chat transport.

    Returns
    -------
    MagicMock
        A transport whose async methods are AsyncMocks.
    """
    transport = MagicMock()
    transport.send_text = AsyncMock()
    transport.test_connection = AsyncMock(return_value=True)
    transport.close = AsyncMock()
    return transport


@pytest.fixture
def mock_telegram_bot() -> MagicMock:
    """
    Create a mock Telegram bot.

    Returns
    -------
    MagicMock
        A mock Bot instance with common methods mocked.
    """
    bot = MagicMock()
    bot.send_message = AsyncMock()
    bot.get_updates = AsyncMock(return_value=[])
    bot.get_me = AsyncMock(return_value=MagicMock(username="test_bot"))
    bot.initialize = AsyncMock()
    bot.shutdown = AsyncMock()
    return bot


@pytest.fixture
def minimal_telegram_config() -> TelegramConfig:
    """Create a minimal valid Telegram configuration."""
    return TelegramConfig(bot_token="1234567890:ABCdefGHIjklMNOpqrsTUVwxyz")


@pytest.fixture
def minimal_app_config(minimal_telegram_config: TelegramConfig) -> AppConfig:
    """Create a minimal valid app configuration."""
    return AppConfig(telegram=minimal_telegram_config)


@pytest_asyncio.fixture
async def in_memory_store() -> AsyncGenerator[BlobStore, None]:
    """
    Create an in-memory SQLite blob store for testing.

    Yields
    ------
    BlobStore
        An initialized in-memory store instance.
    """
    store = BlobStore(":memory:")
    await store.initialize()
    yield store
    await store.close()
