"""
Subscription registry.

Maps feed URLs to their cached title and the set of subscribed chats.
"""

import asyncio
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from rss_subs.articles import ParsedFeed
from rss_subs.errors import NotFoundError

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    """Anything able to fetch and parse a feed by URL."""

    async def fetch(self, url: str) -> ParsedFeed:
        ...


@dataclass
class Feed:
    """
    A known feed.

    Attributes
    ----------
    title : str
        Feed title, resolved once when the feed was first added.
    subscribers : set[int]
        Chat ids subscribed to the feed.
    """

    title: str
    subscribers: set[int] = field(default_factory=set)

    def copy(self) -> "Feed":
        return Feed(title=self.title, subscribers=set(self.subscribers))


class SubscriptionRegistry:
    """
    Registry of feeds keyed by URL.

    Feeds are never removed, even when their last subscriber leaves; such
    feeds keep being polled. The map is guarded by a lock, and first-time
    additions of a URL are serialized per URL so the feed is fetched and
    created only once.
    """

    def __init__(self, fetcher: Fetcher):
        """
        Initialize the registry.

        Parameters
        ----------
        fetcher : Fetcher
            Used to resolve the title of feeds that are not yet known.
        """
        self.fetcher = fetcher
        self._feeds: dict[str, Feed] = {}
        self._lock = threading.RLock()
        self._url_locks: dict[str, asyncio.Lock] = {}
        self._url_waiters: dict[str, int] = {}

    async def add(self, url: str, chat_id: int) -> Feed:
        """
        Subscribe a chat to a feed.

        Parameters
        ----------
        url : str
            Feed URL.
        chat_id : int
            Chat to subscribe.

        Returns
        -------
        Feed
            A copy of the feed entry after the subscription.

        Raises
        ------
        FetchError
            If the URL is unknown and the feed cannot be fetched. The registry
            is left unchanged.
        """
        with self._lock:
            feed = self._feeds.get(url)
            if feed is not None:
                feed.subscribers.add(chat_id)
                return feed.copy()
            url_lock = self._url_locks.setdefault(url, asyncio.Lock())
            self._url_waiters[url] = self._url_waiters.get(url, 0) + 1

        try:
            async with url_lock:
                with self._lock:
                    feed = self._feeds.get(url)
                if feed is None:
                    parsed = await self.fetcher.fetch(url)
                    logger.info("New feed '%s' at %s", parsed.title, url)
                    with self._lock:
                        feed = self._feeds.setdefault(url, Feed(title=parsed.title))
        finally:
            with self._lock:
                self._url_waiters[url] -= 1
                if not self._url_waiters[url]:
                    del self._url_waiters[url]
                    del self._url_locks[url]

        with self._lock:
            feed.subscribers.add(chat_id)
            return feed.copy()

    def remove(self, url: str, query: str, chat_id: int) -> tuple[str, Feed]:
        """
        Unsubscribe a chat from a feed.

        An exact URL match wins. Otherwise the first feed, in registry order,
        whose title contains ``query`` case-insensitively is used.

        Parameters
        ----------
        url : str
            Exact feed URL, may be empty.
        query : str
            Fallback title query.
        chat_id : int
            Chat to unsubscribe.

        Returns
        -------
        tuple[str, Feed]
            URL and a copy of the matched feed.

        Raises
        ------
        NotFoundError
            If neither the URL nor the query matches a feed.
        """
        with self._lock:
            if url and url in self._feeds:
                feed = self._feeds[url]
                feed.subscribers.discard(chat_id)
                return url, feed.copy()

            needle = query.lower()
            for feed_url, feed in self._feeds.items():
                if needle in feed.title.lower():
                    feed.subscribers.discard(chat_id)
                    return feed_url, feed.copy()

        raise NotFoundError("No matching subscription found")

    def list_subscriptions(self, chat_id: int) -> list[str]:
        """
        List the feeds a chat is subscribed to.

        Returns
        -------
        list[str]
            One ``"<title>: <url>"`` line per feed.
        """
        with self._lock:
            return [
                f"{feed.title}: {url}"
                for url, feed in self._feeds.items()
                if chat_id in feed.subscribers
            ]

    def get(self, url: str) -> Feed | None:
        with self._lock:
            feed = self._feeds.get(url)
            return feed.copy() if feed is not None else None

    def items(self) -> list[tuple[str, Feed]]:
        """Return a point-in-time copy of every (url, feed) pair."""
        with self._lock:
            return [(url, feed.copy()) for url, feed in self._feeds.items()]

    def dump(self) -> dict[str, Feed]:
        with self._lock:
            return {url: feed.copy() for url, feed in self._feeds.items()}

    def load(self, feeds: Mapping[str, Feed]) -> None:
        """Replace the registry content."""
        with self._lock:
            self._feeds = {url: feed.copy() for url, feed in feeds.items()}
        logger.debug("Loaded %d feed(s)", len(self._feeds))

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._feeds

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)

