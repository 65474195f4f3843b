"""
Poll cycle orchestration.

Fetches every known feed concurrently, decides per chat which items are
new, and delivers them oldest-first through one bounded send queue.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from rss_subs.articles import ArticleKey, FeedItem, ParsedFeed, cutoff_key
from rss_subs.errors import FetchError, TransportError, UndatedArticleError
from rss_subs.registry import Feed, Fetcher, SubscriptionRegistry
from rss_subs.seen import SeenSetStore
from rss_subs.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=192)
DEFAULT_QUEUE_SIZE = 16


@dataclass(frozen=True)
class OutboundMessage:
    """A message waiting in the delivery queue."""

    chat_id: int
    text: str


@dataclass
class CycleReport:
    """
    Counters of one poll cycle.

    Attributes
    ----------
    feeds_polled : int
        Feeds fetched successfully.
    feeds_failed : int
        Feeds whose fetch or processing failed.
    skipped_items : int
        Items ignored because they had no timestamp.
    queued : int
        Messages put on the delivery queue.
    delivered : int
        Messages sent.
    send_failures : int
        Messages the transport failed to send.
    """

    feeds_polled: int = 0
    feeds_failed: int = 0
    skipped_items: int = 0
    queued: int = 0
    delivered: int = 0
    send_failures: int = 0


class Poller:
    """
    Runs poll cycles over the subscription registry.

    Cycles never overlap: a cycle requested while another one runs starts
    once the running one has finished.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        seen: SeenSetStore,
        fetcher: Fetcher,
        transport: Transport,
        max_age: timedelta = DEFAULT_MAX_AGE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize the poller.

        Parameters
        ----------
        registry : SubscriptionRegistry
            Feeds to poll and their subscribers.
        seen : SeenSetStore
            Per-chat de-duplication state.
        fetcher : Fetcher
            Fetches and parses feeds.
        transport : Transport
            Sends the delivered links.
        max_age : timedelta
            Unseen items older than this are marked seen but not delivered.
        queue_size : int
            Capacity of the delivery queue.
        """
        self.registry = registry
        self.seen = seen
        self.fetcher = fetcher
        self.transport = transport
        self.max_age = max_age
        self.queue_size = queue_size
        self._cycle_lock = asyncio.Lock()

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """
        Run one poll cycle to completion.

        Parameters
        ----------
        now : datetime | None
            Reference time for the staleness cutoff, defaults to the current
            UTC time.

        Returns
        -------
        CycleReport
            Counters of the cycle.
        """
        async with self._cycle_lock:
            now = now or datetime.now(timezone.utc)
            cutoff = cutoff_key(now, self.max_age)
            feeds = self.registry.items()
            report = CycleReport()

            logger.info("Starting poll cycle over %d feed(s)", len(feeds))

            queue: asyncio.Queue[OutboundMessage | None] = asyncio.Queue(
                maxsize=self.queue_size
            )
            sender = asyncio.create_task(self._drain(queue, report))

            try:
                results = await asyncio.gather(
                    *(self._poll_feed(url, feed, cutoff, report) for url, feed in feeds),
                    return_exceptions=True,
                )

                pending: dict[int, list[tuple[ArticleKey, FeedItem]]] = {}
                for (url, _), result in zip(feeds, results):
                    if isinstance(result, BaseException):
                        report.feeds_failed += 1
                        logger.error("Unexpected error polling %s: %r", url, result)
                    elif result is None:
                        report.feeds_failed += 1
                    else:
                        report.feeds_polled += 1
                        for chat_id, fresh in result.items():
                            pending.setdefault(chat_id, []).extend(fresh)

                # One ascending sequence per chat, whatever feed the items came from
                for chat_id, fresh in pending.items():
                    fresh.sort(key=lambda pair: pair[0])
                    for _, item in fresh:
                        await queue.put(OutboundMessage(chat_id=chat_id, text=item.link))
                        report.queued += 1
            finally:
                await queue.put(None)
                await sender

            logger.info(
                "Poll cycle done: %d feed(s) polled, %d failed, %d message(s) "
                "delivered, %d send failure(s)",
                report.feeds_polled,
                report.feeds_failed,
                report.delivered,
                report.send_failures,
            )
            return report

    async def _poll_feed(
        self,
        url: str,
        feed: Feed,
        cutoff: ArticleKey,
        report: CycleReport,
    ) -> dict[int, list[tuple[ArticleKey, FeedItem]]] | None:
        """
        Fetch one feed and select its new items for every subscriber.

        Returns
        -------
        dict[int, list[tuple[ArticleKey, FeedItem]]] | None
            Deliverable items per subscriber chat, or None if the feed could
            not be fetched.
        """
        try:
            parsed = await self.fetcher.fetch(url)
        except FetchError as e:
            logger.error("Failed to fetch feed '%s': %s", feed.title, e)
            return None

        keyed = self._key_items(parsed, report)

        selected = {}
        for chat_id in feed.subscribers:
            fresh = self.select_new(chat_id, keyed, cutoff)
            if fresh:
                selected[chat_id] = fresh
        return selected

    def _key_items(
        self, parsed: ParsedFeed, report: CycleReport
    ) -> list[tuple[ArticleKey, FeedItem]]:
        keyed = []
        for item in parsed.items:
            try:
                keyed.append((item.key, item))
            except UndatedArticleError as e:
                report.skipped_items += 1
                logger.warning("Skipping item in '%s': %s", parsed.title, e)
        return keyed

    def select_new(
        self,
        chat_id: int,
        keyed: list[tuple[ArticleKey, FeedItem]],
        cutoff: ArticleKey,
    ) -> list[tuple[ArticleKey, FeedItem]]:
        """
        Mark every item seen for a chat and return the deliverable ones.

        An item is deliverable if it was not seen before and its key sorts
        after the cutoff.

        Parameters
        ----------
        chat_id : int
            Subscriber chat.
        keyed : list[tuple[ArticleKey, FeedItem]]
            Items of one feed with their keys.
        cutoff : ArticleKey
            Staleness floor.

        Returns
        -------
        list[tuple[ArticleKey, FeedItem]]
            Deliverable items in feed order.
        """
        fresh = []
        for key, item in keyed:
            already_seen = self.seen.mark_seen(chat_id, key)
            if not already_seen and key > cutoff:
                fresh.append((key, item))
        return fresh

    async def _drain(
        self,
        queue: "asyncio.Queue[OutboundMessage | None]",
        report: CycleReport,
    ) -> None:
        """Send queued messages one at a time until the end marker."""
        while True:
            message = await queue.get()
            if message is None:
                return
            try:
                await self.transport.send_text(message.chat_id, message.text)
                report.delivered += 1
            except TransportError as e:
                report.send_failures += 1
                logger.error("Failed to deliver %s: %s", message.text, e)
            except Exception as e:
                report.send_failures += 1
                logger.error("Unexpected error delivering %s: %r", message.text, e)

    async def run_forever(
        self,
        interval: float,
        after_cycle: Callable[[], Awaitable[object]] | None = None,
    ) -> None:
        """
        Run a cycle now and then once per interval until cancelled.

        Parameters
        ----------
        interval : float
            Seconds between the start of two cycles.
        after_cycle : Callable[[], Awaitable[object]] | None
            Awaited after every cycle, typically a state snapshot.
        """
        loop = asyncio.get_running_loop()

        while True:
            started = loop.time()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Poll cycle failed: %s", e)

            if after_cycle is not None:
                await after_cycle()

            await asyncio.sleep(max(0.0, interval - (loop.time() - started)))
