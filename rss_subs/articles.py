"""
Article identity for feed items.

Normalizes feedparser entries into FeedItem objects and derives the
ArticleKey used to de-duplicate deliveries per chat.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from rss_subs.errors import UndatedArticleError

logger = logging.getLogger(__name__)

# RFC 3339 at second precision, always in UTC, so string order is time order
KEY_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ArticleKey = str


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_struct_time(value: time.struct_time | None) -> datetime | None:
    """Convert a feedparser UTC struct_time into an aware datetime."""
    if value is None:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc)


def derive_key(
    title: str,
    published: datetime | None = None,
    updated: datetime | None = None,
) -> ArticleKey:
    """
    Derive the identifier of a feed item.

    The updated time supersedes the published time. Two items with the same
    title and effective time produce the same key whatever feed they come from.

    Parameters
    ----------
    title : str
        Item title.
    published : datetime | None
        Publication time of the item.
    updated : datetime | None
        Last update time of the item.

    Returns
    -------
    ArticleKey
        ``<UTC timestamp>-<title>``.

    Raises
    ------
    UndatedArticleError
        If neither timestamp is present.
    """
    effective = updated if updated is not None else published
    if effective is None:
        raise UndatedArticleError(f"item {title!r} has no published or updated time")
    return f"{_to_utc(effective).strftime(KEY_TIME_FORMAT)}-{title}"


def cutoff_key(now: datetime, max_age: timedelta) -> ArticleKey:
    """Return the key below which unseen items are no longer delivered."""
    return derive_key("", now - max_age)


@dataclass
class FeedItem:
    """
    One item of a fetched feed.

    Attributes
    ----------
    title : str
        Item title.
    link : str
        Item URL, delivered as the message text.
    published : datetime | None
        Publication time in UTC.
    updated : datetime | None
        Update time in UTC.
    """

    title: str = ""
    link: str = ""
    published: datetime | None = None
    updated: datetime | None = None

    @property
    def key(self) -> ArticleKey:
        """ArticleKey of this item; raises UndatedArticleError if undated."""
        return derive_key(self.title, self.published, self.updated)

    @classmethod
    def from_feedparser(cls, entry: Any) -> "FeedItem":
        """
        Create a FeedItem from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry (or any mapping with the same keys).

        Returns
        -------
        FeedItem
            Normalized item instance.
        """
        return cls(
            title=entry.get("title", "") or "",
            link=entry.get("link", "") or "",
            published=_from_struct_time(entry.get("published_parsed")),
            updated=_from_struct_time(entry.get("updated_parsed")),
        )


@dataclass
class ParsedFeed:
    """A fetched feed: its title and items in document order."""

    title: str = ""
    items: list[FeedItem] = field(default_factory=list)
