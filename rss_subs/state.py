"""
Persistence of the bot state.

The subscription registry and the seen-set store together are the whole
durable state of the bot. They are saved as one JSON document in a
BlobStore after every poll cycle and at shutdown, and restored at startup.
"""

import asyncio
import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from rss_subs.articles import ArticleKey
from rss_subs.errors import PersistenceError
from rss_subs.registry import Feed, SubscriptionRegistry
from rss_subs.seen import SeenSetStore
from rss_subs.storage import BlobStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_KEY = "rsssubsbot.json"


class PersistedFeed(BaseModel):
    """
    Stored form of a Feed.

    Attributes
    ----------
    title : str
        Feed title.
    subscribers : list[int]
        Sorted chat ids. The legacy layout stores them as the keys of an
        object under ``Chats``.
    """

    title: str = Field(default="", validation_alias=AliasChoices("title", "Title"))
    subscribers: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("subscribers", "Chats"),
    )

    @field_validator("subscribers", mode="before")
    @classmethod
    def chats_object_to_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, dict):
            return list(v)
        return v


class PersistedState(BaseModel):
    """
    Stored form of the whole bot state.

    Attributes
    ----------
    feeds : dict[str, PersistedFeed]
        Feed URL to feed.
    seen : dict[int, list[ArticleKey]]
        Chat id to sorted ArticleKeys.
    """

    feeds: dict[str, PersistedFeed] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("feeds", "Feeds"),
    )
    seen: dict[int, list[ArticleKey]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("seen", "Seens"),
    )

    @field_validator("feeds", "seen", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("seen", mode="before")
    @classmethod
    def null_sets_to_empty(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: [] if keys is None else keys for k, keys in v.items()}
        return v


def encode_state(registry: SubscriptionRegistry, seen: SeenSetStore) -> bytes:
    """
    Serialize the registry and the seen-sets into a JSON document.

    Sets are written as sorted lists so equal states encode identically.
    """
    state = PersistedState(
        feeds={
            url: PersistedFeed(title=feed.title, subscribers=sorted(feed.subscribers))
            for url, feed in registry.dump().items()
        },
        seen=seen.dump(),
    )
    return state.model_dump_json().encode("utf-8")


def decode_state(data: bytes | str) -> PersistedState:
    """
    Parse a JSON state document.

    Raises
    ------
    pydantic.ValidationError
        If the document is not valid JSON or does not match the schema.
    """
    return PersistedState.model_validate_json(data)


def apply_state(
    state: PersistedState,
    registry: SubscriptionRegistry,
    seen: SeenSetStore,
) -> None:
    """Load a decoded state into the registry and the seen-set store."""
    registry.load(
        {
            url: Feed(title=feed.title, subscribers=set(feed.subscribers))
            for url, feed in state.feeds.items()
        }
    )
    seen.load(state.seen)


class StateGateway:
    """
    Snapshot and restore of the bot state in a BlobStore.

    Neither operation raises: failures are logged and reported through the
    return value, so persistence problems never stop the bot.
    """

    def __init__(self, store: BlobStore, key: str = DEFAULT_STATE_KEY):
        """
        Initialize the gateway.

        Parameters
        ----------
        store : BlobStore
            Initialized durable store.
        key : str
            Name of the state document.
        """
        self.store = store
        self.key = key

    async def restore(self, registry: SubscriptionRegistry, seen: SeenSetStore) -> bool:
        """
        Load the saved state, if any.

        Returns
        -------
        bool
            True if a saved state was loaded. False leaves both stores empty.
        """
        try:
            data = await self.store.read(self.key)
        except PersistenceError as e:
            logger.error("Failed to read saved state, starting empty: %s", e)
            return False

        if data is None:
            logger.info("No saved state found under '%s', starting empty", self.key)
            return False

        try:
            state = decode_state(data)
        except ValidationError as e:
            logger.error("Saved state is not decodable, starting empty: %s", e)
            return False

        apply_state(state, registry, seen)
        logger.info(
            "Restored %d feed(s) and seen-sets for %d chat(s)",
            len(state.feeds),
            len(state.seen),
        )
        return True

    async def snapshot(self, registry: SubscriptionRegistry, seen: SeenSetStore) -> bool:
        """
        Save the current state.

        Returns
        -------
        bool
            True if the state was written.
        """
        data = await asyncio.to_thread(encode_state, registry, seen)

        try:
            await self.store.write(self.key, data)
        except PersistenceError as e:
            logger.error("Failed to save state: %s", e)
            return False

        logger.debug("Saved state (%d bytes)", len(data))
        return True
