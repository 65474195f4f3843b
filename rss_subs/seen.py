"""
Per-chat record of delivered articles.

The SeenSetStore is the single de-duplication gate of the poll cycle: an
item is delivered to a chat only if mark_seen reports it as new.
"""

import logging
import threading
from collections.abc import Iterable, Mapping

from rss_subs.articles import ArticleKey

logger = logging.getLogger(__name__)


class SeenSetStore:
    """
    Mapping of chat id to the set of ArticleKeys already handled for it.

    Sets only grow. Every access goes through one lock so concurrent poll
    tasks, command handling and snapshot encoding on a worker thread all
    observe consistent sets.
    """

    def __init__(self) -> None:
        self._seen: dict[int, set[ArticleKey]] = {}
        self._lock = threading.RLock()

    def check_initialized(self, chat_id: int) -> None:
        """
        Ensure a (possibly empty) seen-set exists for a chat.

        Parameters
        ----------
        chat_id : int
            Telegram chat identifier.
        """
        with self._lock:
            if chat_id not in self._seen:
                self._seen[chat_id] = set()
                logger.debug("Initialized seen-set for chat %d", chat_id)

    def mark_seen(self, chat_id: int, key: ArticleKey) -> bool:
        """
        Record a key for a chat.

        Parameters
        ----------
        chat_id : int
            Telegram chat identifier.
        key : ArticleKey
            Identifier of the article.

        Returns
        -------
        bool
            True if the key was already present before this call.
        """
        with self._lock:
            seen = self._seen.setdefault(chat_id, set())
            if key in seen:
                return True
            seen.add(key)
            return False

    def is_seen(self, chat_id: int, key: ArticleKey) -> bool:
        """Return True if the key has been recorded for the chat."""
        with self._lock:
            return key in self._seen.get(chat_id, ())

    def chats(self) -> list[int]:
        """Return the chat ids that have a seen-set."""
        with self._lock:
            return list(self._seen)

    def dump(self) -> dict[int, list[ArticleKey]]:
        """
        Export the store with every set rendered as a sorted list.

        Returns
        -------
        dict[int, list[ArticleKey]]
            Chat id to sorted keys.
        """
        with self._lock:
            return {chat_id: sorted(keys) for chat_id, keys in self._seen.items()}

    def load(self, data: Mapping[int, Iterable[ArticleKey]]) -> None:
        """
        Replace the store content, rebuilding sets from sequences.

        Parameters
        ----------
        data : Mapping[int, Iterable[ArticleKey]]
            Chat id to keys.
        """
        with self._lock:
            self._seen = {int(chat_id): set(keys) for chat_id, keys in data.items()}
        logger.debug("Loaded seen-sets for %d chat(s)", len(self._seen))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(keys) for keys in self._seen.values())
