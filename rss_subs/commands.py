"""
Chat command interpreter.

Turns inbound chat messages into subscription registry operations and
renders their outcome as reply text.
"""

import asyncio
import logging
from collections.abc import Callable

from rss_subs.errors import FetchError, NotFoundError
from rss_subs.registry import SubscriptionRegistry
from rss_subs.seen import SeenSetStore

logger = logging.getLogger(__name__)

HELP_TEXT = """Hello
I'm RSS Subs
here's what I can do:

sub <url>: subscribe to rss feed @ url
unsub <url>: unsubscribe to rss feed @url
list: show subscriptions
help: show this message"""

SUBSCRIBE_COMMANDS = frozenset({"sub", "subscribe", "add"})
UNSUBSCRIBE_COMMANDS = frozenset({"unsub", "unsubscribe", "rm"})
LIST_COMMANDS = frozenset({"list", "show", "subs"})
UPDATE_COMMANDS = frozenset({"update"})


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """
    Split a message into a command name and its arguments.

    The command is lowercased and stripped of a leading slash and of an
    ``@botname`` suffix.

    Returns
    -------
    tuple[str, list[str]] | None
        Command and arguments, or None for an empty message.
    """
    fields = text.split()
    if not fields:
        return None
    command = fields[0].lower().removeprefix("/").split("@", 1)[0]
    return command, fields[1:]


class CommandInterpreter:
    """
    Handles chat commands one message at a time.

    Attributes
    ----------
    registry : SubscriptionRegistry
        Subscriptions to operate on.
    seen : SeenSetStore
        Seen-sets, initialized for chats that subscribe.
    trigger_update : Callable[[], object]
        Starts a poll cycle in the background.
    admin_username : str | None
        Only user allowed to trigger an update, None allows everyone.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        seen: SeenSetStore,
        trigger_update: Callable[[], object],
        admin_username: str | None = None,
    ):
        self.registry = registry
        self.seen = seen
        self.trigger_update = trigger_update
        self.admin_username = admin_username

    async def handle(self, chat_id: int, username: str, text: str) -> str | None:
        """
        Handle one message.

        Parameters
        ----------
        chat_id : int
            Chat the message came from.
        username : str
            Sender username, may be empty.
        text : str
            Message text.

        Returns
        -------
        str | None
            Reply text, or None if the message should be ignored.
        """
        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        logger.debug("Chat %d sent command '%s'", chat_id, command)

        if command in SUBSCRIBE_COMMANDS:
            return await self._subscribe(chat_id, args)
        if command in UNSUBSCRIBE_COMMANDS:
            return self._unsubscribe(chat_id, args)
        if command in LIST_COMMANDS:
            return self._list(chat_id)
        if command in UPDATE_COMMANDS:
            return self._update(username)
        return HELP_TEXT

    async def _subscribe(self, chat_id: int, urls: list[str]) -> str:
        if not urls:
            return "Please provide a url to subscribe to"

        self.seen.check_initialized(chat_id)
        results = await asyncio.gather(
            *(self.registry.add(url, chat_id) for url in urls),
            return_exceptions=True,
        )

        lines = []
        subscribed = 0
        for url, result in zip(urls, results):
            if isinstance(result, FetchError):
                logger.warning("Chat %d failed to subscribe to %s: %s", chat_id, url, result)
                lines.append(f"Failed to subscribe to {url}: {result.reason}")
            elif isinstance(result, BaseException):
                logger.error("Unexpected error subscribing chat %d to %s: %r", chat_id, url, result)
                lines.append(f"Failed to subscribe to {url}")
            else:
                subscribed += 1
                lines.append(f"Subscribed to {result.title}: {url}")

        header = f"Subscribed to {subscribed} of {len(urls)} feeds"
        return header + "\n\n" + "\n".join(lines)

    def _unsubscribe(self, chat_id: int, args: list[str]) -> str:
        if not args:
            return "Please provide a url to unsubscribe from"

        try:
            url, feed = self.registry.remove(args[0], " ".join(args), chat_id)
        except NotFoundError as e:
            return f"Error unsubscribing from {args[0]}: {e}"
        return f"Unsubscribed from {feed.title}: {url}"

    def _list(self, chat_id: int) -> str:
        subscriptions = self.registry.list_subscriptions(chat_id)
        if not subscriptions:
            return "You are not subscribed to any feeds"
        return "You are subscribed to:\n\n" + "\n".join(subscriptions)

    def _update(self, username: str) -> str:
        if self.admin_username is not None and username != self.admin_username:
            logger.warning("Refused manual update from '%s'", username)
            return "You are not allowed to trigger an update"
        self.trigger_update()
        return "update started"
