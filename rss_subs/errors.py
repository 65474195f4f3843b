"""
Exception types shared across RSS Subs.

Every error raised on purpose by the bot derives from BotError, so callers
that contain failures to a single feed, command or message can catch one type.
"""


class BotError(Exception):
    """Base class for RSS Subs errors."""

    pass


class FetchError(BotError):
    """
    Raised when a feed is unreachable or cannot be parsed.

    Attributes
    ----------
    url : str
        URL of the feed that failed.
    reason : str
        Human readable failure reason.
    """

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"could not fetch {url}: {reason}")


class NotFoundError(BotError):
    """Raised when no subscription matches an unsubscribe request."""

    pass


class PersistenceError(BotError):
    """Raised when the durable store cannot be read or written."""

    pass


class TransportError(BotError):
    """Raised when an outbound chat message cannot be sent."""

    pass


class UndatedArticleError(BotError, ValueError):
    """Raised when a feed item carries neither a published nor an updated time."""

    pass
