"""
Protocol definition for chat transports.

Defines the interface the bot needs from a chat platform: sending a text
message to a chat and receiving command messages.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class InboundMessage:
    """
    A text message received from a chat.

    Attributes
    ----------
    chat_id : int
        Chat the message was sent in.
    username : str
        Username of the sender, empty if unknown.
    text : str
        Message text.
    """

    chat_id: int
    username: str
    text: str


@runtime_checkable
class Transport(Protocol):
    """
    Protocol defining the interface for chat transports.

    The @runtime_checkable decorator allows using isinstance() checks
    against this protocol for structural typing validation.
    """

    async def test_connection(self) -> bool:
        """
        Test the connection to the chat platform.

        Returns
        -------
        bool
            True if the connection is working and messages can be sent.
        """
        ...

    async def send_text(self, chat_id: int, text: str) -> None:
        """
        Send a plain text message to a chat.

        Raises
        ------
        TransportError
            If the message could not be sent.
        """
        ...

    def updates(self) -> AsyncIterator[InboundMessage]:
        """Yield inbound messages in arrival order until cancelled."""
        ...

    async def close(self) -> None:
        """Close the transport and release any resources."""
        ...
