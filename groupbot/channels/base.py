"""Base channel interface for chat platforms."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable

from groupbot.channels.events import InboundMessage, OutboundMessage, SentMessage
from groupbot.logging import get_logger
from groupbot.memory.models import Sender

logger = get_logger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[None]]


class BaseChannel(ABC):
    """
    Abstract base class for the messaging gateway.

    A channel receives platform updates, normalizes them into
    ``InboundMessage`` and hands them to the registered handler; it also sends
    replies and shows the "typing" indicator.
    """

    name: str = "base"

    def __init__(self, config: Any, on_message: MessageHandler | None = None):
        """
        Initialize the channel.

        Args:
            config: Channel-specific configuration.
            on_message: Coroutine invoked for every inbound message.
        """
        self.config = config
        self.on_message = on_message
        self._running = False
        self.bot_user: Sender | None = None

    @abstractmethod
    async def start(self) -> None:
        """
        Connect to the platform and listen until :meth:`stop` is called.

        Must set :attr:`bot_user` before the first message is dispatched.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel and clean up resources."""

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> SentMessage:
        """
        Send a text message.

        Raises:
            DeliveryError: if the platform rejected the message.
        """

    @abstractmethod
    def typing(self, chat_id: int) -> AbstractAsyncContextManager[None]:
        """Show the typing indicator in *chat_id* while the context is open."""

    def set_handler(self, handler: MessageHandler) -> None:
        self.on_message = handler

    async def _handle_message(self, msg: InboundMessage) -> None:
        """Forward a normalized inbound message to the handler."""
        if self.on_message is None:
            logger.warning("inbound_message_without_handler", channel=self.name, chat_id=msg.chat_id)
            return
        await self.on_message(msg)

    @property
    def is_running(self) -> bool:
        """Check if the channel is running."""
        return self._running
