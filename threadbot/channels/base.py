"""Base channel interface for chat platforms."""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from threadbot.bus.events import InboundPayload, OutboundMessage
from threadbot.bus.queue import InboundQueue


class BaseChannel(ABC):
    """
    Abstract base class for chat channel implementations.

    A channel turns platform events into ``InboundPayload`` objects for the
    inbound queue and delivers replies back to the platform.
    """

    name: str = "base"

    def __init__(self, config: Any, queue: InboundQueue):
        """
        Initialize the channel.

        Args:
            config: Channel-specific configuration.
            queue: The inbound queue that debounces and processes messages.
        """
        self.config = config
        self.queue = queue
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """
        Start the channel and begin listening for messages.

        This should be a long-running async task that connects to the chat
        platform and forwards messages via _handle_message().
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel and clean up resources."""
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """
        Send a message through this channel.

        Raises:
            TransportError: if the message could not be handed to the platform.
        """
        pass

    async def deliver(self, user_id: str, text: str) -> None:
        """Reply callback used by the inbound queue."""
        await self.send(OutboundMessage(channel=self.name, chat_id=user_id, content=text))

    def is_allowed(self, sender_id: str) -> bool:
        """
        Check if a sender is allowed to use this bot.

        An empty allow list denies everyone; ``"*"`` allows everyone.
        """
        allow_list = getattr(self.config, "allow_from", [])

        if not allow_list:
            return False
        if "*" in allow_list:
            return True

        sender_str = str(sender_id)
        if sender_str in allow_list:
            return True
        if "|" in sender_str:
            for part in sender_str.split("|"):
                if part and part in allow_list:
                    return True
        return False

    def _handle_message(self, sender_id: str, chat_id: str, payload: InboundPayload) -> bool:
        """
        Check permissions and hand a payload to the inbound queue.

        Returns:
            True if the payload was queued.
        """
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return False

        payload.metadata.setdefault("channel", self.name)
        payload.metadata.setdefault("sender_id", str(sender_id))
        self.queue.enqueue(str(chat_id), payload)
        return True

    @property
    def is_running(self) -> bool:
        """Check if the channel is running."""
        return self._running
