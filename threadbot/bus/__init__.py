"""Inbound queue module for threadbot."""

from threadbot.bus.events import InboundPayload, OutboundMessage, QueueEntry
from threadbot.bus.queue import InboundQueue

__all__ = ["InboundQueue", "InboundPayload", "OutboundMessage", "QueueEntry"]
