"""Chat channels module for threadbot."""

from threadbot.channels.base import BaseChannel
from threadbot.channels.whatsapp import WhatsAppChannel

__all__ = ["BaseChannel", "WhatsAppChannel"]
