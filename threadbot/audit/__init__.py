"""Conversation logging for threadbot."""

from threadbot.audit.logger import ConversationLogger

__all__ = ["ConversationLogger"]
