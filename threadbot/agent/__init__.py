"""Conversation core for threadbot."""

from threadbot.agent.orchestrator import ConversationOrchestrator
from threadbot.agent.run_driver import RunDriver, RunPhase, RunTransition
from threadbot.agent.sanitizer import CitationBrackets, clean_reply, format_for_chat, sanitize

__all__ = [
    "ConversationOrchestrator",
    "RunDriver",
    "RunPhase",
    "RunTransition",
    "CitationBrackets",
    "sanitize",
    "format_for_chat",
    "clean_reply",
]
