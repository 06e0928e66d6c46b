"""Event types passed between channels, the inbound queue and the agent."""

import time
from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class InboundPayload:
    """One inbound chat event, as buffered per user."""

    kind: Literal["text", "media"]
    content: str = ""
    media_type: str | None = None
    media_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def text(cls, content: str, **metadata: Any) -> "InboundPayload":
        return cls(kind="text", content=content, metadata=dict(metadata))

    @classmethod
    def media(
        cls,
        media_type: str,
        media_path: str | None = None,
        content: str = "",
        **metadata: Any,
    ) -> "InboundPayload":
        return cls(
            kind="media",
            content=content,
            media_type=media_type,
            media_path=media_path,
            metadata=dict(metadata),
        )


@dataclass
class QueueEntry:
    """A buffered payload waiting for its user's debounce window to close."""

    user_id: str
    payload: InboundPayload
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class OutboundMessage:
    """A reply on its way to a channel."""

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    control: str | None = None  # "typing_start" | "typing_stop"
    metadata: dict[str, Any] = field(default_factory=dict)
