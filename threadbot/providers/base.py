"""Base interface for hosted assistant backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RunInfo:
    """Status snapshot of one remote run."""
    id: str
    thread_id: str
    status: str
    last_error: str | None = None


@dataclass
class ThreadMessage:
    """A message stored on a remote thread."""
    id: str
    role: str
    text: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())


class AssistantBackend(ABC):
    """
    Abstract base class for thread/run style assistant APIs.

    Implementations map these calls onto a concrete backend. Every method may
    suspend on network I/O.
    """

    @abstractmethod
    async def create_thread(self) -> str:
        """Create a new conversation thread and return its id."""
        pass

    @abstractmethod
    async def add_message(self, thread_id: str, text: str) -> str:
        """Append a user message to a thread and return the message id."""
        pass

    @abstractmethod
    async def create_run(self, thread_id: str) -> RunInfo:
        """Start a run of the configured assistant on a thread."""
        pass

    @abstractmethod
    async def retrieve_run(self, thread_id: str, run_id: str) -> RunInfo:
        """Fetch the current status of a run."""
        pass

    @abstractmethod
    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ThreadMessage]:
        """List thread messages, newest first."""
        pass

    async def aclose(self) -> None:
        """Release network resources. Optional."""
        return None
