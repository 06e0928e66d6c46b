"""Error taxonomy shared by the conversation core."""

from typing import Any


class ThreadbotError(Exception):
    """Base class for threadbot errors."""


class InvalidSessionId(ThreadbotError, ValueError):
    """A session id failed the format validator."""

    def __init__(self, value: Any, reason: str = "malformed"):
        self.value = value
        self.reason = reason
        shown = repr(value)
        if len(shown) > 60:
            shown = shown[:60] + "..."
        super().__init__(f"Invalid session id {shown}: {reason}")


class EmptyReply(ThreadbotError):
    """The assistant finished a run without a usable text reply."""


class RunFailed(ThreadbotError):
    """A run ended in a failed terminal status."""

    def __init__(self, status: str, detail: str | None = None):
        self.status = status
        self.detail = detail
        message = f"Run ended with status '{status}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RunTimeout(ThreadbotError):
    """A run was still in progress after the maximum number of polls."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Run did not finish after {attempts} polls")


class PersistenceError(ThreadbotError):
    """Reading or writing persisted state failed. Logged, never fatal."""


class TransportError(ThreadbotError):
    """Delivering a message through a channel failed."""


class BackendError(ThreadbotError):
    """The assistant backend returned an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
