"""Drives one assistant turn: add message, start run, poll, fetch reply."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from threadbot.errors import EmptyReply, RunFailed, RunTimeout
from threadbot.providers.base import AssistantBackend, RunInfo
from threadbot.session.store import parse_session_id

IN_PROGRESS_STATUSES = frozenset({"queued", "in_progress", "cancelling"})
FAILED_STATUSES = frozenset({"failed", "cancelled", "expired", "requires_action", "incomplete"})
COMPLETED_STATUS = "completed"


class RunPhase(str, Enum):
    """States of a single remote turn."""

    CREATED = "created"
    MESSAGE_ADDED = "message_added"
    RUN_STARTED = "run_started"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunTransition:
    """One observed state change, handed to ``on_transition`` observers."""

    phase: RunPhase
    session_id: str
    run_id: str | None = None
    status: str | None = None
    attempt: int = 0
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class PendingRun:
    """Transient handle for a run in flight."""

    session_id: str
    run_id: str
    status: str


TransitionObserver = Callable[[RunTransition], None]
SleepFn = Callable[[float], Awaitable[None]]


class RunDriver:
    """
    Executes one conversational turn against a remote thread.

    The driver never retries: every failure surfaces to the caller as
    ``InvalidSessionId``, ``RunFailed``, ``RunTimeout``, ``EmptyReply`` or
    whatever the backend raised.
    """

    def __init__(
        self,
        backend: AssistantBackend,
        poll_interval_s: float = 1.0,
        max_attempts: int = 30,
        on_transition: TransitionObserver | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.backend = backend
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self.max_attempts = max(1, int(max_attempts))
        self.on_transition = on_transition
        self._sleep = sleep

    def _emit(self, transition: RunTransition) -> None:
        logger.debug(
            f"Run {transition.phase.value}: session={transition.session_id} "
            f"run={transition.run_id or '-'} status={transition.status or '-'} attempt={transition.attempt}"
        )
        if self.on_transition is None:
            return
        try:
            self.on_transition(transition)
        except Exception as e:
            logger.warning(f"Run transition observer failed: {e}")

    async def execute(self, session_id: str, text: str) -> str:
        """
        Run one turn on ``session_id`` and return the assistant's raw reply.

        Raises:
            InvalidSessionId: before any network call if the id is malformed.
            RunFailed: the run ended failed, cancelled or expired.
            RunTimeout: still in progress after ``max_attempts`` polls.
            EmptyReply: the newest message is not an assistant text reply.
        """
        session_id = parse_session_id(session_id)
        started = time.monotonic()
        self._emit(RunTransition(RunPhase.CREATED, session_id))

        try:
            message_id = await self.backend.add_message(session_id, text)
            self._emit(RunTransition(RunPhase.MESSAGE_ADDED, session_id, detail={"message_id": message_id}))

            run = await self.backend.create_run(session_id)
            pending = PendingRun(session_id=session_id, run_id=run.id, status=run.status)
            self._emit(RunTransition(RunPhase.RUN_STARTED, session_id, run_id=run.id, status=run.status))

            await self._wait_for_completion(pending)
            reply = await self._fetch_reply(pending)
        except Exception as e:
            self._emit(
                RunTransition(
                    RunPhase.FAILED,
                    session_id,
                    status=getattr(e, "status", None),
                    detail={"error": type(e).__name__},
                )
            )
            raise

        elapsed = time.monotonic() - started
        self._emit(
            RunTransition(
                RunPhase.COMPLETED,
                session_id,
                run_id=pending.run_id,
                status=COMPLETED_STATUS,
                detail={"elapsed_s": round(elapsed, 3)},
            )
        )
        logger.info(f"Run {pending.run_id} completed in {elapsed:.1f}s")
        return reply

    async def _wait_for_completion(self, pending: PendingRun) -> RunInfo:
        attempts = 0
        while True:
            run = await self.backend.retrieve_run(pending.session_id, pending.run_id)
            pending.status = run.status
            self._emit(
                RunTransition(
                    RunPhase.POLLING,
                    pending.session_id,
                    run_id=pending.run_id,
                    status=run.status,
                    attempt=attempts + 1,
                )
            )

            if run.status == COMPLETED_STATUS:
                return run
            if run.status in FAILED_STATUSES:
                raise RunFailed(run.status, run.last_error)
            if run.status not in IN_PROGRESS_STATUSES:
                # Unknown statuses are treated as failures rather than polled forever.
                raise RunFailed(run.status or "unknown", run.last_error)

            attempts += 1
            if attempts >= self.max_attempts:
                raise RunTimeout(attempts)
            await self._sleep(self.poll_interval_s)

    async def _fetch_reply(self, pending: PendingRun) -> str:
        messages = await self.backend.list_messages(pending.session_id, limit=1)
        if not messages:
            raise EmptyReply(f"Thread {pending.session_id} has no messages")
        latest = messages[0]
        if latest.role != "assistant":
            raise EmptyReply(f"Latest message on {pending.session_id} is from '{latest.role}', not the assistant")
        if not latest.has_text:
            raise EmptyReply(f"Assistant message {latest.id} has no text content")
        return latest.text
