"""Per-user debounced inbound queue."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from threadbot.bus.events import InboundPayload, QueueEntry

TurnHandler = Callable[[str, InboundPayload], Awaitable[str | None]]
DeliverCallback = Callable[[str, str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


class InboundQueue:
    """
    Coalesces bursts of inbound messages per user.

    The first payload for an idle user starts a debounce timer; every payload
    is buffered. When the timer fires the buffer is drained: all text payloads
    are joined into a single turn, then each media payload becomes its own
    turn. Drains for the same user never overlap, so a user has at most one
    turn in flight. Users are fully independent of each other.
    """

    def __init__(
        self,
        handler: TurnHandler,
        deliver: DeliverCallback | None = None,
        debounce_s: float = 2.0,
        media_gap_s: float = 0.5,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.handler = handler
        self.deliver = deliver
        self.debounce_s = max(0.0, float(debounce_s))
        self.media_gap_s = max(0.0, float(media_gap_s))
        self._sleep = sleep
        self._buffers: dict[str, list[QueueEntry]] = {}
        self._scheduled: set[str] = set()
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._draining: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}

    def enqueue(self, user_id: str, payload: InboundPayload) -> None:
        """
        Buffer a payload and make sure a drain is scheduled for the user.

        Must be called from inside a running event loop.
        """
        key = str(user_id)
        self._buffers.setdefault(key, []).append(QueueEntry(user_id=key, payload=payload))
        if key in self._scheduled:
            logger.debug(f"Buffered {payload.kind} payload for {key} ({len(self._buffers[key])} pending)")
            return
        self._schedule(key)

    def _schedule(self, user_id: str) -> None:
        self._scheduled.add(user_id)
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_timer(user_id))
        self._timers[user_id] = task
        task.add_done_callback(lambda t, uid=user_id: self._on_timer_done(uid, t))
        logger.debug(f"Debounce started for {user_id} ({self.debounce_s:.2f}s)")

    async def _run_timer(self, user_id: str) -> None:
        await self._sleep(self.debounce_s)
        self._draining.add(user_id)
        try:
            await self._drain(user_id)
        finally:
            self._draining.discard(user_id)

    def _on_timer_done(self, user_id: str, task: asyncio.Task[None]) -> None:
        if self._timers.get(user_id) is task:
            self._timers.pop(user_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Drain for {user_id} crashed: {exc}")
            self._scheduled.discard(user_id)

    async def _drain(self, user_id: str) -> None:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_refs[user_id] = self._lock_refs.get(user_id, 0) + 1
        try:
            async with lock:
                entries = self._buffers.pop(user_id, [])
                try:
                    if entries:
                        await self._dispatch(user_id, entries)
                finally:
                    self._scheduled.discard(user_id)
        finally:
            self._release_lock(user_id)

        # Payloads that arrived mid-drain start a fresh debounce cycle.
        if self._buffers.get(user_id) and user_id not in self._scheduled:
            self._schedule(user_id)

    def _release_lock(self, user_id: str) -> None:
        # Drop the lock once no drain holds or awaits it.
        remaining = self._lock_refs.get(user_id, 1) - 1
        if remaining > 0:
            self._lock_refs[user_id] = remaining
            return
        self._lock_refs.pop(user_id, None)
        self._locks.pop(user_id, None)

    async def _dispatch(self, user_id: str, entries: list[QueueEntry]) -> None:
        texts = [e.payload for e in entries if e.payload.kind == "text"]
        media = [e.payload for e in entries if e.payload.kind != "text"]
        logger.info(f"Draining {len(entries)} payload(s) for {user_id}: {len(texts)} text, {len(media)} media")

        dispatched = 0
        if texts:
            merged_text = " ".join(p.content.strip() for p in texts if p.content.strip())
            if merged_text:
                metadata = dict(texts[-1].metadata)
                metadata["parts"] = len(texts)
                await self._submit(user_id, InboundPayload(kind="text", content=merged_text, metadata=metadata))
                dispatched += 1

        for payload in media:
            if dispatched and self.media_gap_s > 0:
                await self._sleep(self.media_gap_s)
            await self._submit(user_id, payload)
            dispatched += 1

    async def _submit(self, user_id: str, payload: InboundPayload) -> None:
        try:
            reply = await self.handler(user_id, payload)
        except Exception as e:
            logger.error(f"Turn handler failed for {user_id} ({payload.kind}): {e}")
            return

        if not reply or self.deliver is None:
            return
        try:
            await self.deliver(user_id, reply)
        except Exception as e:
            logger.error(f"Delivering reply to {user_id} failed: {e}")

    async def flush(self, user_id: str) -> None:
        """Cancel the user's debounce timer and drain immediately."""
        key = str(user_id)
        timer = self._timers.get(key)
        if timer is not None and not timer.done():
            if key in self._draining:
                # Already past the debounce window; let the running drain finish.
                await asyncio.shield(timer)
                await self.flush(key)
                return
            else:
                self._timers.pop(key, None)
                timer.cancel()
                try:
                    await timer
                except asyncio.CancelledError:
                    pass
        if key in self._buffers:
            self._scheduled.add(key)
            await self._drain(key)

    async def close(self) -> None:
        """Cancel pending timers. Buffered payloads are discarded."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        dropped = sum(len(v) for v in self._buffers.values())
        if dropped:
            logger.warning(f"Inbound queue closed with {dropped} undelivered payload(s)")
        self._buffers.clear()
        self._scheduled.clear()

    def pending(self, user_id: str) -> int:
        """Number of payloads buffered for a user."""
        return len(self._buffers.get(str(user_id), []))

    def is_scheduled(self, user_id: str) -> bool:
        return str(user_id) in self._scheduled

    @property
    def active_users(self) -> int:
        return len(self._scheduled)
