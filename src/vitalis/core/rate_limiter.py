"""
Vitalis Core - Rate Limiter.

Per-context sliding-window limiter with request queuing.

Excess requests are queued (FIFO) instead of failing fast, and dispatched by a
single drain loop per limiter:
- at most ``max_requests`` dispatches in any ``window_seconds`` window
- consecutive dispatches at least ``window_seconds / max_requests`` apart, so a
  burst is smoothed out instead of firing N requests followed by a long gap

Dispatch is serialized: the next ticket starts only after the previous task
settles. The limiter never retries; a task's failure resolves only its own
future.

Process-local. Several processes sharing one key would need a shared limiter.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque

from vitalis.core.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass
class RequestTicket:
    """A queued unit of work and the future its caller awaits."""

    task: Task
    arrived_at: float
    future: asyncio.Future = field(repr=False)


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Clock | None = None,
        safety_margin_seconds: float = 0.0,
        name: str | None = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.min_spacing_seconds = window_seconds / max_requests
        self.safety_margin_seconds = safety_margin_seconds
        self.name = name or "rate_limiter"
        self._clock = clock or MonotonicClock()

        self._timestamps: Deque[float] = deque()
        self._queue: Deque[RequestTicket] = deque()
        self._draining = False
        self._closing = False
        self._drain_task: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule(self, task: Task) -> asyncio.Future:
        """Queue ``task`` and return a future resolved with its outcome."""
        loop = asyncio.get_running_loop()
        ticket = RequestTicket(task=task, arrived_at=self._clock.now(), future=loop.create_future())
        self._queue.append(ticket)

        if len(self._queue) > 1:
            logger.debug(f"[{self.name}] queued request (depth={len(self._queue)})")

        if not self._draining:
            self._draining = True
            self._drain_task = loop.create_task(self._drain())
        return ticket.future

    async def execute(self, task: Task) -> Any:
        """Schedule ``task`` and wait for its result."""
        return await self.schedule(task)

    def time_until_next_slot(self) -> float:
        """Seconds until a dispatch would be legal (0 if one is legal now)."""
        now = self._clock.now()
        in_window = [ts for ts in self._timestamps if now - ts < self.window_seconds]
        wait = 0.0
        if len(in_window) >= self.max_requests:
            wait = in_window[0] + self.window_seconds - now
        if self._timestamps:
            wait = max(wait, self._timestamps[-1] + self.min_spacing_seconds - now)
        return max(0.0, wait)

    def status(self) -> dict[str, Any]:
        """Read-only snapshot for debugging."""
        now = self._clock.now()
        in_window = sum(1 for ts in self._timestamps if now - ts < self.window_seconds)
        return {
            "name": self.name,
            "queue_depth": len(self._queue),
            "window_usage": in_window,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "next_slot_eta": round(self.time_until_next_slot(), 3),
            "draining": self._draining,
        }

    async def aclose(self) -> None:
        """Stop the drain loop and cancel every queued ticket (shutdown only)."""
        self._closing = True
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while self._queue:
            ticket = self._queue.popleft()
            if not ticket.future.done():
                ticket.future.cancel()
        self._draining = False
        self._drain_task = None
        self._closing = False

    # -------------------------------------------------------------------------
    # Drain loop
    # -------------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    async def _drain(self) -> None:
        cancelled = False
        try:
            while self._queue:
                self._prune(self._clock.now())
                wait = self.time_until_next_slot()
                if wait > 0:
                    logger.debug(f"[{self.name}] waiting {wait:.2f}s for next slot")
                    await self._clock.sleep(wait + self.safety_margin_seconds)

                ticket = self._queue.popleft()
                now = self._clock.now()
                self._prune(now)
                # Recorded before running so a slow task still counts from its start
                self._timestamps.append(now)
                await self._run(ticket)
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            if self._queue and not (cancelled or self._closing):
                logger.warning(f"[{self.name}] drain loop stopped with {len(self._queue)} queued; restarting")
                self._drain_task = asyncio.get_running_loop().create_task(self._drain())
            else:
                self._draining = False
                self._drain_task = None

    def _drain_cancelled(self) -> bool:
        if self._closing:
            return True
        current = asyncio.current_task()
        cancelling = getattr(current, "cancelling", None)
        return bool(cancelling and cancelling())

    async def _run(self, ticket: RequestTicket) -> None:
        try:
            result = await ticket.task()
        except asyncio.CancelledError:
            if not ticket.future.done():
                ticket.future.cancel()
            if self._drain_cancelled():
                raise
            logger.warning(f"[{self.name}] request task cancelled itself")
            return
        except Exception as e:
            if not ticket.future.done():
                ticket.future.set_exception(e)
            else:
                logger.warning(f"[{self.name}] abandoned request failed: {e}")
            return

        if not ticket.future.done():
            ticket.future.set_result(result)
