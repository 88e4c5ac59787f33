"""Time sources for the governance layer.

Everything that waits or timestamps goes through a ``Clock`` so tests can
substitute a deterministic one.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Current time in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time. Used for cache timestamps, which must survive restarts."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class MonotonicClock(SystemClock):
    """Monotonic time. Used for request pacing."""

    def now(self) -> float:
        return time.monotonic()
