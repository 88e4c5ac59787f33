"""
Vitalis Core - Context Dispatcher.

One RateLimiter and one credential binding per named context
("dashboard", "timeline", "insights_correlations", ...). Contexts are
isolated: exhausting one context's quota never delays another.

Credential resolution order for context ``foo``:
1. ``<key_env_prefix>_FOO`` in the credential source (environment by default)
2. The default key (settings / ``<key_env_prefix>``)
3. None -> context reported as unavailable
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from vitalis.core.clock import Clock, MonotonicClock
from vitalis.core.rate_limiter import RateLimiter, Task

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = "dashboard"


def is_valid_api_key(key: str | None) -> bool:
    """Gemini Developer API keys look like ``AIza...`` and are longer than 20 chars."""
    return bool(key) and isinstance(key, str) and len(key) > 20 and key.startswith("AIza")


class ContextDispatcher:
    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Clock | None = None,
        safety_margin_seconds: float = 0.0,
        default_api_key: str | None = None,
        key_env_prefix: str = "GEMINI_API_KEY",
        credential_source: Mapping[str, str] | None = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.safety_margin_seconds = safety_margin_seconds
        self.key_env_prefix = key_env_prefix
        self._clock = clock or MonotonicClock()
        self._source = credential_source if credential_source is not None else os.environ
        self._default_api_key = default_api_key or None
        self._limiters: dict[str, RateLimiter] = {}
        self._credentials: dict[str, str | None] = {}

    def for_context(self, name: str) -> RateLimiter:
        """Return the context's limiter, creating it on first use."""
        limiter = self._limiters.get(name)
        if limiter is None:
            limiter = RateLimiter(
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
                clock=self._clock,
                safety_margin_seconds=self.safety_margin_seconds,
                name=name,
            )
            self._limiters[name] = limiter
            logger.info(
                f"Created rate limiter for context '{name}' "
                f"({self.max_requests} req / {self.window_seconds:g}s)"
            )
        return limiter

    def credential_for(self, name: str) -> str | None:
        if name in self._credentials:
            return self._credentials[name]

        key = self._source.get(f"{self.key_env_prefix}_{name.upper()}")
        if key:
            logger.info(f"Using context-specific API key for '{name}'")
        else:
            key = self._default_api_key or self._source.get(self.key_env_prefix) or None
            if not key:
                logger.warning(f"No API key configured for context '{name}'")

        self._credentials[name] = key
        return key

    def is_available(self, name: str) -> bool:
        return self.credential_for(name) is not None

    async def execute(self, name: str, task: Task) -> Any:
        """Run ``task`` through the context's limiter."""
        return await self.for_context(name).schedule(task)

    def contexts(self) -> list[str]:
        return sorted(self._limiters)

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {**limiter.status(), "available": self.is_available(name)}
            for name, limiter in sorted(self._limiters.items())
        }

    async def aclose(self) -> None:
        for limiter in self._limiters.values():
            await limiter.aclose()
