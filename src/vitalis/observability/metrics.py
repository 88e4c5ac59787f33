"""
Vitalis Metrics Store.

In-process metrics collection for observability without external dependencies.
Tracks:
- Upstream generation latencies (per context, percentiles)
- Error counts by code (VitalisException.code)
- Response cache counters (hits, misses, dedup joins, stores, sweeps)

Thread-safe via locks. Singleton pattern for global access.
"""

from __future__ import annotations

import statistics
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

CACHE_COUNTERS = ("hits", "misses", "dedup_joins", "stores", "skipped_empty", "sweeps", "write_failures")


@dataclass
class ContextMetrics:
    """Metrics for a single AI context."""

    latencies_ms: list[float] = field(default_factory=list)
    error_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    call_count: int = 0
    last_called: datetime | None = None

    # Keep last N latencies to avoid unbounded memory
    MAX_LATENCIES = 1000

    def record_latency(self, ms: float) -> None:
        self.latencies_ms.append(ms)
        if len(self.latencies_ms) > self.MAX_LATENCIES:
            self.latencies_ms = self.latencies_ms[-self.MAX_LATENCIES :]
        self.call_count += 1
        self.last_called = datetime.now(timezone.utc)

    def record_error(self, code: str) -> None:
        self.error_counts[code] += 1

    def get_percentiles(self) -> dict[str, float]:
        if not self.latencies_ms:
            return {}
        sorted_latencies = sorted(self.latencies_ms)
        n = len(sorted_latencies)
        return {
            "p50_ms": sorted_latencies[int(n * 0.5)],
            "p90_ms": sorted_latencies[int(n * 0.9)],
            "p99_ms": sorted_latencies[int(n * 0.99)] if n > 1 else sorted_latencies[-1],
            "mean_ms": statistics.mean(sorted_latencies),
            "max_ms": max(sorted_latencies),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_count": self.call_count,
            "last_called": self.last_called.isoformat() if self.last_called else None,
            **self.get_percentiles(),
            "errors": dict(self.error_counts),
        }


class MetricsStore:
    """
    Central metrics store for Vitalis observability.

    Thread-safe singleton for collecting metrics across the application.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._contexts: dict[str, ContextMetrics] = defaultdict(ContextMetrics)
        self._global_errors: dict[str, int] = defaultdict(int)
        self._cache: dict[str, int] = {name: 0 for name in CACHE_COUNTERS}
        self._started_at = datetime.now(timezone.utc)

    # -------------------------------------------------------------------------
    # Upstream calls
    # -------------------------------------------------------------------------

    def record_generation_latency(self, context: str, ms: float) -> None:
        """Record an upstream generation latency."""
        with self._lock:
            self._contexts[context].record_latency(ms)

    def record_generation_error(self, context: str, code: str) -> None:
        """Record an error for a specific context."""
        with self._lock:
            self._contexts[context].record_error(code)
            self._global_errors[code] += 1

    # -------------------------------------------------------------------------
    # Global Errors
    # -------------------------------------------------------------------------

    def record_error(self, code: str) -> None:
        """Record a global error (not tied to a specific context)."""
        with self._lock:
            self._global_errors[code] += 1

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def record_cache_event(self, event: str) -> None:
        if event not in self._cache:
            raise ValueError(f"Unknown cache event: {event}")
        with self._lock:
            self._cache[event] += 1

    # -------------------------------------------------------------------------
    # Summary / Export
    # -------------------------------------------------------------------------

    def get_summary(self) -> dict[str, Any]:
        """
        Get a summary of all metrics.

        Returns a dict suitable for JSON serialization and the /status endpoint.
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            uptime_seconds = (now - self._started_at).total_seconds()
            lookups = self._cache["hits"] + self._cache["misses"]

            return {
                "uptime_seconds": round(uptime_seconds, 1),
                "collected_at": now.isoformat(),
                "contexts": {name: metrics.to_dict() for name, metrics in self._contexts.items()},
                "global_errors": dict(self._global_errors),
                "cache": {
                    **self._cache,
                    "hit_rate": round(self._cache["hits"] / lookups, 3) if lookups else None,
                },
            }

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        with self._lock:
            self._contexts.clear()
            self._global_errors.clear()
            self._cache = {name: 0 for name in CACHE_COUNTERS}
            self._started_at = datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Singleton accessor
# -----------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_metrics_store() -> MetricsStore:
    """Get the global MetricsStore singleton."""
    return MetricsStore()
