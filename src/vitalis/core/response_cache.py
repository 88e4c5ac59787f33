"""
Vitalis Core - AI Response Cache.

Caches AI-generated content so the same answer is never paid for twice, and
deduplicates concurrent requests so the same call is never in flight twice.

Entry validity:
- ``now - timestamp < ttl``
- ``timestamp >= session epoch`` and, when tagged, written in the current session

Invalid entries are deleted when read (lazy invalidation). When a write is
refused for capacity, expired / pre-session / unreadable entries are swept
oldest first and the write is retried once; if it still fails the value is
returned uncached.

Empty results (None, "", empty list/dict) are never stored, so the next call
retries cleanly.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from vitalis.core.cache_keys import CacheKeyBuilder
from vitalis.core.clock import Clock, SystemClock
from vitalis.core.kv_store import KVStore
from vitalis.core.session import SessionEpoch
from vitalis.exceptions import StorageFailureException, StorageFullException
from vitalis.observability.metrics import MetricsStore, get_metrics_store

logger = logging.getLogger(__name__)

Compute = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    session_id: str | None = None

    def encode(self) -> bytes:
        doc = {"data": self.payload, "timestamp": self.created_at}
        if self.session_id is not None:
            doc["session"] = self.session_id
        return json.dumps(doc).encode("utf-8")

    @classmethod
    def decode(cls, key: str, raw: bytes) -> "CacheEntry":
        """Raises ValueError for anything that is not a well-formed entry."""
        try:
            doc = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Unreadable cache entry {key}: {e}")
        if not isinstance(doc, dict) or "timestamp" not in doc or "data" not in doc:
            raise ValueError(f"Malformed cache entry {key}")
        return cls(key=key, payload=doc["data"], created_at=float(doc["timestamp"]), session_id=doc.get("session"))


def is_empty_result(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)) and len(value) == 0:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


class ResponseCache:
    def __init__(
        self,
        store: KVStore,
        session: SessionEpoch,
        key_builder: CacheKeyBuilder | None = None,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Clock | None = None,
        metrics: MetricsStore | None = None,
        enabled: bool = True,
    ):
        self._store = store
        self._session = session
        self.keys = key_builder or CacheKeyBuilder()
        self.ttl_seconds = ttl_seconds
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics_store()
        self.enabled = enabled
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def prefix(self) -> str:
        return self.keys.prefix

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_valid(self, entry: CacheEntry, now: float | None = None) -> bool:
        now = self._clock.now() if now is None else now
        if now - entry.created_at >= self.ttl_seconds:
            return False
        return self._session.is_current(entry.created_at, entry.session_id)

    # -------------------------------------------------------------------------
    # Read / write
    # -------------------------------------------------------------------------

    async def get(self, function_name: str, params: Mapping[str, Any]) -> Any | None:
        return await self._get_key(self.keys.build(function_name, params))

    async def set(self, function_name: str, params: Mapping[str, Any], payload: Any) -> bool:
        return await self._set_key(self.keys.build(function_name, params), payload)

    async def _get_key(self, key: str) -> Any | None:
        try:
            raw = await self._store.get(key)
        except StorageFailureException as e:
            logger.warning(f"Cache read failed for {key}: {e.message}")
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.decode(key, raw)
        except ValueError as e:
            logger.warning(str(e))
            await self._discard(key)
            return None

        if not self.is_valid(entry):
            logger.debug(f"Cache entry expired or from a previous session: {key}")
            await self._discard(key)
            return None
        return entry.payload

    async def _set_key(self, key: str, payload: Any) -> bool:
        entry = CacheEntry(
            key=key, payload=payload, created_at=self._clock.now(), session_id=self._session.session_id
        )
        try:
            raw = entry.encode()
        except (TypeError, ValueError) as e:
            logger.warning(f"Result for {key} is not JSON-serializable, not caching: {e}")
            return False

        try:
            await self._store.set(key, raw)
        except StorageFullException:
            removed = await self.sweep()
            logger.warning(f"Cache storage full, swept {removed} entries; retrying write for {key}")
            try:
                await self._store.set(key, raw)
            except StorageFailureException as e:
                self._metrics.record_cache_event("write_failures")
                logger.warning(f"Cache write failed after sweep, serving uncached: {e.message}")
                return False
        except StorageFailureException as e:
            self._metrics.record_cache_event("write_failures")
            logger.warning(f"Cache write failed, serving uncached: {e.message}")
            return False

        self._metrics.record_cache_event("stores")
        return True

    async def _discard(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except StorageFailureException as e:
            logger.warning(f"Failed to delete cache entry {key}: {e.message}")

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def sweep(self) -> int:
        """Delete invalid entries, oldest first. Returns the number removed."""
        now = self._clock.now()
        stale: list[tuple[float, str]] = []
        try:
            keys = await self._store.keys(self.prefix)
        except StorageFailureException as e:
            logger.warning(f"Cache sweep skipped: {e.message}")
            return 0

        for key in keys:
            try:
                raw = await self._store.get(key)
            except StorageFailureException:
                continue
            if raw is None:
                continue
            try:
                entry = CacheEntry.decode(key, raw)
            except ValueError:
                stale.append((float("-inf"), key))
                continue
            if not self.is_valid(entry, now):
                stale.append((entry.created_at, key))

        stale.sort()
        for _, key in stale:
            await self._discard(key)
        self._metrics.record_cache_event("sweeps")
        return len(stale)

    async def clear(self) -> int:
        """Remove every cache entry. Returns the number removed."""
        try:
            keys = await self._store.keys(self.prefix)
        except StorageFailureException as e:
            logger.warning(f"Cache clear failed: {e.message}")
            return 0
        for key in keys:
            await self._discard(key)
        logger.info(f"Cleared {len(keys)} AI cache entries")
        return len(keys)

    # -------------------------------------------------------------------------
    # Cached computation with in-flight deduplication
    # -------------------------------------------------------------------------

    async def get_or_compute(self, function_name: str, params: Mapping[str, Any], compute: Compute) -> Any:
        """
        Return the cached value for (function_name, params), or compute it.

        Concurrent callers with the same key share one ``compute`` call.
        Abandoning the await does not cancel the computation; its result is
        still cached for later callers.
        """
        key = self.keys.build(function_name, params)

        if self.enabled:
            cached = await self._get_key(key)
            if cached is not None:
                self._metrics.record_cache_event("hits")
                logger.debug(f"Cache hit: {key}")
                return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            self._metrics.record_cache_event("dedup_joins")
            logger.debug(f"Joining in-flight request: {key}")
            return await asyncio.shield(pending)

        self._metrics.record_cache_event("misses")
        task = asyncio.get_running_loop().create_task(self._compute_and_store(key, function_name, compute))
        task.add_done_callback(_log_unretrieved_failure)
        self._in_flight[key] = task
        return await asyncio.shield(task)

    async def _compute_and_store(self, key: str, function_name: str, compute: Compute) -> Any:
        try:
            result = await compute()
            if is_empty_result(result):
                self._metrics.record_cache_event("skipped_empty")
                logger.info(f"{function_name} returned an empty result; not caching")
            elif self.enabled:
                await self._set_key(key, result)
            return result
        finally:
            self._in_flight.pop(key, None)


def _log_unretrieved_failure(task: asyncio.Task) -> None:
    # Marks the exception retrieved when every caller has stopped awaiting
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Shared computation failed: {error}")
