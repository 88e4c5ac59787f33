"""
Vitalis Core - Session epoch.

Cache entries created before the current session started are invalid,
regardless of TTL. A session starts when the process starts unless the
configured ``session_id`` matches the one persisted in the store, in which
case the stored start time is resumed. ``advance()`` starts a new session
explicitly, which is how a long-running server drops every cached answer
without deleting anything eagerly.
"""

from __future__ import annotations

import json
import logging
from uuid import uuid4

from vitalis.core.clock import Clock, SystemClock
from vitalis.core.kv_store import KVStore
from vitalis.exceptions import StorageFailureException

logger = logging.getLogger(__name__)

SESSION_KEY = "vitalis_session_epoch"


class SessionEpoch:
    def __init__(
        self,
        store: KVStore,
        started_at: float,
        session_id: str,
        clock: Clock | None = None,
        key: str = SESSION_KEY,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._key = key
        self.started_at = started_at
        self.session_id = session_id

    @classmethod
    async def start(
        cls,
        store: KVStore,
        clock: Clock | None = None,
        session_id: str | None = None,
        key: str = SESSION_KEY,
    ) -> "SessionEpoch":
        clock = clock or SystemClock()

        if session_id:
            stored = await _read(store, key)
            if stored and stored.get("session_id") == session_id:
                started_at = float(stored["started_at"])
                logger.info(f"Resuming cache session {session_id} (epoch={started_at})")
                return cls(store, started_at, session_id, clock=clock, key=key)

        epoch = cls(store, clock.now(), session_id or uuid4().hex, clock=clock, key=key)
        await epoch._persist()
        logger.info(f"Started cache session {epoch.session_id} (epoch={epoch.started_at})")
        return epoch

    async def advance(self) -> float:
        """Begin a new session; every older cache entry becomes invalid."""
        self.started_at = max(self._clock.now(), self.started_at)
        self.session_id = uuid4().hex
        await self._persist()
        logger.info(f"Advanced cache session to {self.session_id} (epoch={self.started_at})")
        return self.started_at

    def is_current(self, created_at: float, session_id: str | None = None) -> bool:
        """Entries tagged with another session are stale even at the same instant."""
        if session_id is not None and session_id != self.session_id:
            return False
        return created_at >= self.started_at

    async def _persist(self) -> None:
        payload = json.dumps({"session_id": self.session_id, "started_at": self.started_at})
        try:
            await self._store.set(self._key, payload.encode("utf-8"))
        except StorageFailureException as e:
            # The epoch still applies in-process; only resumption is lost
            logger.warning(f"Could not persist session epoch: {e.message}")


async def _read(store: KVStore, key: str) -> dict | None:
    try:
        raw = await store.get(key)
    except StorageFailureException as e:
        logger.warning(f"Could not read session epoch: {e.message}")
        return None
    if raw is None:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict) or "started_at" not in data:
        return None
    return data
