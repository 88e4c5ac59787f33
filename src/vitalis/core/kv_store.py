"""
Vitalis Core - Key-Value Store adapters.

Persistent storage used by the response cache. Values are raw bytes; the
cache owns the encoding.

Backends:
- InMemoryKVStore: process-local, optional entry capacity (tests, dev)
- FileKVStore: single JSON file, survives restarts
- RedisKVStore: redis.asyncio client
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from vitalis.exceptions import StorageFailureException, StorageFullException

logger = logging.getLogger(__name__)


class KVStore(ABC):
    """Minimal async key-value abstraction."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store a value. Raises StorageFullException when out of capacity."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        pass

    async def close(self) -> None:
        return None


class InMemoryKVStore(KVStore):
    def __init__(self, max_entries: int | None = None):
        self._data: dict[str, bytes] = {}
        self._max_entries = max_entries

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        if (
            self._max_entries is not None
            and key not in self._data
            and len(self._data) >= self._max_entries
        ):
            raise StorageFullException(key, capacity=self._max_entries)
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class FileKVStore(KVStore):
    """
    JSON-file backed store.

    The whole document is loaded on first access and rewritten atomically
    (temp file + replace) on every mutation. Suitable for a single process.
    """

    def __init__(self, path: str | Path, max_bytes: int | None = None):
        self._path = Path(path)
        self._max_bytes = max_bytes
        self._data: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if self._data is None:
            if self._path.exists():
                try:
                    loaded = json.loads(self._path.read_text(encoding="utf-8"))
                    self._data = loaded if isinstance(loaded, dict) else {}
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Ignoring unreadable cache file {self._path}: {e}")
                    self._data = {}
            else:
                self._data = {}
        return self._data

    def _flush(self, data: dict[str, str]) -> None:
        payload = json.dumps(data)
        if self._max_bytes is not None and len(payload.encode("utf-8")) > self._max_bytes:
            raise StorageFullException(str(self._path), capacity=self._max_bytes)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise StorageFailureException(f"Failed to write {self._path}: {e}")

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            raw = self._load().get(key)
        return base64.b64decode(raw) if raw is not None else None

    async def set(self, key: str, value: bytes) -> None:
        async with self._lock:
            data = dict(self._load())
            data[key] = base64.b64encode(value).decode("ascii")
            await asyncio.to_thread(self._flush, data)
            self._data = data

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = self._load()
            if key not in data:
                return
            data = {k: v for k, v in data.items() if k != key}
            await asyncio.to_thread(self._flush, data)
            self._data = data

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            return [k for k in self._load() if k.startswith(prefix)]


class RedisKVStore(KVStore):
    """Redis-backed store (redis.asyncio)."""

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKVStore":
        try:
            import redis.asyncio as redis

            return cls(redis.Redis.from_url(url, decode_responses=False))
        except Exception as e:
            raise StorageFailureException(f"Redis client init failed: {e}")

    async def get(self, key: str) -> bytes | None:
        try:
            raw = await self._client.get(key)
        except Exception as e:
            raise StorageFailureException(f"Redis GET failed: {e}", key=key)
        if raw is None:
            return None
        return raw if isinstance(raw, (bytes, bytearray)) else str(raw).encode("utf-8")

    async def set(self, key: str, value: bytes) -> None:
        try:
            await self._client.set(key, value)
        except Exception as e:
            # OOM under maxmemory policy "noeviction" is the capacity signal
            if "OOM" in str(e):
                raise StorageFullException(key)
            raise StorageFailureException(f"Redis SET failed: {e}", key=key)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except Exception as e:
            raise StorageFailureException(f"Redis DEL failed: {e}", key=key)

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*"):
                found.append(key.decode("utf-8") if isinstance(key, (bytes, bytearray)) else str(key))
        except Exception as e:
            raise StorageFailureException(f"Redis SCAN failed: {e}")
        return found

    async def close(self) -> None:
        await self._client.aclose()
