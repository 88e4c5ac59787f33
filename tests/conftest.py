"""Shared fixtures for Vitalis tests."""

import asyncio
from types import SimpleNamespace

import pytest

from vitalis.core.kv_store import InMemoryKVStore
from vitalis.core.response_cache import ResponseCache
from vitalis.core.session import SessionEpoch
from vitalis.observability.metrics import MetricsStore

VALID_KEY = "AIzaSyTestKey0123456789abcdef"


class FakeClock:
    """Deterministic clock: ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += max(0.0, seconds)
        await asyncio.sleep(0)


class FakeModels:
    """Stands in for ``genai.Client().aio.models``."""

    def __init__(self, responses=None):
        self.calls: list[dict] = []
        self._responses = list(responses or [])

    def _next(self):
        if not self._responses:
            return SimpleNamespace(text="Generated insight")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return SimpleNamespace(text=item)

    async def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        return self._next()

    async def generate_content_stream(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "stream": True})
        chunks = self._responses.pop(0) if self._responses else ["Generated ", "insight"]

        async def iterate():
            for chunk in chunks:
                yield SimpleNamespace(text=chunk)

        return iterate()


def make_fake_client(responses=None):
    return SimpleNamespace(aio=SimpleNamespace(models=FakeModels(responses)))


@pytest.fixture
def clock():
    return FakeClock(start=1_000.0)


@pytest.fixture
def store():
    return InMemoryKVStore()


@pytest.fixture
def metrics():
    return MetricsStore()


@pytest.fixture
def session(store, clock):
    return SessionEpoch(store, started_at=clock.now(), session_id="test-session", clock=clock)


@pytest.fixture
def cache(store, session, clock, metrics):
    return ResponseCache(store, session, ttl_seconds=100, clock=clock, metrics=metrics)
