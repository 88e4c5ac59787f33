"""Tests for governance wiring."""

import pytest

from conftest import VALID_KEY, FakeClock, make_fake_client
from vitalis.config import Settings
from vitalis.core.governance import build_governance, build_store
from vitalis.core.kv_store import FileKVStore, InMemoryKVStore
from vitalis.observability.metrics import MetricsStore


def settings_with(**cache):
    settings = Settings()
    return settings.model_copy(update={"cache": settings.cache.model_copy(update=cache)})


def test_build_store_selects_backend(tmp_path):
    assert isinstance(build_store(settings_with(backend="memory")), InMemoryKVStore)
    assert isinstance(build_store(settings_with(backend="file", file_path=str(tmp_path / "c.json"))), FileKVStore)


@pytest.mark.asyncio
async def test_with_cache_deduplicates_and_caches():
    governance = await build_governance(
        Settings(),
        store=InMemoryKVStore(),
        pacing_clock=FakeClock(),
        credential_source={},
        metrics=MetricsStore(),
    )
    calls = []

    async def compute():
        calls.append(1)
        return {"insight": "x"}

    await governance.with_cache("daily_insight", {"date": "2024-01-01"}, compute)
    await governance.with_cache("daily_insight", {"date": "2024-01-01"}, compute)

    assert len(calls) == 1
    assert governance.status()["metrics"]["cache"]["hits"] == 1
    await governance.aclose()


@pytest.mark.asyncio
async def test_file_backend_survives_restart_with_same_session(tmp_path):
    settings = settings_with(backend="file", file_path=str(tmp_path / "cache.json"), session_id="deploy-1")
    calls = []

    async def compute():
        calls.append(1)
        return "persisted"

    first = await build_governance(settings, credential_source={}, metrics=MetricsStore())
    await first.with_cache("daily_insight", {"date": "2024-01-01"}, compute)
    await first.aclose()

    second = await build_governance(settings, credential_source={}, metrics=MetricsStore())
    assert await second.with_cache("daily_insight", {"date": "2024-01-01"}, compute) == "persisted"
    assert len(calls) == 1
    await second.aclose()


@pytest.mark.asyncio
async def test_restart_without_session_id_starts_clean(tmp_path):
    settings = settings_with(backend="file", file_path=str(tmp_path / "cache.json"))
    calls = []

    async def compute():
        calls.append(1)
        return "value"

    first = await build_governance(settings, wall_clock=FakeClock(100.0), credential_source={}, metrics=MetricsStore())
    await first.with_cache("daily_insight", {"date": "2024-01-01"}, compute)
    await first.aclose()

    second = await build_governance(settings, wall_clock=FakeClock(200.0), credential_source={}, metrics=MetricsStore())
    await second.with_cache("daily_insight", {"date": "2024-01-01"}, compute)
    await second.aclose()

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_select_best_and_status():
    governance = await build_governance(
        Settings(),
        store=InMemoryKVStore(),
        pacing_clock=FakeClock(),
        credential_source={"GEMINI_API_KEY": VALID_KEY},
        client_factory=lambda key: make_fake_client(),
        metrics=MetricsStore(),
    )

    assert governance.select_best([]) is None
    result = await governance.client.generate("hello")
    assert result.success is True

    status = governance.status()
    assert status["contexts"]["dashboard"]["available"] is True
    assert status["cache"]["in_flight"] == 0
    await governance.aclose()
