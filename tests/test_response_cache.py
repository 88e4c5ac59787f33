"""Tests for the AI response cache and in-flight deduplication."""

import asyncio
import logging
import json

import pytest

from vitalis.core.kv_store import InMemoryKVStore
from vitalis.core.response_cache import CacheEntry, ResponseCache, is_empty_result
from vitalis.core.session import SessionEpoch
from vitalis.exceptions import StorageFailureException

PARAMS = {"date": "2024-01-02"}


def counting(result="fresh insight"):
    calls = []

    async def compute():
        calls.append(1)
        return result

    return compute, calls


class TestEmptyResults:
    @pytest.mark.parametrize("value", [None, "", "   ", [], {}, ()])
    def test_empty(self, value):
        assert is_empty_result(value) is True

    @pytest.mark.parametrize("value", ["x", [0], {"a": 1}, 0, False])
    def test_not_empty(self, value):
        assert is_empty_result(value) is False


class TestGetOrCompute:
    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, cache, metrics):
        compute, calls = counting()

        assert await cache.get_or_compute("daily_insight", PARAMS, compute) == "fresh insight"
        assert await cache.get_or_compute("daily_insight", PARAMS, compute) == "fresh insight"

        assert len(calls) == 1
        summary = metrics.get_summary()["cache"]
        assert summary["misses"] == 1
        assert summary["hits"] == 1
        assert summary["stores"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self, cache, metrics):
        gate = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await gate.wait()
            return {"insight": "shared"}

        first = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        await asyncio.sleep(0)

        assert cache.in_flight_count == 1
        gate.set()
        results = await asyncio.gather(first, second)

        assert results == [{"insight": "shared"}, {"insight": "shared"}]
        assert len(calls) == 1
        assert cache.in_flight_count == 0
        assert metrics.get_summary()["cache"]["dedup_joins"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_failure_reaches_every_caller_and_is_not_cached(self, cache, store):
        gate = asyncio.Event()

        async def compute():
            await gate.wait()
            raise RuntimeError("generation failed")

        first = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.in_flight_count == 0
        assert await store.keys(cache.prefix) == []

    @pytest.mark.asyncio
    async def test_empty_result_is_returned_but_not_stored(self, cache, store, metrics):
        compute, calls = counting(result="")

        assert await cache.get_or_compute("daily_insight", PARAMS, compute) == ""
        assert await cache.get_or_compute("daily_insight", PARAMS, compute) == ""

        assert len(calls) == 2
        assert await store.keys(cache.prefix) == []
        assert metrics.get_summary()["cache"]["skipped_empty"] == 2

    @pytest.mark.asyncio
    async def test_abandoned_caller_does_not_cancel_computation(self, cache):
        gate = asyncio.Event()

        async def compute():
            await gate.wait()
            return "finished anyway"

        caller = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        for _ in range(3):
            await asyncio.sleep(0)
        assert cache.in_flight_count == 1
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        for _ in range(5):
            await asyncio.sleep(0)

        assert await cache.get("daily_insight", PARAMS) == "finished anyway"

    @pytest.mark.asyncio
    async def test_disabled_cache_always_computes(self, store, session, clock, metrics):
        cache = ResponseCache(store, session, clock=clock, metrics=metrics, enabled=False)
        compute, calls = counting()

        await cache.get_or_compute("daily_insight", PARAMS, compute)
        await cache.get_or_compute("daily_insight", PARAMS, compute)

        assert len(calls) == 2
        assert await store.keys(cache.prefix) == []


class TestValidity:
    @pytest.mark.asyncio
    async def test_entry_expires_at_ttl(self, cache, clock):
        await cache.set("daily_insight", PARAMS, "cached")

        clock.advance(99)
        assert await cache.get("daily_insight", PARAMS) == "cached"

        clock.advance(1)
        assert await cache.get("daily_insight", PARAMS) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_deleted_on_read(self, cache, store, clock):
        await cache.set("daily_insight", PARAMS, "cached")
        clock.advance(500)

        await cache.get("daily_insight", PARAMS)
        assert await store.keys(cache.prefix) == []

    @pytest.mark.asyncio
    async def test_advancing_session_invalidates_older_entries(self, cache, session, clock):
        await cache.set("daily_insight", PARAMS, "old session")
        clock.advance(1)
        await session.advance()

        assert await cache.get("daily_insight", PARAMS) is None

        compute, calls = counting("new session")
        assert await cache.get_or_compute("daily_insight", PARAMS, compute) == "new session"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_entry_written_at_the_instant_of_advance_is_stale(self, cache, session):
        await cache.set("daily_insight", PARAMS, "old")
        await session.advance()

        assert await cache.get("daily_insight", PARAMS) is None

        await cache.set("daily_insight", PARAMS, "new")
        assert await cache.get("daily_insight", PARAMS) == "new"

    @pytest.mark.asyncio
    async def test_entry_from_before_process_start_is_ignored(self, store, clock):
        old = CacheEntry(key="k", payload="stale", created_at=clock.now() - 10)
        builder_cache = ResponseCache(
            store, SessionEpoch(store, started_at=clock.now(), session_id="s", clock=clock), clock=clock
        )
        key = builder_cache.keys.build("daily_insight", PARAMS)
        await store.set(key, old.encode())

        assert await builder_cache.get("daily_insight", PARAMS) is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_dropped(self, cache, store):
        key = cache.keys.build("daily_insight", PARAMS)
        await store.set(key, b"{not json")

        assert await cache.get("daily_insight", PARAMS) is None
        assert await store.get(key) is None

    @pytest.mark.asyncio
    async def test_stored_format(self, cache, store, clock):
        await cache.set("daily_insight", PARAMS, {"insight": "hi"})
        raw = await store.get(cache.keys.build("daily_insight", PARAMS))

        assert json.loads(raw) == {"data": {"insight": "hi"}, "timestamp": clock.now(), "session": "test-session"}


class TestStoragePressure:
    @pytest.mark.asyncio
    async def test_full_store_is_swept_then_written(self, clock, metrics):
        store = InMemoryKVStore(max_entries=2)
        session = SessionEpoch(store, started_at=clock.now(), session_id="s", clock=clock)
        cache = ResponseCache(store, session, ttl_seconds=100, clock=clock, metrics=metrics)

        await cache.set("daily_insight", {"date": "2024-01-01"}, "a")
        await cache.set("daily_insight", {"date": "2024-01-02"}, "b")
        clock.advance(200)

        assert await cache.set("daily_insight", {"date": "2024-01-03"}, "c") is True
        assert await cache.get("daily_insight", {"date": "2024-01-03"}) == "c"
        assert metrics.get_summary()["cache"]["sweeps"] == 1

    @pytest.mark.asyncio
    async def test_full_store_with_nothing_to_sweep_serves_uncached(self, clock, metrics):
        store = InMemoryKVStore(max_entries=1)
        session = SessionEpoch(store, started_at=clock.now(), session_id="s", clock=clock)
        cache = ResponseCache(store, session, ttl_seconds=100, clock=clock, metrics=metrics)
        await cache.set("daily_insight", {"date": "2024-01-01"}, "a")

        compute, calls = counting("still returned")
        result = await cache.get_or_compute("daily_insight", {"date": "2024-01-02"}, compute)

        assert result == "still returned"
        assert metrics.get_summary()["cache"]["write_failures"] == 1

    @pytest.mark.asyncio
    async def test_sweep_removes_oldest_invalid_entries_only(self, cache, store, clock):
        await cache.set("daily_insight", {"date": "2024-01-01"}, "old")
        clock.advance(150)
        await cache.set("daily_insight", {"date": "2024-01-02"}, "fresh")

        removed = await cache.sweep()

        assert removed == 1
        assert await cache.get("daily_insight", {"date": "2024-01-02"}) == "fresh"

    @pytest.mark.asyncio
    async def test_clear_leaves_session_record(self, cache, store, session):
        await session.advance()
        await cache.set("daily_insight", PARAMS, "x")

        assert await cache.clear() == 1
        assert await store.keys(cache.prefix) == []
        assert await store.keys("vitalis_session") != []

    @pytest.mark.asyncio
    async def test_clear_survives_unlistable_store(self, session, clock, metrics):
        class UnlistableStore(InMemoryKVStore):
            async def keys(self, prefix=""):
                raise StorageFailureException("listing not permitted")

        store = UnlistableStore()
        cache = ResponseCache(store, session, clock=clock, metrics=metrics)
        await cache.set("daily_insight", PARAMS, "x")

        assert await cache.clear() == 0


class TestAbandonedFailures:
    @pytest.mark.asyncio
    async def test_failure_with_no_remaining_caller_is_logged(self, cache, caplog):
        caplog.set_level(logging.DEBUG, logger="vitalis.core.response_cache")
        gate = asyncio.Event()

        async def compute():
            await gate.wait()
            raise RuntimeError("nobody is listening")

        caller = asyncio.ensure_future(cache.get_or_compute("daily_insight", PARAMS, compute))
        for _ in range(3):
            await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        for _ in range(5):
            await asyncio.sleep(0)

        assert cache.in_flight_count == 0
        assert "Shared computation failed: nobody is listening" in caplog.text
