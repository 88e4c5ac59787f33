"""
Vitalis Core - AI governance service.

Single object owning every piece of mutable governance state (limiters,
credentials, cache, in-flight map). Constructed once at startup with
``build_governance`` and passed to whoever needs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping

from vitalis.config import Settings
from vitalis.core.cache_keys import CacheKeyBuilder
from vitalis.core.clock import Clock, MonotonicClock, SystemClock
from vitalis.core.dispatcher import ContextDispatcher
from vitalis.core.gemini import GeminiGenerationClient, GenerationOptions
from vitalis.core.kv_store import FileKVStore, InMemoryKVStore, KVStore, RedisKVStore
from vitalis.core.response_cache import ResponseCache
from vitalis.core.session import SessionEpoch
from vitalis.insights.scoring import Candidate, ObservationSource, ScoredCandidate, select_best
from vitalis.observability.metrics import MetricsStore, get_metrics_store

logger = logging.getLogger(__name__)


@dataclass
class AIGovernance:
    dispatcher: ContextDispatcher
    cache: ResponseCache
    client: GeminiGenerationClient
    store: KVStore
    session: SessionEpoch
    metrics: MetricsStore = field(default_factory=get_metrics_store)

    async def with_cache(
        self,
        function_name: str,
        params: Mapping[str, Any],
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Entry point for any AI-backed computation."""
        return await self.cache.get_or_compute(function_name, params, compute)

    def select_best(
        self,
        candidates: Iterable[Candidate | Mapping[str, Any]],
        aux: ObservationSource | Mapping | None = None,
    ) -> ScoredCandidate | None:
        return select_best(candidates, aux)

    def status(self) -> dict[str, Any]:
        """Read-only introspection for operational debugging."""
        return {
            "contexts": self.dispatcher.status(),
            "cache": {
                "in_flight": self.cache.in_flight_count,
                "ttl_seconds": self.cache.ttl_seconds,
                "session_id": self.session.session_id,
                "session_started_at": self.session.started_at,
            },
            "metrics": self.metrics.get_summary(),
        }

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        await self.store.close()


def build_store(settings: Settings) -> KVStore:
    backend = settings.cache.backend
    if backend == "file":
        return FileKVStore(settings.cache.file_path)
    if backend == "redis":
        return RedisKVStore.from_url(settings.redis.url)
    return InMemoryKVStore()


async def build_governance(
    settings: Settings,
    store: KVStore | None = None,
    wall_clock: Clock | None = None,
    pacing_clock: Clock | None = None,
    credential_source: Mapping[str, str] | None = None,
    client_factory: Callable[[str], Any] | None = None,
    metrics: MetricsStore | None = None,
) -> AIGovernance:
    """Wire the governance layer from settings. Any collaborator can be overridden."""
    store = store or build_store(settings)
    wall_clock = wall_clock or SystemClock()
    pacing_clock = pacing_clock or MonotonicClock()
    metrics = metrics or get_metrics_store()

    dispatcher = ContextDispatcher(
        max_requests=settings.rate_limit.max_requests,
        window_seconds=settings.rate_limit.window_seconds,
        clock=pacing_clock,
        safety_margin_seconds=settings.rate_limit.safety_margin_seconds,
        default_api_key=settings.gemini.api_key,
        key_env_prefix=settings.gemini.key_env_prefix,
        credential_source=credential_source,
    )
    session = await SessionEpoch.start(store, clock=wall_clock, session_id=settings.cache.session_id)
    cache = ResponseCache(
        store,
        session,
        key_builder=CacheKeyBuilder(prefix=settings.cache.key_prefix, schema_version=settings.cache.schema_version),
        ttl_seconds=settings.cache.ttl_seconds,
        clock=wall_clock,
        metrics=metrics,
        enabled=settings.features.cache,
    )
    client = GeminiGenerationClient(
        dispatcher,
        model=settings.gemini.model,
        client_factory=client_factory,
        clock=pacing_clock,
        quota_retry_delay_seconds=settings.gemini.quota_retry_delay_seconds,
        defaults=GenerationOptions(
            temperature=settings.gemini.temperature,
            max_tokens=settings.gemini.max_tokens,
            top_p=settings.gemini.top_p,
            top_k=settings.gemini.top_k,
        ),
        metrics=metrics,
    )
    logger.info(
        f"AI governance ready [backend={settings.cache.backend}] "
        f"[rate={settings.rate_limit.max_requests}/{settings.rate_limit.window_seconds:g}s] "
        f"[model={settings.gemini.model}]"
    )
    return AIGovernance(
        dispatcher=dispatcher,
        cache=cache,
        client=client,
        store=store,
        session=session,
        metrics=metrics,
    )
