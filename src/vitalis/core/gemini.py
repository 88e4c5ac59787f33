"""
Vitalis Core - Gemini Developer API Integration.

Uses Gemini Developer API (API key) with one client per context.
Every upstream call goes through the context's rate limiter.

Failures are reported as a ``GenerationResult`` with ``success=False`` and a
keyword-matched fallback text, so callers always have something to render.
A quota / 429 response is retried once after a fixed delay.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from vitalis.core.clock import Clock, MonotonicClock
from vitalis.core.dispatcher import DEFAULT_CONTEXT, ContextDispatcher, is_valid_api_key
from vitalis.exceptions import QuotaExceededException, UpstreamUnavailableException
from vitalis.observability.metrics import MetricsStore, get_metrics_store

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

_QUOTA_MARKERS = ("429", "rate limit", "quota", "resource_exhausted")


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.7
    max_tokens: int = 1000
    top_p: float = 0.8
    top_k: int = 40
    context: str = DEFAULT_CONTEXT

    def with_overrides(self, **overrides: Any) -> "GenerationOptions":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@dataclass(frozen=True)
class GenerationResult:
    text: str
    success: bool
    error: str | None = None
    context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_quota_error(exc: BaseException) -> bool:
    if getattr(exc, "code", None) == 429 or getattr(exc, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _QUOTA_MARKERS)


def fallback_response(prompt: str) -> str:
    """Keyword-matched canned response used when generation is unavailable."""
    lower = prompt.lower()

    if "sleep" in lower:
        return (
            "Your sleep patterns show interesting correlations with other health metrics. "
            "Maintaining consistent sleep duration and quality can significantly impact your daily energy and mood."
        )
    if any(word in lower for word in ("activity", "exercise", "steps")):
        return (
            "Regular physical activity is strongly linked to improved mood and energy levels. "
            "Even moderate daily movement can have positive effects on your overall wellbeing."
        )
    if "stress" in lower or "mood" in lower:
        return (
            "Stress and mood levels are interconnected with sleep quality and physical activity. "
            "Managing stress through relaxation techniques and regular exercise can improve your mental wellbeing."
        )
    if any(word in lower for word in ("nutrition", "calories", "protein")):
        return (
            "Your nutrition choices impact your energy levels and physical performance. "
            "Balanced meals with adequate protein support both activity and recovery."
        )
    if "correlation" in lower or "pattern" in lower:
        return (
            "We've identified meaningful patterns in your health data. These correlations reveal how "
            "different aspects of your lifestyle influence each other, providing opportunities for optimization."
        )
    return (
        "Based on your health data, there are interesting patterns worth exploring. Review the Insights Hub "
        "for detailed analysis of correlations and trends in your wellness journey."
    )


def _default_client_factory(api_key: str) -> Any:
    from google import genai

    return genai.Client(api_key=api_key)


class GeminiGenerationClient:
    """Rate-limited, context-aware Gemini text generation."""

    def __init__(
        self,
        dispatcher: ContextDispatcher,
        model: str = DEFAULT_MODEL,
        client_factory: Callable[[str], Any] | None = None,
        clock: Clock | None = None,
        quota_retry_delay_seconds: float = 7.0,
        defaults: GenerationOptions | None = None,
        metrics: MetricsStore | None = None,
    ):
        self._dispatcher = dispatcher
        self.model = model
        self._client_factory = client_factory or _default_client_factory
        self._clock = clock or MonotonicClock()
        self.quota_retry_delay_seconds = quota_retry_delay_seconds
        self.defaults = defaults or GenerationOptions()
        self._metrics = metrics or get_metrics_store()
        self._clients: dict[str, Any] = {}

    # -------------------------------------------------------------------------
    # Availability
    # -------------------------------------------------------------------------

    def _client_for(self, context: str) -> Any | None:
        if context in self._clients:
            return self._clients[context]

        api_key = self._dispatcher.credential_for(context)
        if not api_key:
            return None
        if not is_valid_api_key(api_key):
            logger.warning(f"API key for context '{context}' does not look like a Gemini key")
            return None

        try:
            client = self._client_factory(api_key)
        except Exception as e:
            logger.error(f"Gemini client initialization failed for context '{context}': {e}")
            return None

        self._clients[context] = client
        logger.info(f"Gemini client initialized for context '{context}'")
        return client

    def is_available(self, context: str = DEFAULT_CONTEXT) -> bool:
        return self._client_for(context) is not None

    def model_info(self, context: str = DEFAULT_CONTEXT) -> dict[str, Any]:
        return {
            "available": self.is_available(context),
            "model_name": self.model,
            "context": context,
        }

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(self, prompt: str, options: GenerationOptions | None = None) -> GenerationResult:
        opts = options or self.defaults
        context = opts.context

        client = self._client_for(context)
        if client is None:
            exc = UpstreamUnavailableException(context, "API key not configured")
            self._metrics.record_generation_error(context, exc.code)
            logger.warning(exc.message)
            return GenerationResult(text=fallback_response(prompt), success=False, error=exc.message, context=context)

        return await self._dispatcher.execute(
            context, lambda: self._generate_with_retry(client, prompt, opts)
        )

    async def generate_stream(
        self,
        prompt: str,
        on_chunk: Callable[[str], None] | None = None,
        context: str = DEFAULT_CONTEXT,
    ) -> GenerationResult:
        """Stream a response, forwarding each chunk to ``on_chunk``."""
        client = self._client_for(context)
        if client is None:
            exc = UpstreamUnavailableException(context, "API key not configured")
            self._metrics.record_generation_error(context, exc.code)
            return GenerationResult(
                text="Sorry, AI service is not available. Please check your API key configuration.",
                success=False,
                error=exc.message,
                context=context,
            )

        async def run() -> GenerationResult:
            started = time.perf_counter()
            parts: list[str] = []
            try:
                stream = await client.aio.models.generate_content_stream(model=self.model, contents=prompt)
                async for chunk in stream:
                    text = chunk.text or ""
                    parts.append(text)
                    if on_chunk is not None:
                        on_chunk(text)
            except Exception as e:
                logger.error(f"Streaming generation failed for context '{context}': {e}")
                self._metrics.record_generation_error(context, "UPSTREAM_UNAVAILABLE")
                return GenerationResult(
                    text="Sorry, I encountered an error generating a response. Please try again.",
                    success=False,
                    error=str(e),
                    context=context,
                )
            self._metrics.record_generation_latency(context, (time.perf_counter() - started) * 1000)
            return GenerationResult(text="".join(parts), success=True, context=context)

        return await self._dispatcher.execute(context, run)

    async def _generate_with_retry(self, client: Any, prompt: str, opts: GenerationOptions) -> GenerationResult:
        context = opts.context
        try:
            text = await self._call(client, prompt, opts)
        except Exception as e:
            if not is_quota_error(e):
                return self._failure(prompt, context, e)

            quota = QuotaExceededException(context, str(e))
            self._metrics.record_generation_error(context, quota.code)
            logger.warning(f"{quota.message}; retrying once in {self.quota_retry_delay_seconds:g}s")
            await self._clock.sleep(self.quota_retry_delay_seconds)
            try:
                text = await self._call(client, prompt, opts)
            except Exception as retry_error:
                return self._failure(prompt, context, retry_error)

        return GenerationResult(text=text, success=True, context=context)

    async def _call(self, client: Any, prompt: str, opts: GenerationOptions) -> str:
        from google.genai import types

        started = time.perf_counter()
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=opts.temperature,
                top_p=opts.top_p,
                top_k=opts.top_k,
                max_output_tokens=opts.max_tokens,
            ),
        )
        self._metrics.record_generation_latency(opts.context, (time.perf_counter() - started) * 1000)
        return response.text or ""

    def _failure(self, prompt: str, context: str, exc: Exception) -> GenerationResult:
        code = "QUOTA_EXCEEDED" if is_quota_error(exc) else "UPSTREAM_UNAVAILABLE"
        self._metrics.record_generation_error(context, code)
        logger.error(f"Generation failed for context '{context}': {exc}")
        return GenerationResult(text=fallback_response(prompt), success=False, error=str(exc), context=context)
