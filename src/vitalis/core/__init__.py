"""
Vitalis Core - AI call governance.

Components:
- clock / kv_store: time and persistence abstractions
- rate_limiter: per-context sliding-window pacing with a FIFO queue
- dispatcher: one limiter and one credential per context
- cache_keys / session / response_cache: cached, deduplicated computations
- gemini: rate-limited Gemini generation with fallbacks
- governance: the service object wiring all of the above
"""

