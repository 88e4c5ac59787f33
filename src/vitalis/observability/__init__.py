"""
Vitalis Observability Module.

Provides in-process metrics collection for AI contexts, errors, and the response cache.
"""

from vitalis.observability.metrics import MetricsStore, get_metrics_store

__all__ = ["MetricsStore", "get_metrics_store"]
