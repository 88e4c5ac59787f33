"""Vitalis - Governed AI insights for a health-metrics dashboard."""

__version__ = "0.1.0"
