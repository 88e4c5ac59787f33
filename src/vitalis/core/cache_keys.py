"""
Vitalis Core - Cache key builders.

Each cached function ("kind") declares exactly which parameters participate
in its key and how each one is normalized:

- date    -> ISO ``YYYY-MM-DD``
- number  -> rounded to 2 decimals
- integer -> int
- text    -> stripped string
- hash    -> lower-cased, stripped, first 16 hex chars of SHA-256

Keys are ``<prefix><kind>_<schema_version>_<field>=<value>_...``. Fields are
labeled, so an absent optional field can never be confused with another.
Unknown kinds and missing required fields raise ``CacheKeyException``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from vitalis.exceptions import CacheKeyException

_MISSING = object()


class FieldKind(str, Enum):
    DATE = "date"
    NUMBER = "number"
    INTEGER = "integer"
    TEXT = "text"
    HASH = "hash"


@dataclass(frozen=True)
class KeyField:
    """One key component. ``path`` may be dotted to reach into nested params."""

    path: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = True


@dataclass(frozen=True)
class CacheKeySpec:
    kind: str
    fields: tuple[KeyField, ...] = field(default_factory=tuple)

    def parts(self, params: Mapping[str, Any]) -> list[str]:
        missing: list[str] = []
        parts: list[str] = []
        for key_field in self.fields:
            value = _lookup(params, key_field.path)
            if value is _MISSING or value is None:
                if key_field.required:
                    missing.append(key_field.path)
                continue
            parts.append(f"{key_field.path}={normalize(value, key_field.kind)}")

        if missing:
            raise CacheKeyException(
                self.kind,
                f"Missing cache key parameters for '{self.kind}': {', '.join(missing)}",
                missing=missing,
            )
        return parts


def _lookup(params: Mapping[str, Any], path: str) -> Any:
    current: Any = params
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        else:
            current = getattr(current, segment, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def hash_text(text: str, length: int = 16) -> str:
    return hashlib.sha256(text.lower().strip().encode("utf-8")).hexdigest()[:length]


def normalize(value: Any, kind: FieldKind) -> str:
    if kind is FieldKind.DATE:
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return str(value).strip()[:10]
    if kind is FieldKind.NUMBER:
        return f"{round(float(value), 2):.2f}"
    if kind is FieldKind.INTEGER:
        return str(int(value))
    if kind is FieldKind.HASH:
        return hash_text(str(value))
    return str(value).strip()


# =============================================================================
# Registered kinds
# =============================================================================

_CORRELATION_FIELDS = (
    KeyField("correlation.metric1"),
    KeyField("correlation.metric2"),
    KeyField("correlation.correlation", FieldKind.NUMBER),
)

_ANOMALY_FIELDS = (
    KeyField("anomaly.metric_name"),
    KeyField("anomaly.date", FieldKind.DATE),
    KeyField("anomaly.value", FieldKind.NUMBER),
)

DEFAULT_KEY_SPECS: tuple[CacheKeySpec, ...] = (
    CacheKeySpec("correlation_insight", _CORRELATION_FIELDS),
    CacheKeySpec("correlation_summary", _CORRELATION_FIELDS),
    CacheKeySpec("hero_insight", (KeyField("selected_date", FieldKind.DATE), *_CORRELATION_FIELDS)),
    CacheKeySpec("anomaly_explanation", _ANOMALY_FIELDS),
    CacheKeySpec("anomaly_summary", _ANOMALY_FIELDS),
    CacheKeySpec(
        "weekly_summary",
        (
            KeyField("start_date", FieldKind.DATE),
            KeyField("end_date", FieldKind.DATE),
            KeyField("user_name", FieldKind.HASH, required=False),
        ),
    ),
    CacheKeySpec(
        "recommendations",
        (
            KeyField("focus_area"),
            KeyField("top_correlations", FieldKind.HASH),
            KeyField("anomaly_count", FieldKind.INTEGER),
        ),
    ),
    CacheKeySpec("daily_insight", (KeyField("date", FieldKind.DATE),)),
    CacheKeySpec("timeline_narrative", (KeyField("selected_date", FieldKind.DATE),)),
)


class CacheKeyBuilder:
    """Compiles (function name, params) into a stable string key."""

    def __init__(
        self,
        prefix: str = "ai_cache_",
        schema_version: str = "1.0",
        specs: Iterable[CacheKeySpec] = DEFAULT_KEY_SPECS,
    ):
        self.prefix = prefix
        self.schema_version = schema_version
        self._specs: dict[str, CacheKeySpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: CacheKeySpec) -> None:
        self._specs[spec.kind] = spec

    def kinds(self) -> list[str]:
        return sorted(self._specs)

    def build(self, function_name: str, params: Mapping[str, Any]) -> str:
        spec = self._specs.get(function_name)
        if spec is None:
            raise CacheKeyException(
                function_name,
                f"No cache key spec registered for '{function_name}'",
            )
        return "_".join([f"{self.prefix}{spec.kind}", self.schema_version, *spec.parts(params)])
