"""
Vitalis Insights - Multi-factor candidate scoring.

Picks the single "hero" insight out of many statistically valid correlation
candidates. Cross-domain, surprising, actionable findings are preferred over
obvious same-category correlations.

Factors (each 0-100) and weights:
- correlation strength  0.25
- cross-domain          0.30
- surprise              0.20
- actionability         0.15
- impact magnitude      0.10

Pure functions: no I/O, no hidden state. Identical input gives identical output.

Precondition: callers pre-filter candidates below |r| = 0.4 if they never want
such a candidate highlighted; the scorer gives them a zero correlation
subscore but does not drop them.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence

CORRELATION_FLOOR = 0.4
MIN_IMPACT_OBSERVATIONS = 5

WEIGHTS: dict[str, float] = {
    "correlation": 0.25,
    "cross_domain": 0.30,
    "surprise": 0.20,
    "actionability": 0.15,
    "impact": 0.10,
}

# Symmetric: looked up in both orientations
CATEGORY_DISTANCE: dict[frozenset[str], float] = {
    frozenset(("sleep", "nutrition")): 100,
    frozenset(("sleep", "activity")): 90,
    frozenset(("nutrition", "activity")): 85,
    frozenset(("wellness", "nutrition")): 80,
    frozenset(("sleep", "wellness")): 75,
    frozenset(("activity", "wellness")): 70,
    frozenset(("vitals", "sleep")): 95,
    frozenset(("vitals", "activity")): 95,
    frozenset(("vitals", "nutrition")): 95,
    frozenset(("vitals", "wellness")): 95,
}
DEFAULT_CATEGORY_DISTANCE = 60

OBVIOUS_PAIRS: tuple[tuple[str, str], ...] = (
    ("workout_performance", "mood"),
    ("workout_performance", "energy"),
    ("exercise_minutes", "calories_burned"),
    ("sleep_quality", "energy_level"),
    ("stress_level", "mood"),
    ("steps", "calories_burned"),
    ("workout", "mood"),
    ("exercise", "energy"),
    ("steps", "distance"),
)

SURPRISING_PAIRS: tuple[tuple[str, str], ...] = (
    ("sleep", "sugar"),
    ("caffeine", "sleep"),
    ("resting_heart_rate", "illness"),
    ("hydration", "energy"),
    ("meal_timing", "weight"),
    ("screen_time_before_bed", "sleep"),
    ("social_interactions", "sleep"),
    ("caffeine_last_time", "sleep"),
    ("screen_time", "sleep"),
)

CONTROLLABLE = (
    "caffeine_cups",
    "caffeine_last_time",
    "water_glasses",
    "screen_time_before_bed",
    "bedtime",
    "meal_last_time",
    "dinner_time",
    "workout_time",
    "meditation_minutes",
    "alcohol_units",
)

SOMEWHAT_CONTROLLABLE = (
    "sleep_duration",
    "exercise_minutes",
    "stress_level",
    "calories",
)


@dataclass(frozen=True)
class Candidate:
    """A correlation found by the statistics module. Read-only."""

    metric1: str
    metric2: str
    metric1_category: str
    metric2_category: str
    correlation: float
    lag: int = 0
    data_points: int = 0
    metric1_label: str | None = None
    metric2_label: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candidate":
        """Accepts both snake_case and the dashboard's camelCase field names."""

        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        return cls(
            metric1=str(pick("metric1")),
            metric2=str(pick("metric2")),
            metric1_category=str(pick("metric1_category", "metric1Category")),
            metric2_category=str(pick("metric2_category", "metric2Category")),
            correlation=float(pick("correlation", default=0.0)),
            lag=int(pick("lag", default=0)),
            data_points=int(pick("data_points", "dataPoints", default=0)),
            metric1_label=pick("metric1_label", "metric1Label"),
            metric2_label=pick("metric2_label", "metric2Label"),
        )


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    subscores: dict[str, float] = field(default_factory=dict)
    total: float = 0.0

    @property
    def contributions(self) -> dict[str, float]:
        """Weighted share of each factor in ``total``."""
        return {name: self.subscores[name] * weight for name, weight in WEIGHTS.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            **asdict(self.candidate),
            "subscores": dict(self.subscores),
            "contributions": self.contributions,
            "total": self.total,
        }


class ObservationSource(Protocol):
    def paired_values(self, candidate: Candidate) -> Iterable[tuple[Any, Any]]:
        """Yield (metric1 value, metric2 value) per observation day."""
        ...


class DailyRecords:
    """
    Observations indexed by date: ``{date: {category: {metric: value}}}``.

    ``lag`` is ignored when pairing: metric1 and metric2 are read from the same
    day, as the impact factor measures co-occurring magnitude.
    """

    def __init__(self, records: Mapping[str, Mapping[str, Mapping[str, Any]]]):
        self._records = records

    def dates(self) -> list[str]:
        return sorted(self._records)

    def day(self, date: str) -> Mapping[str, Mapping[str, Any]]:
        return self._records.get(date, {})

    def value(self, date: str, category: str, metric: str) -> Any:
        return (self._records.get(date, {}).get(category) or {}).get(metric)

    def paired_values(self, candidate: Candidate) -> Iterable[tuple[Any, Any]]:
        for date in self.dates():
            yield (
                self.value(date, candidate.metric1_category, candidate.metric1),
                self.value(date, candidate.metric2_category, candidate.metric2),
            )


# =============================================================================
# Factors
# =============================================================================


def correlation_score(r: float) -> float:
    abs_r = abs(r)
    if abs_r < CORRELATION_FLOOR:
        return 0.0
    return min(100.0, (abs_r - CORRELATION_FLOOR) / (1 - CORRELATION_FLOOR) * 100)


def cross_domain_score(category1: str, category2: str) -> float:
    if category1 == category2:
        return 0.0
    return float(CATEGORY_DISTANCE.get(frozenset((category1, category2)), DEFAULT_CATEGORY_DISTANCE))


def _pair_matches(m1: str, m2: str, pairs: Sequence[tuple[str, str]]) -> bool:
    return any((a in m1 and b in m2) or (b in m1 and a in m2) for a, b in pairs)


def surprise_score(metric1: str, metric2: str) -> float:
    m1, m2 = metric1.lower(), metric2.lower()
    if _pair_matches(m1, m2, OBVIOUS_PAIRS):
        return 20.0
    if _pair_matches(m1, m2, SURPRISING_PAIRS):
        return 100.0
    return 60.0


def actionability_score(metric1: str, metric2: str) -> float:
    m1, m2 = metric1.lower(), metric2.lower()
    if any(c in m1 or c in m2 for c in CONTROLLABLE):
        return 100.0
    if any(c in m1 or c in m2 for c in SOMEWHAT_CONTROLLABLE):
        return 60.0
    return 20.0


def _is_time_metric(name: str) -> bool:
    return "time" in name


def time_to_hours(value: Any) -> float | None:
    """``"22:30"`` -> 22.5. Numbers pass through; anything else is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if ":" in text:
        hours, _, minutes = text.partition(":")
        try:
            return int(hours) + int(minutes[:2]) / 60
        except ValueError:
            return None
    try:
        return float(text)
    except ValueError:
        return None


def _numeric(value: Any, is_time: bool) -> float | None:
    if is_time:
        value = time_to_hours(value)
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return None if math.isnan(value) else value


def cohens_d(low: Sequence[float], high: Sequence[float]) -> float | None:
    """Mean difference over pooled (population) standard deviation."""
    if not low or not high:
        return None
    pooled_sd = math.sqrt((statistics.pvariance(low) + statistics.pvariance(high)) / 2)
    if pooled_sd == 0:
        return None
    return abs(statistics.fmean(high) - statistics.fmean(low)) / pooled_sd


def impact_score(candidate: Candidate, source: ObservationSource | None) -> float:
    if source is None:
        return 0.0

    m1_time = _is_time_metric(candidate.metric1)
    m2_time = _is_time_metric(candidate.metric2)
    pairs: list[tuple[float, float]] = []
    for x, y in source.paired_values(candidate):
        nx, ny = _numeric(x, m1_time), _numeric(y, m2_time)
        if nx is not None and ny is not None:
            pairs.append((nx, ny))

    if len(pairs) < MIN_IMPACT_OBSERVATIONS:
        return 0.0

    median = sorted(p[0] for p in pairs)[len(pairs) // 2]
    low = [y for x, y in pairs if x < median]
    high = [y for x, y in pairs if x >= median]

    d = cohens_d(low, high)
    if d is None:
        return 0.0
    if d < 0.2:
        return 10.0
    if d < 0.5:
        return 40.0
    if d < 0.8:
        return 70.0
    return 100.0


# =============================================================================
# Selection
# =============================================================================


def _as_source(aux: ObservationSource | Mapping | None) -> ObservationSource | None:
    if aux is None or hasattr(aux, "paired_values"):
        return aux
    return DailyRecords(aux)


def score_candidate(candidate: Candidate, aux: ObservationSource | Mapping | None = None) -> ScoredCandidate:
    source = _as_source(aux)
    subscores = {
        "correlation": correlation_score(candidate.correlation),
        "cross_domain": cross_domain_score(candidate.metric1_category, candidate.metric2_category),
        "surprise": surprise_score(candidate.metric1, candidate.metric2),
        "actionability": actionability_score(candidate.metric1, candidate.metric2),
        "impact": impact_score(candidate, source),
    }
    total = sum(subscores[name] * weight for name, weight in WEIGHTS.items())
    return ScoredCandidate(candidate=candidate, subscores=subscores, total=total)


def rank_candidates(
    candidates: Iterable[Candidate | Mapping[str, Any]],
    aux: ObservationSource | Mapping | None = None,
) -> list[ScoredCandidate]:
    """Score every candidate; highest total first, ties keep input order."""
    source = _as_source(aux)
    scored = [
        score_candidate(c if isinstance(c, Candidate) else Candidate.from_dict(c), source)
        for c in candidates
    ]
    return sorted(scored, key=lambda s: -s.total)


def select_best(
    candidates: Iterable[Candidate | Mapping[str, Any]],
    aux: ObservationSource | Mapping | None = None,
) -> ScoredCandidate | None:
    """Return the hero insight, or None when there are no candidates."""
    ranked = rank_candidates(candidates, aux)
    return ranked[0] if ranked else None
