"""
Vitalis Insights - Service.

Turns correlation candidates, anomalies and daily records into natural
language through the governed Gemini client. Every cached insight kind is
keyed by its registered cache key spec. A generation failure falls back to
deterministic text built from the inputs; that text is returned to the caller
but never cached, so the next request tries upstream again.

Correlations and anomalies are computed upstream (statistics module); this
service only consumes them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date as date_cls
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from vitalis.core.gemini import GeminiGenerationClient, GenerationOptions
from vitalis.core.response_cache import ResponseCache
from vitalis.exceptions import (
    MalformedResultException,
    QuotaExceededException,
    UpstreamUnavailableException,
    ValidationException,
)
from vitalis.insights.scoring import Candidate, DailyRecords, ObservationSource, ScoredCandidate, select_best

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that degrade to template text; anything else propagates
GENERATION_FAILURES = (UpstreamUnavailableException, QuotaExceededException, MalformedResultException)

COACH_PREAMBLE = "You are a supportive health coach with a warm, empathetic approach."

COACH_GUIDELINES = """IMPORTANT GUIDELINES:
- Use a supportive, conversational coaching tone that balances empathy with insight
- Avoid technical jargon (like "correlation coefficient" or "r=") - use plain language
- Be warm and encouraging, not clinical
- ALWAYS conclude with a specific, personalized next step the user can take"""

SUMMARY_GUIDELINES = """IMPORTANT GUIDELINES:
- Write ONE clear, concise sentence (max 15 words)
- Use simple, friendly language
- Focus on the actionable insight, not technical details
- Avoid jargon like "correlation coefficient", "anomaly", "deviation" or "z-score"

Generate ONLY the one-line summary, no quotes, no extra text:"""

DEFAULT_RECOMMENDATIONS = [
    "Focus on getting 7-9 hours of sleep consistently",
    "Aim for at least 8,000 steps per day",
    "Monitor stress levels and practice stress-reduction techniques",
]

CAFFEINE_CUTOFF_HOURS = 14.5
BASELINE_DAYS = 14

_OLD_NARRATIVE_PREFIX = re.compile(r"^(Pattern Story|Health Journey|48-Hour Insight):\s*", re.IGNORECASE)
_TITLE = re.compile(r"TITLE:\s*(.+?)(?:\n|DESCRIPTION:)", re.IGNORECASE)
_DESCRIPTION = re.compile(r"DESCRIPTION:\s*(.+?)(?:\n|$)", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Anomaly:
    """A single unusual observation flagged by the anomaly detector."""

    metric_name: str
    date: str
    value: float
    mean: float | None = None
    deviation: float = 0.0
    severity: str = "moderate"
    consecutive_days: int = 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Anomaly":
        return cls(
            metric_name=str(data.get("metric_name") or data.get("metricName")),
            date=str(data["date"]),
            value=float(data["value"]),
            mean=float(data["mean"]) if data.get("mean") is not None else None,
            deviation=float(data.get("deviation") or 0.0),
            severity=str(data.get("severity") or "moderate"),
            consecutive_days=int(data.get("consecutive_days") or data.get("consecutiveDays") or 1),
        )

    def key_params(self) -> dict[str, Any]:
        return {"anomaly": {"metric_name": self.metric_name, "date": self.date, "value": self.value}}


def format_metric_label(metric: str) -> str:
    return " ".join(word.capitalize() for word in metric.replace("-", "_").split("_") if word)


def correlation_strength(r: float) -> str:
    abs_r = abs(r)
    if abs_r > 0.7:
        return "strong"
    if abs_r > 0.5:
        return "moderate"
    return "weak"


def strip_wrapping_quotes(text: str) -> str:
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ("'", '"'):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def parse_numbered_list(text: str, limit: int = 5) -> list[str]:
    items = [item.strip() for item in re.split(r"\d+\.", text)]
    return [item for item in items if item][:limit]


def parse_title_description(text: str, default_title: str) -> dict[str, str]:
    """
    Split a ``TITLE: ... DESCRIPTION: ...`` reply.

    Without markers, the first line is the title when there are several lines;
    a single line becomes the description under ``default_title``.
    """
    title_match = _TITLE.search(text)
    description_match = _DESCRIPTION.search(text)
    title = strip_wrapping_quotes(title_match.group(1)) if title_match else ""
    description = strip_wrapping_quotes(description_match.group(1)) if description_match else ""
    if title and description:
        return {"title": title, "description": description}

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if len(lines) >= 2:
        title = strip_wrapping_quotes(re.sub(r"^TITLE:\s*", "", lines[0], flags=re.IGNORECASE))
        rest = re.sub(r"^DESCRIPTION:\s*", "", " ".join(lines[1:]), flags=re.IGNORECASE)
        return {"title": title, "description": strip_wrapping_quotes(rest)}
    return {"title": default_title, "description": strip_wrapping_quotes(text)}


def ensure_summary_prefix(text: str) -> str:
    cleaned = _OLD_NARRATIVE_PREFIX.sub("", text.strip())
    if not cleaned.lower().startswith("summary:"):
        cleaned = f"Summary: {cleaned}"
    return cleaned


def time_to_hours(value: Any) -> float | None:
    """``"14:45"`` -> 14.75; numbers pass through."""
    if value is None or value == "":
        return None
    if isinstance(value, str) and ":" in value:
        hours, _, minutes = value.partition(":")
        try:
            return int(hours) + int(minutes) / 60
        except ValueError:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _label(candidate: Candidate, which: int) -> str:
    if which == 1:
        return candidate.metric1_label or format_metric_label(candidate.metric1)
    return candidate.metric2_label or format_metric_label(candidate.metric2)


def _correlation_params(candidate: Candidate) -> dict[str, Any]:
    return {
        "correlation": {
            "metric1": _label(candidate, 1),
            "metric2": _label(candidate, 2),
            "correlation": candidate.correlation,
        }
    }


def _timing(candidate: Candidate) -> str:
    return f"{candidate.lag} day(s) later" if candidate.lag > 0 else "the same day"


def _pattern_line(candidate: Candidate) -> str:
    timing = f" ({candidate.lag}-day delay)" if candidate.lag > 0 else " (same day)"
    return (
        f"{_label(candidate, 1)} and {_label(candidate, 2)} are "
        f"{abs(candidate.correlation) * 100:.0f}% connected{timing}"
    )


def _day_lines(day: Mapping[str, Mapping[str, Any]]) -> list[str]:
    lines = []
    if sleep := day.get("sleep"):
        lines.append(f"- Sleep: {sleep.get('sleep_duration_hours')}h, quality {sleep.get('sleep_quality_score')}/100")
    if activity := day.get("activity"):
        lines.append(f"- Activity: {activity.get('steps')} steps, {activity.get('exercise_minutes')} min exercise")
    if wellness := day.get("wellness"):
        lines.append(f"- Stress: {wellness.get('stress_level')}/10, Energy: {wellness.get('energy_level')}/10")
    if nutrition := day.get("nutrition"):
        lines.append(f"- Nutrition: {nutrition.get('calories')} cal, {nutrition.get('sugar_g')}g sugar")
    return lines


def _timeline_lines(day: Mapping[str, Mapping[str, Any]], baseline: Mapping[str, float]) -> list[str]:
    sleep = day.get("sleep") or {}
    nutrition = day.get("nutrition") or {}
    activity = day.get("activity") or {}
    wellness = day.get("wellness") or {}
    lines = []
    if "sleep_duration_hours" in sleep:
        hours = float(sleep["sleep_duration_hours"])
        lines.append(
            f"- Sleep: {hours:.1f}h ({hours - baseline['sleep']:+.1f}h vs baseline), "
            f"quality {sleep.get('sleep_quality_score')}/100"
        )
    else:
        lines.append("- No sleep data")
    caffeine_at = time_to_hours(nutrition.get("caffeine_last_time"))
    if caffeine_at is not None:
        timing = "AFTER 2:30 PM cutoff" if caffeine_at >= CAFFEINE_CUTOFF_HOURS else "before cutoff"
        lines.append(
            f"- Caffeine: last at {nutrition['caffeine_last_time']} ({timing}), "
            f"{nutrition.get('caffeine_cups', 0)} cups"
        )
    if isinstance(nutrition.get("sugar_g"), (int, float)):
        lines.append(f"- Sugar: {nutrition['sugar_g']:.0f}g (baseline {baseline['sugar']:.0f}g)")
    if activity.get("steps"):
        lines.append(f"- Steps: {int(activity['steps']):,}, exercise {activity.get('exercise_minutes', 0)} min")
    if wellness:
        lines.append(
            f"- Energy: {wellness.get('energy_level')}/10, Mood: {wellness.get('mood_score')}/10, "
            f"Stress: {wellness.get('stress_level')}/10"
        )
    return lines


def _display_date(day: date_cls) -> str:
    return f"{day.strftime('%B')} {day.day}"


def _or_missing(value: Any) -> str:
    return "not recorded" if value is None else str(value)


def _average(values: Iterable[Any]) -> float:
    numbers = [float(v) for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
    return sum(numbers) / len(numbers) if numbers else 0.0


class InsightService:
    def __init__(self, client: GeminiGenerationClient, cache: ResponseCache):
        self._client = client
        self._cache = cache

    async def _generate_text(self, function_name: str, prompt: str, options: GenerationOptions) -> str:
        """Generate and validate text; raises on failure so nothing is cached."""
        result = await self._client.generate(prompt, options)
        if not result.success:
            raise UpstreamUnavailableException(options.context, result.error or "AI generation failed")
        text = strip_wrapping_quotes(result.text)
        if not text:
            raise MalformedResultException(function_name)
        return text

    async def _cached(
        self,
        function_name: str,
        params: Mapping[str, Any],
        compute: Callable[[], Awaitable[T]],
        fallback: Callable[[], T],
    ) -> T:
        try:
            return await self._cache.get_or_compute(function_name, params, compute)
        except GENERATION_FAILURES as e:
            logger.info(f"{function_name} fell back to template: {e.message}")
            return fallback()

    # -------------------------------------------------------------------------
    # Correlations
    # -------------------------------------------------------------------------

    async def correlation_insight(self, candidate: Candidate) -> str:
        label1, label2 = _label(candidate, 1), _label(candidate, 2)
        strength = correlation_strength(candidate.correlation)
        positive = candidate.correlation > 0

        async def compute() -> str:
            prompt = f"""{COACH_PREAMBLE} Explain this health pattern in a clear, actionable way:

Metric 1: {label1} ({candidate.metric1_category})
Metric 2: {label2} ({candidate.metric2_category})
Pattern strength: {abs(candidate.correlation) * 100:.0f}% ({strength})
Time relationship: {f"{candidate.lag} day(s) later" if candidate.lag > 0 else "same day"}
Direction: {"when one increases, the other tends to increase" if positive else "when one increases, the other tends to decrease"}

{COACH_GUIDELINES}

Provide a 2-3 sentence explanation. Keep it concise, friendly, and supportive."""
            return await self._generate_text(
                "correlation_insight",
                prompt,
                GenerationOptions(temperature=0.7, max_tokens=200, context="insights_correlations"),
            )

        def fallback() -> str:
            direction = "increases with" if positive else "decreases with"
            return (
                f"Your {label1} {direction} {label2} ({strength} correlation). This suggests a "
                f"{'positive' if positive else 'negative'} relationship between these health metrics."
            )

        return await self._cached("correlation_insight", _correlation_params(candidate), compute, fallback)

    async def correlation_summary(self, candidate: Candidate) -> str:
        """One-line card summary for a correlation."""
        label1, label2 = _label(candidate, 1), _label(candidate, 2)

        async def compute() -> str:
            prompt = f"""{COACH_PREAMBLE} Generate a ONE-LINE summary (max 15 words) for this health correlation insight.

CORRELATION DATA:
- Metric 1: {label1} ({candidate.metric1_category})
- Metric 2: {label2} ({candidate.metric2_category})
- Correlation strength: {abs(candidate.correlation) * 100:.0f}% ({correlation_strength(candidate.correlation)})
- Time relationship: {_timing(candidate)}
- Direction: {"positive" if candidate.correlation > 0 else "negative"}

Example format: "Better sleep leads to lower sugar cravings the next day"

{SUMMARY_GUIDELINES}"""
            return await self._generate_text(
                "correlation_summary",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=50, context="insights_correlations"),
            )

        return await self._cached(
            "correlation_summary",
            _correlation_params(candidate),
            compute,
            lambda: f"When {label1} changes, {label2} responds {_timing(candidate)}",
        )

    async def recommendations(
        self,
        correlations: Sequence[Candidate],
        anomaly_count: int = 0,
        focus_area: str | None = None,
    ) -> list[str]:
        relevant = [
            c
            for c in correlations
            if focus_area is None or focus_area in (c.metric1_category, c.metric2_category)
        ][:5]
        params = {
            "focus_area": focus_area or "all",
            "top_correlations": "|".join(f"{_label(c, 1)}_{_label(c, 2)}" for c in relevant) or "none",
            "anomaly_count": anomaly_count,
        }

        async def compute() -> list[str]:
            patterns = "\n".join(f"{i + 1}. {_pattern_line(c)}" for i, c in enumerate(relevant))
            prompt = f"""{COACH_PREAMBLE} Based on this health data analysis, provide 3-5 actionable recommendations:

Top Patterns Found:
{patterns or "None"}

Notable Observations: {anomaly_count} metric(s) showing unusual patterns
{f"Focus Area: {focus_area}" if focus_area else ""}

{COACH_GUIDELINES}

Format as a numbered list. Keep each recommendation to 1-2 sentences."""
            text = await self._generate_text(
                "recommendations",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=400, context="metrics"),
            )
            items = parse_numbered_list(text)
            if not items:
                raise MalformedResultException("recommendations")
            return items

        return await self._cached("recommendations", params, compute, lambda: list(DEFAULT_RECOMMENDATIONS))

    # -------------------------------------------------------------------------
    # Hero
    # -------------------------------------------------------------------------

    def hero_insight(
        self,
        candidates: Iterable[Candidate | Mapping[str, Any]],
        aux: ObservationSource | Mapping | None = None,
    ) -> ScoredCandidate | None:
        return select_best(candidates, aux)

    async def hero_narrative(
        self,
        candidate: Candidate,
        records: DailyRecords | None = None,
        selected_date: str | None = None,
    ) -> dict[str, str]:
        """Title and description for the hero card, focused on yesterday and today."""
        label1, label2 = _label(candidate, 1), _label(candidate, 2)
        dates = records.dates() if records else []
        target = selected_date or (dates[-1] if dates else date_cls.today().isoformat())
        params = {"selected_date": target, **_correlation_params(candidate)}
        default_title = f"Your {label1} Affects {label2}"

        async def compute() -> dict[str, str]:
            recent = ""
            if records:
                previous = [d for d in dates if d < target]
                focus = ([previous[-1]] if previous else []) + [target]
                recent = "\n\nYESTERDAY & TODAY FOCUS:\n" + "\n".join(
                    f"{d}: {label1} = {_or_missing(records.value(d, candidate.metric1_category, candidate.metric1))}, "
                    f"{label2} = {_or_missing(records.value(d, candidate.metric2_category, candidate.metric2))}"
                    for d in focus
                )
            prompt = f"""You are a caring, professional health advisor. Write naturally and clearly.

Based on this correlation data, generate:
1. A short title (max 10 words, no quotes)
2. A clear description (3-4 sentences, no quotes) that ends with a specific, actionable next step

CORRELATION DATA:
- Metric 1: {label1} ({candidate.metric1_category})
- Metric 2: {label2} ({candidate.metric2_category})
- Correlation strength: {abs(candidate.correlation) * 100:.0f}% ({candidate.data_points} data points)
- Time relationship: {_timing(candidate)}
- Direction: {"positive" if candidate.correlation > 0 else "negative"}{recent}

WRITING GUIDELINES:
- Write like a caring professional - warm, clear, and respectful
- Figure out which metric affects which
- Suggest a next step that directly relates to these two metrics only

Format:
TITLE: [title]
DESCRIPTION: [3-4 sentences]"""
            text = await self._generate_text(
                "hero_insight",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=200, context="dashboard"),
            )
            return parse_title_description(text, default_title)

        def fallback() -> dict[str, str]:
            later = f" {candidate.lag} Day{'s' if candidate.lag > 1 else ''} Later" if candidate.lag > 0 else ""
            trend = "rise" if candidate.correlation > 0 else "fall"
            return {
                "title": f"Your {label1} Directly Controls {label2}{later}",
                "description": (
                    f"When your {label1.lower()} goes up, your {label2.lower()} tends to {trend} {_timing(candidate)}."
                ),
            }

        return await self._cached("hero_insight", params, compute, fallback)

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------

    async def anomaly_explanation(
        self,
        anomaly: Anomaly,
        day: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> str:
        label = format_metric_label(anomaly.metric_name)

        async def compute() -> str:
            context_lines = "\n".join(_day_lines(day or {}))
            prompt = f"""{COACH_PREAMBLE} Explain this health observation:

Metric: {label}
Date: {anomaly.date}
Value: {anomaly.value}
Typical Range: {f"{anomaly.mean:.2f}" if anomaly.mean is not None else "N/A"}
Difference: {anomaly.deviation:+.2f} from your usual
Severity: {anomaly.severity}

Context on this date:
{context_lines}

{COACH_GUIDELINES}

Provide a 2-3 sentence explanation. Keep it concise, friendly, and supportive."""
            return await self._generate_text(
                "anomaly_explanation",
                prompt,
                GenerationOptions(temperature=0.7, max_tokens=200, context="insights_anomalies"),
            )

        return await self._cached(
            "anomaly_explanation", anomaly.key_params(), compute, lambda: self._anomaly_message(anomaly, label)
        )

    async def anomaly_summary(self, anomaly: Anomaly) -> str:
        """One-line card summary for an anomaly."""
        label = format_metric_label(anomaly.metric_name)
        above = anomaly.deviation > 0
        days = anomaly.consecutive_days

        async def compute() -> str:
            prompt = f"""{COACH_PREAMBLE} Generate a ONE-LINE summary (max 15 words) for this health anomaly insight.

ANOMALY DATA:
- Metric: {label}
- Current Value: {anomaly.value:.1f}
- Baseline/Normal: {f"{anomaly.mean:.1f}" if anomaly.mean is not None else "N/A"}
- Deviation: {abs(anomaly.deviation):.0f} {"above" if above else "below"} baseline
- Duration: {days} consecutive day{"s" if days > 1 else ""}
- Severity: {anomaly.severity}

Example format: "Your heart rate is unusually high - consider light activity and extra sleep"

{SUMMARY_GUIDELINES}"""
            return await self._generate_text(
                "anomaly_summary",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=50, context="insights_anomalies"),
            )

        def fallback() -> str:
            return (
                f"{label} is {'elevated' if above else 'low'} ({abs(anomaly.deviation):.0f} "
                f"{'above' if above else 'below'} baseline) for {days} day{'s' if days > 1 else ''}"
            )

        return await self._cached("anomaly_summary", anomaly.key_params(), compute, fallback)

    @staticmethod
    def _anomaly_message(anomaly: Anomaly, label: str) -> str:
        elevated = anomaly.value > (anomaly.mean or 0)
        message = f"{label} is {'elevated' if elevated else 'low'}"
        if anomaly.mean:
            message += f" ({anomaly.deviation / anomaly.mean * 100:+.1f}% from baseline)"
        return message

    # -------------------------------------------------------------------------
    # Daily / weekly / timeline
    # -------------------------------------------------------------------------

    async def daily_insight(self, records: DailyRecords, date: str | None = None) -> dict[str, Any] | None:
        dates = records.dates()
        target = date or (dates[-1] if dates else None)
        if target is None:
            return None
        day = records.day(target)
        if not any(day.get(category) for category in ("sleep", "activity", "wellness")):
            return None

        async def compute() -> dict[str, Any]:
            prompt = f"""{COACH_PREAMBLE} Generate a brief, encouraging insight for {target}:

Today's Data:
{chr(10).join(_day_lines(day))}

{COACH_GUIDELINES}

Generate a 2-3 sentence daily insight. Keep it brief, friendly, and supportive."""
            text = await self._generate_text(
                "daily_insight",
                prompt,
                GenerationOptions(temperature=0.9, max_tokens=150, context="dashboard"),
            )
            return {"insight": text, "date": target}

        def fallback() -> dict[str, Any]:
            sleep = day.get("sleep") or {}
            wellness = day.get("wellness") or {}
            sleep_part = f"{sleep['sleep_duration_hours']}h sleep" if "sleep_duration_hours" in sleep else "activity"
            energy_part = (
                f"energy level of {wellness['energy_level']}/10" if "energy_level" in wellness else "wellness metrics"
            )
            return {
                "insight": f"Today's health data shows {sleep_part} and {energy_part}. Keep tracking your progress!",
                "date": target,
            }

        return await self._cached("daily_insight", {"date": target}, compute, fallback)

    async def weekly_summary(
        self,
        records: DailyRecords,
        top_correlations: Sequence[Candidate] = (),
        anomaly_count: int = 0,
        end_date: str | None = None,
        start_date: str | None = None,
        user_name: str | None = None,
    ) -> dict[str, Any] | None:
        if start_date and end_date and start_date > end_date:
            raise ValidationException(f"start_date {start_date} is after end_date {end_date}")
        dates = records.dates()
        if not dates:
            return None

        if start_date and end_date:
            start, end = start_date, end_date
        else:
            end = end_date or dates[-1]
            end_index = dates.index(end) if end in dates else len(dates) - 1
            start = dates[max(0, end_index - 6)]
        selected = [d for d in dates if start <= d <= end]

        def averages(days: Sequence[str]) -> dict[str, float]:
            return {
                "avg_sleep": round(_average(records.value(d, "sleep", "sleep_duration_hours") for d in days), 1),
                "avg_steps": round(_average(records.value(d, "activity", "steps") for d in days)),
                "avg_stress": round(_average(records.value(d, "wellness", "stress_level") for d in days), 1),
                "avg_energy": round(_average(records.value(d, "wellness", "energy_level") for d in days), 1),
            }

        period = averages(selected)
        greeting = f"Hi {user_name}! " if user_name else ""
        params = {"start_date": start, "end_date": end, "user_name": user_name}

        async def compute() -> dict[str, Any]:
            overall = averages(dates)
            patterns = "\n".join(f"{i + 1}. {_pattern_line(c)}" for i, c in enumerate(top_correlations[:3]))
            prompt = f"""{COACH_PREAMBLE} {greeting}Generate a comprehensive summary for the selected date range.

SELECTED DATE RANGE: {start} to {end} ({len(selected)} days)
SELECTED PERIOD AVERAGES:
- Sleep: {period["avg_sleep"]} hours
- Steps: {period["avg_steps"]} steps/day
- Stress Level: {period["avg_stress"]}/10
- Energy Level: {period["avg_energy"]}/10

FULL DATASET CONTEXT ({len(dates)} days):
- Sleep: {overall["avg_sleep"]} hours, Steps: {overall["avg_steps"]}/day
- Stress: {overall["avg_stress"]}/10, Energy: {overall["avg_energy"]}/10

Top Patterns Found:
{patterns or "None"}

Notable Observations: {anomaly_count} metric(s) with unusual values

{COACH_GUIDELINES}

Generate a 4-5 paragraph summary focused on the selected range, ending with 2-3 next steps."""
            text = await self._generate_text(
                "weekly_summary",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=500, context="dashboard"),
            )
            return {
                "week_dates": selected,
                "metrics": period,
                "top_correlations": [c.metric1 + "/" + c.metric2 for c in top_correlations[:3]],
                "anomaly_count": anomaly_count,
                "summary": text,
            }

        def fallback() -> dict[str, Any]:
            return {
                "week_dates": selected,
                "metrics": period,
                "top_correlations": [],
                "anomaly_count": anomaly_count,
                "summary": (
                    f"{greeting}Summary for {start} to {end}: Average sleep {period['avg_sleep']}h, "
                    f"{period['avg_steps']} steps/day, stress {period['avg_stress']}/10, "
                    f"energy {period['avg_energy']}/10."
                ),
            }

        return await self._cached("weekly_summary", params, compute, fallback)

    async def timeline_narrative(
        self,
        records: DailyRecords,
        selected_date: str | None = None,
        top_correlation: Candidate | None = None,
    ) -> str:
        """
        "Summary:" narrative of the last 48 hours (yesterday and today).

        The day before yesterday is given to the model as context only.
        Baselines are averaged over the last 14 days of data.
        """
        dates = records.dates()
        target = selected_date or (dates[-1] if dates else date_cls.today().isoformat())
        try:
            today = date_cls.fromisoformat(target[:10])
        except ValueError as e:
            raise ValidationException(f"Invalid selected_date '{target}'") from e
        yesterday = today - timedelta(days=1)
        day_before = yesterday - timedelta(days=1)
        today_data = records.day(today.isoformat())
        yesterday_data = records.day(yesterday.isoformat())
        day_before_data = records.day(day_before.isoformat())

        recent = dates[-BASELINE_DAYS:]
        baseline = {
            "sleep": _average(records.value(d, "sleep", "sleep_duration_hours") for d in recent),
            "quality": _average(records.value(d, "sleep", "sleep_quality_score") for d in recent),
            "sugar": _average(records.value(d, "nutrition", "sugar_g") for d in recent),
            "energy": _average(records.value(d, "wellness", "energy_level") for d in recent),
            "mood": _average(records.value(d, "wellness", "mood_score") for d in recent),
        }
        caffeine_48h = sum(
            float((day.get("nutrition") or {}).get("caffeine_cups") or 0) for day in (yesterday_data, today_data)
        )

        async def compute() -> str:
            pattern = _pattern_line(top_correlation) if top_correlation is not None else "None detected"
            prompt = f"""{COACH_PREAMBLE} Analyze the LAST 48 HOURS and generate a smooth, readable health insight that connects events naturally.

48-HOUR CAFFEINE TOTAL: {caffeine_48h:g} cups

YESTERDAY ({yesterday.isoformat()} - {_display_date(yesterday)}):
{chr(10).join(_timeline_lines(yesterday_data, baseline))}

TODAY ({today.isoformat()} - {_display_date(today)}):
{chr(10).join(_timeline_lines(today_data, baseline))}

(For context only - NOT part of the 48-hour analysis) DAY BEFORE ({day_before.isoformat()}):
{chr(10).join(_timeline_lines(day_before_data, baseline))}

BASELINE AVERAGES (last {len(recent)} days):
- Sleep: {baseline["sleep"]:.1f}h (quality: {baseline["quality"]:.0f}/100)
- Sugar: {baseline["sugar"]:.0f}g/day
- Energy: {baseline["energy"]:.1f}/10, Mood: {baseline["mood"]:.1f}/10

TOP CORRELATION PATTERN:
{pattern}

Write like a real person: short, direct sentences (max 15-20 words), specific numbers and dates,
2-3 blank lines between related ideas. Start with "Summary:" and end with a specific, actionable next step."""
            text = await self._generate_text(
                "timeline_narrative",
                prompt,
                GenerationOptions(temperature=0.9, max_tokens=400, context="timeline"),
            )
            return ensure_summary_prefix(text)

        def fallback() -> str:
            parts = []
            if "sleep_duration_hours" in (yesterday_data.get("sleep") or {}):
                hours = float(yesterday_data["sleep"]["sleep_duration_hours"])
                parts.append(f"On {_display_date(yesterday)}, you got {hours:.1f} hours of sleep")
            if "sleep_duration_hours" in (today_data.get("sleep") or {}):
                parts.append(f"Today you got {float(today_data['sleep']['sleep_duration_hours']):.1f} hours")
            steps = (today_data.get("activity") or {}).get("steps") or 0
            if steps > 8000:
                parts.append(f"You hit {steps:,} steps today")
            if parts:
                return f"Summary: {'. '.join(parts)}. Keep it up."
            return (
                "Summary: Tracking your health patterns over the last 48 hours. "
                "View the full timeline for detailed insights."
            )

        return await self._cached("timeline_narrative", {"selected_date": today.isoformat()}, compute, fallback)

    # -------------------------------------------------------------------------
    # Questions (never cached)
    # -------------------------------------------------------------------------

    async def answer_question(
        self,
        question: str,
        latest_day: Mapping[str, Mapping[str, Any]] | None = None,
        correlations: Sequence[Candidate] = (),
    ) -> dict[str, Any]:
        if not question or not question.strip():
            raise ValidationException("Question must not be empty")
        patterns = "\n".join(f"- {_pattern_line(c)}" for c in correlations[:10])
        prompt = f"""{COACH_PREAMBLE} Answer this question about the user's health data:

Question: {question.strip()}

Latest Health Data:
{chr(10).join(_day_lines(latest_day or {}))}

Key Patterns Found:
{patterns or "None"}

{COACH_GUIDELINES}

Keep the answer to 3-5 sentences unless the question requires more detail."""
        try:
            answer = await self._generate_text(
                "answer_question",
                prompt,
                GenerationOptions(temperature=0.8, max_tokens=500, context="dashboard"),
            )
        except GENERATION_FAILURES as e:
            logger.info(f"Question answering failed: {e.message}")
            return {
                "answer": (
                    "I apologize, but I encountered an error processing your question. "
                    "Please try rephrasing it or check back later."
                ),
                "sources": {"correlations": []},
            }
        return {
            "answer": answer,
            "sources": {"correlations": [_pattern_line(c) for c in correlations[:5]]},
        }
