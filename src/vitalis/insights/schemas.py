"""
Vitalis Insights - Schemas.

Pydantic models for insight operations.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vitalis.insights.scoring import Candidate
from vitalis.insights.service import Anomaly


class CandidateIn(BaseModel):
    """A correlation candidate produced by the statistics module."""

    model_config = ConfigDict(populate_by_name=True)

    metric1: str = Field(..., min_length=1)
    metric2: str = Field(..., min_length=1)
    metric1_category: str = Field(..., alias="metric1Category")
    metric2_category: str = Field(..., alias="metric2Category")
    correlation: float = Field(..., ge=-1.0, le=1.0)
    lag: int = Field(default=0, ge=0)
    data_points: int = Field(default=0, ge=0, alias="dataPoints")
    metric1_label: str | None = Field(default=None, alias="metric1Label")
    metric2_label: str | None = Field(default=None, alias="metric2Label")

    def to_candidate(self) -> Candidate:
        return Candidate(**self.model_dump())


class HeroRequest(BaseModel):
    """Request to pick the hero insight."""

    candidates: list[CandidateIn] = Field(default_factory=list)
    records: dict[str, dict[str, dict[str, Any]]] | None = Field(
        default=None, description="Daily observations: {date: {category: {metric: value}}}"
    )
    explain: bool = Field(default=False, description="Also generate a narrative for the winner")
    selected_date: str | None = Field(default=None, description="Day the narrative focuses on (default: latest)")


class ScoredCandidateOut(BaseModel):
    metric1: str
    metric2: str
    metric1_category: str
    metric2_category: str
    correlation: float
    lag: int
    subscores: dict[str, float]
    contributions: dict[str, float]
    total: float


class HeroResponse(BaseModel):
    hero: ScoredCandidateOut | None = None
    title: str | None = None
    insight: str | None = None


class CorrelationInsightRequest(BaseModel):
    correlation: CandidateIn


class AnomalyIn(BaseModel):
    metric_name: str = Field(..., min_length=1)
    date: str = Field(..., min_length=10)
    value: float
    mean: float | None = None
    deviation: float = 0.0
    severity: str = "moderate"
    consecutive_days: int = Field(default=1, ge=1)

    def to_anomaly(self) -> Anomaly:
        return Anomaly(**self.model_dump())


class AnomalyRequest(BaseModel):
    anomaly: AnomalyIn
    day: dict[str, dict[str, Any]] | None = None


class InsightTextResponse(BaseModel):
    insight: str


class AnomalySummaryRequest(BaseModel):
    anomaly: AnomalyIn


# =============================================================================
# Daily / weekly / timeline
# =============================================================================

Records = dict[str, dict[str, dict[str, Any]]]


class DailyInsightRequest(BaseModel):
    records: Records
    date: str | None = None


class DailyInsightResponse(BaseModel):
    insight: str | None = None
    date: str | None = None


class WeeklySummaryRequest(BaseModel):
    records: Records
    top_correlations: list[CandidateIn] = Field(default_factory=list)
    anomaly_count: int = Field(default=0, ge=0)
    start_date: str | None = None
    end_date: str | None = None
    user_name: str | None = None


class WeeklySummaryResponse(BaseModel):
    summary: str | None = None
    week_dates: list[str] = Field(default_factory=list)
    metrics: dict[str, float] = Field(default_factory=dict)
    top_correlations: list[str] = Field(default_factory=list)
    anomaly_count: int = 0


class TimelineRequest(BaseModel):
    records: Records
    selected_date: str | None = None
    top_correlation: CandidateIn | None = None


class TimelineResponse(BaseModel):
    narrative: str


# =============================================================================
# Recommendations / questions
# =============================================================================


class RecommendationsRequest(BaseModel):
    correlations: list[CandidateIn] = Field(default_factory=list)
    anomaly_count: int = Field(default=0, ge=0)
    focus_area: str | None = None


class RecommendationsResponse(BaseModel):
    recommendations: list[str]


class QuestionRequest(BaseModel):
    question: str = Field(..., max_length=2000)
    latest_day: dict[str, dict[str, Any]] | None = None
    correlations: list[CandidateIn] = Field(default_factory=list)


class QuestionResponse(BaseModel):
    answer: str
    sources: dict[str, list[str]]
