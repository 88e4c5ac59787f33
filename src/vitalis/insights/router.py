"""
Vitalis Insights - Router.

API endpoints for hero selection and AI narratives.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from vitalis.deps import get_insight_service, require_ai_insights, require_hero_insight
from vitalis.insights.schemas import (
    AnomalyRequest,
    AnomalySummaryRequest,
    CorrelationInsightRequest,
    DailyInsightRequest,
    DailyInsightResponse,
    HeroRequest,
    HeroResponse,
    InsightTextResponse,
    QuestionRequest,
    QuestionResponse,
    RecommendationsRequest,
    RecommendationsResponse,
    ScoredCandidateOut,
    TimelineRequest,
    TimelineResponse,
    WeeklySummaryRequest,
    WeeklySummaryResponse,
)
from vitalis.insights.scoring import DailyRecords
from vitalis.insights.service import InsightService
from vitalis.schemas import ErrorResponse

router = APIRouter(
    prefix="/insights",
    tags=["insights"],
    dependencies=[require_ai_insights],
    responses={
        400: {"model": ErrorResponse, "description": "Request failed validation"},
        503: {"model": ErrorResponse, "description": "Feature disabled or service not ready"},
    },
)

Service = Annotated[InsightService, Depends(get_insight_service)]


# =============================================================================
# Hero
# =============================================================================


@router.post("/hero", response_model=HeroResponse, dependencies=[require_hero_insight])
async def hero_insight(request: HeroRequest, service: Service) -> HeroResponse:
    """
    Pick the single most interesting correlation.

    An empty candidate list is not an error: the response carries no hero.
    With ``explain``, the winner also gets a cached title and description.
    """
    best = service.hero_insight([c.to_candidate() for c in request.candidates], request.records)
    if best is None:
        return HeroResponse()

    hero = ScoredCandidateOut(**best.to_dict())
    if not request.explain:
        return HeroResponse(hero=hero)

    records = DailyRecords(request.records) if request.records else None
    narrative = await service.hero_narrative(best.candidate, records, request.selected_date)
    return HeroResponse(hero=hero, title=narrative["title"], insight=narrative["description"])


# =============================================================================
# Correlations / anomalies
# =============================================================================


@router.post("/correlation", response_model=InsightTextResponse)
async def correlation_insight(request: CorrelationInsightRequest, service: Service) -> InsightTextResponse:
    text = await service.correlation_insight(request.correlation.to_candidate())
    return InsightTextResponse(insight=text)


@router.post("/correlation/summary", response_model=InsightTextResponse)
async def correlation_summary(request: CorrelationInsightRequest, service: Service) -> InsightTextResponse:
    text = await service.correlation_summary(request.correlation.to_candidate())
    return InsightTextResponse(insight=text)


@router.post("/anomaly", response_model=InsightTextResponse)
async def anomaly_explanation(request: AnomalyRequest, service: Service) -> InsightTextResponse:
    text = await service.anomaly_explanation(request.anomaly.to_anomaly(), request.day)
    return InsightTextResponse(insight=text)


@router.post("/anomaly/summary", response_model=InsightTextResponse)
async def anomaly_summary(request: AnomalySummaryRequest, service: Service) -> InsightTextResponse:
    text = await service.anomaly_summary(request.anomaly.to_anomaly())
    return InsightTextResponse(insight=text)


# =============================================================================
# Daily / weekly / timeline
# =============================================================================


@router.post("/daily", response_model=DailyInsightResponse)
async def daily_insight(request: DailyInsightRequest, service: Service) -> DailyInsightResponse:
    """A day without sleep, activity or wellness data gets no insight."""
    result = await service.daily_insight(DailyRecords(request.records), request.date)
    if result is None:
        return DailyInsightResponse()
    return DailyInsightResponse(**result)


@router.post("/weekly", response_model=WeeklySummaryResponse)
async def weekly_summary(request: WeeklySummaryRequest, service: Service) -> WeeklySummaryResponse:
    result = await service.weekly_summary(
        DailyRecords(request.records),
        [c.to_candidate() for c in request.top_correlations],
        anomaly_count=request.anomaly_count,
        end_date=request.end_date,
        start_date=request.start_date,
        user_name=request.user_name,
    )
    if result is None:
        return WeeklySummaryResponse()
    return WeeklySummaryResponse(**result)


@router.post("/timeline", response_model=TimelineResponse)
async def timeline_narrative(request: TimelineRequest, service: Service) -> TimelineResponse:
    top = request.top_correlation.to_candidate() if request.top_correlation else None
    narrative = await service.timeline_narrative(DailyRecords(request.records), request.selected_date, top)
    return TimelineResponse(narrative=narrative)


# =============================================================================
# Recommendations / questions
# =============================================================================


@router.post("/recommendations", response_model=RecommendationsResponse)
async def recommendations(request: RecommendationsRequest, service: Service) -> RecommendationsResponse:
    items = await service.recommendations(
        [c.to_candidate() for c in request.correlations],
        anomaly_count=request.anomaly_count,
        focus_area=request.focus_area,
    )
    return RecommendationsResponse(recommendations=items)


@router.post("/question", response_model=QuestionResponse)
async def answer_question(request: QuestionRequest, service: Service) -> QuestionResponse:
    """Answers are never cached."""
    result = await service.answer_question(
        request.question,
        request.latest_day,
        [c.to_candidate() for c in request.correlations],
    )
    return QuestionResponse(**result)
