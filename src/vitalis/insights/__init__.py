"""Vitalis Insights Module - Hero insight selection and AI explanations."""

from vitalis.insights.scoring import Candidate, ScoredCandidate, rank_candidates, select_best
from vitalis.insights.service import Anomaly, InsightService

__all__ = ["Anomaly", "Candidate", "InsightService", "ScoredCandidate", "rank_candidates", "select_best"]
