"""Tests for hero insight candidate scoring."""

import pytest

from vitalis.insights.scoring import (
    Candidate,
    DailyRecords,
    actionability_score,
    cohens_d,
    correlation_score,
    cross_domain_score,
    impact_score,
    rank_candidates,
    score_candidate,
    select_best,
    surprise_score,
    time_to_hours,
)

CAFFEINE_SLEEP = Candidate(
    metric1="caffeine_last_time",
    metric2="sleep_quality",
    metric1_category="nutrition",
    metric2_category="sleep",
    correlation=0.55,
)

STEPS_CALORIES = Candidate(
    metric1="steps",
    metric2="calories_burned",
    metric1_category="activity",
    metric2_category="activity",
    correlation=0.9,
)


def caffeine_records():
    times = ["13:00", "14:00", "15:00", "18:00", "19:00", "20:00"]
    quality = [80, 82, 78, 50, 52, 48]
    return {
        f"2024-01-0{i + 1}": {
            "nutrition": {"caffeine_last_time": t},
            "sleep": {"sleep_quality": q},
        }
        for i, (t, q) in enumerate(zip(times, quality))
    }


class TestFactors:
    def test_correlation_floor(self):
        assert correlation_score(0.39) == 0.0
        assert correlation_score(-0.7) == pytest.approx(50.0)
        assert correlation_score(1.0) == pytest.approx(100.0)

    def test_cross_domain_is_symmetric(self):
        assert cross_domain_score("sleep", "nutrition") == cross_domain_score("nutrition", "sleep") == 100
        assert cross_domain_score("vitals", "activity") == 95
        assert cross_domain_score("activity", "activity") == 0
        assert cross_domain_score("sleep", "mystery") == 60

    def test_obvious_beats_surprising(self):
        assert surprise_score("steps", "calories_burned") == 20
        assert surprise_score("screen_time_before_bed", "sleep_duration") == 100
        assert surprise_score("water", "mood_rating") == 60

    def test_actionability_tiers(self):
        assert actionability_score("alcohol_units", "hrv") == 100
        assert actionability_score("stress_level", "hrv") == 60
        assert actionability_score("resting_heart_rate", "hrv") == 20

    def test_time_parsing(self):
        assert time_to_hours("22:30") == 22.5
        assert time_to_hours(7) == 7.0
        assert time_to_hours("late") is None

    def test_cohens_d_needs_spread(self):
        assert cohens_d([1.0, 1.0], [1.0, 1.0]) is None
        assert cohens_d([], [1.0]) is None


class TestImpact:
    def test_large_effect(self):
        assert impact_score(CAFFEINE_SLEEP, DailyRecords(caffeine_records())) == 100.0

    def test_too_few_observations(self):
        records = dict(list(caffeine_records().items())[:4])
        assert impact_score(CAFFEINE_SLEEP, DailyRecords(records)) == 0.0

    def test_no_observations(self):
        assert impact_score(CAFFEINE_SLEEP, None) == 0.0


class TestSelection:
    def test_cross_domain_outranks_strong_obvious(self):
        ranked = rank_candidates([STEPS_CALORIES, CAFFEINE_SLEEP])

        assert ranked[0].candidate == CAFFEINE_SLEEP
        assert ranked[0].total == pytest.approx(71.25)
        assert ranked[1].total == pytest.approx(33.83, abs=0.01)

    def test_impact_adds_its_weight(self):
        scored = score_candidate(CAFFEINE_SLEEP, caffeine_records())

        assert scored.subscores["impact"] == 100.0
        assert scored.total == pytest.approx(81.25)
        assert scored.contributions["impact"] == pytest.approx(10.0)

    def test_empty_input(self):
        assert select_best([]) is None

    def test_deterministic(self):
        candidates = [STEPS_CALORIES, CAFFEINE_SLEEP]
        first = [s.to_dict() for s in rank_candidates(candidates)]
        second = [s.to_dict() for s in rank_candidates(candidates)]
        assert first == second

    def test_ties_keep_input_order(self):
        a = Candidate("sleep_a", "steps_a", "sleep", "activity", 0.6)
        b = Candidate("sleep_b", "steps_b", "sleep", "activity", 0.6)

        assert [s.candidate for s in rank_candidates([a, b])] == [a, b]
        assert [s.candidate for s in rank_candidates([b, a])] == [b, a]

    def test_accepts_dashboard_dicts(self):
        best = select_best(
            [
                {
                    "metric1": "caffeine_last_time",
                    "metric2": "sleep_quality",
                    "metric1Category": "nutrition",
                    "metric2Category": "sleep",
                    "correlation": 0.55,
                    "dataPoints": 30,
                }
            ]
        )

        assert best is not None
        assert best.candidate.data_points == 30
        assert best.to_dict()["metric1_category"] == "nutrition"
