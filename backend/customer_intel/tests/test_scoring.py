"""
Renewal health scoring (`customer_intel.scoring`).

Scope
-----
- Step functions for frequency / adoption / recency / consistency
- Usage-trend rule cascade over the last 4 weekly buckets
- Risk tiers, recommendations (urgency first, capped at 5)
- The weighted-sum invariant: score == round(Σ value × weight)
- Engine-level scenarios against an in-memory store with a fixed clock
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_event
from customer_intel.aggregation import round_half_up
from customer_intel.schemas import Impact, RiskLevel, ScoreFactor, UsageTrend, WeekTrend
from customer_intel.scoring import (
    WEIGHTS,
    batch_calculate_scores,
    build_renewal_score,
    calculate_renewal_health_score,
    determine_risk_level,
    generate_recommendations,
    impact_of,
    score_consistency,
    score_feature_adoption,
    score_recency,
    score_usage_frequency,
    score_usage_trend,
)


def _weeks(*trends, count=10):
    return [
        UsageTrend(period=f"2024-01-{i + 1:02d}", event_count=count, active_users=0, features_used=0, trend=t)
        for i, t in enumerate(trends)
    ]


INC, DEC, STB = WeekTrend.increasing, WeekTrend.decreasing, WeekTrend.stable


def test_weights_sum_to_one():
    assert sum(WEIGHTS.values()) == pytest.approx(1.0)


@pytest.mark.parametrize("count,expected", [(0, 0), (1, 10), (5, 20), (10, 40), (20, 60), (50, 80), (99, 80), (100, 100)])
def test_usage_frequency_tiers(count, expected):
    assert score_usage_frequency(count) == expected


@pytest.mark.parametrize("count,expected", [(0, 0), (1, 20), (3, 40), (5, 60), (7, 80), (10, 100), (15, 100)])
def test_feature_adoption_tiers(count, expected):
    assert score_feature_adoption(count) == expected


def test_usage_trend_rules():
    assert score_usage_trend([]) == 0
    assert score_usage_trend(_weeks(INC, INC, INC, INC)) == 100
    assert score_usage_trend(_weeks(INC, INC, STB, STB)) == 80
    assert score_usage_trend(_weeks(INC, STB, STB, DEC)) == 60
    assert score_usage_trend(_weeks(DEC, DEC, STB, STB)) == 30
    assert score_usage_trend(_weeks(DEC, DEC, DEC, STB)) == 30
    assert score_usage_trend(_weeks(STB, STB, STB, STB)) == 50


def test_usage_trend_only_looks_at_last_four_weeks():
    assert score_usage_trend(_weeks(DEC, DEC, DEC, INC, INC, INC, STB)) == 100


@pytest.mark.parametrize("days,expected", [(None, 0), (0, 100), (1, 100), (2, 90), (7, 75), (14, 50), (30, 25), (31, 10)])
def test_recency_tiers(days, expected):
    assert score_recency(days) == expected


def test_consistency():
    assert score_consistency(_weeks(STB)) == 50
    assert score_consistency(_weeks(STB, STB, STB)) == 100
    assert score_consistency(_weeks(STB, STB, count=0)) == 0
    uneven = [
        UsageTrend(period="a", event_count=1, active_users=0, features_used=0, trend=STB),
        UsageTrend(period="b", event_count=20, active_users=0, features_used=0, trend=INC),
    ]
    assert score_consistency(uneven) == 20


def test_impact_and_risk_boundaries():
    assert impact_of(70) is Impact.positive
    assert impact_of(69) is Impact.neutral
    assert impact_of(40) is Impact.neutral
    assert impact_of(39) is Impact.negative

    assert determine_risk_level(75) is RiskLevel.low
    assert determine_risk_level(74) is RiskLevel.medium
    assert determine_risk_level(50) is RiskLevel.medium
    assert determine_risk_level(25) is RiskLevel.high
    assert determine_risk_level(24) is RiskLevel.critical


def test_recommendations_urgency_first_and_capped():
    factors = [
        ScoreFactor(name=name, value=0, weight=w, impact=Impact.negative, description="")
        for name, w in WEIGHTS.items()
    ]
    recs = generate_recommendations(factors, RiskLevel.critical)
    assert recs[0].startswith("URGENT")
    assert len(recs) == 5


def test_recommendations_empty_when_all_positive():
    factors = [
        ScoreFactor(name=name, value=90, weight=w, impact=Impact.positive, description="")
        for name, w in WEIGHTS.items()
    ]
    assert generate_recommendations(factors, RiskLevel.low) == []


def test_zero_events_is_critical():
    result = build_renewal_score("ghost", [], FIXED_NOW)
    assert result.score <= 25
    assert result.risk_level is RiskLevel.critical
    assert result.recommendations[0].startswith("URGENT")
    by_name = {f.name: f for f in result.factors}
    assert by_name["Usage Trend"].value == 0
    assert by_name["Recency"].description == "No recent activity"


def test_score_equals_weighted_sum(intel):
    intel.record_events(
        make_event(feature=f"f{i % 4}", ts=FIXED_NOW - timedelta(days=i * 3))
        for i in range(25)
    )
    result = calculate_renewal_health_score(intel.events, "acme", now=FIXED_NOW)
    assert [f.name for f in result.factors] == list(WEIGHTS)
    assert result.score == round_half_up(sum(f.value * f.weight for f in result.factors))
    assert 0 <= result.score <= 100


def test_120_even_events_with_12_features(intel):
    intel.record_events(
        make_event(event_type="login", feature=f"feature_{i % 12}", ts=FIXED_NOW - timedelta(hours=18 * i))
        for i in range(120)
    )
    result = intel.renewal_health("acme")
    by_name = {f.name: f for f in result.factors}
    assert by_name["Usage Frequency"].value == 100
    assert by_name["Feature Adoption"].value == 100
    assert by_name["Recency"].value == 100
    assert by_name["Recency"].description == "Active today"
    assert result.risk_level in (RiskLevel.low, RiskLevel.medium)


def test_events_outside_90_days_ignored(intel):
    intel.record_event(make_event(ts=FIXED_NOW - timedelta(days=91)))
    result = intel.renewal_health("acme")
    assert result.factors[0].description == "0 events in the last 90 days"


def test_idempotent_without_writes(intel):
    intel.record_events(make_event(ts=FIXED_NOW - timedelta(days=d)) for d in range(10))
    assert intel.renewal_health("acme") == intel.renewal_health("acme")


def test_batch_preserves_order(intel):
    results = batch_calculate_scores(intel.events, ["a", "b", "c"], now=FIXED_NOW)
    assert [r.company_id for r in results] == ["a", "b", "c"]
