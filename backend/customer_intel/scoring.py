"""
scoring.py
==========
Renewal health: 0–100 score with explainable factors, a risk tier and
recommendations.

Factors (all over a 90-day window):
- Usage frequency   → raw event volume.
- Feature adoption  → number of distinct features used.
- Usage trend       → direction of the last 4 calendar weeks.
- Recency           → days since the latest event.
- Usage consistency → coefficient of variation of weekly counts.

All factors return 0..100. WEIGHTS sum to 1.0 and
`score == round(sum(value * weight))`.
"""

# backend/customer_intel/scoring.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .aggregation import (
    DAY,
    calculate_feature_adoption,
    calculate_usage_trends,
    coefficient_of_variation,
    round_half_up,
)
from .schemas import (
    Impact,
    RenewalHealthScore,
    RiskLevel,
    ScoreFactor,
    UsageEvent,
    UsageTrend,
    WeekTrend,
)
from .store import EventStore

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 90

# Overall factor weights (sum to 1.0)
WEIGHTS: Dict[str, float] = {
    "Usage Frequency":   0.25,
    "Feature Adoption":  0.25,
    "Usage Trend":       0.20,
    "Recency":           0.15,
    "Usage Consistency": 0.15,
}

# (minimum, score) tiers, checked top-down
FREQUENCY_TIERS: Sequence[Tuple[int, int]] = ((100, 100), (50, 80), (20, 60), (10, 40), (5, 20), (1, 10))
ADOPTION_TIERS: Sequence[Tuple[int, int]] = ((10, 100), (7, 80), (5, 60), (3, 40), (1, 20))
# (maximum days since last event, score)
RECENCY_TIERS: Sequence[Tuple[int, int]] = ((1, 100), (3, 90), (7, 75), (14, 50), (30, 25))
# (maximum coefficient of variation, score)
CONSISTENCY_TIERS: Sequence[Tuple[float, int]] = ((0.2, 100), (0.4, 80), (0.6, 60), (0.8, 40))

RISK_TIERS: Sequence[Tuple[int, RiskLevel]] = (
    (75, RiskLevel.low),
    (50, RiskLevel.medium),
    (25, RiskLevel.high),
)

RECOMMENDATIONS: Dict[str, Tuple[str, str]] = {
    "Usage Frequency": (
        "Schedule a check-in call to understand usage blockers",
        "Share product tips and best practices",
    ),
    "Feature Adoption": (
        "Offer personalized training on advanced features",
        "Share relevant use cases and success stories",
    ),
    "Usage Trend": (
        "Investigate recent changes in account status",
        "Reach out to understand declining usage",
    ),
    "Recency": (
        "Send re-engagement email with new features",
        "Schedule urgent account review",
    ),
    "Usage Consistency": (
        "Help establish regular usage workflows",
        "Identify and remove friction points",
    ),
}
URGENCY = {
    RiskLevel.critical: "URGENT: Immediate executive outreach required",
    RiskLevel.high: "Priority: Schedule renewal discussion soon",
}
MAX_RECOMMENDATIONS = 5


# ---------- pure scoring helpers (UNIT-TESTED) ----------

def _at_least(value: float, tiers: Sequence[Tuple[float, int]], default: int = 0) -> int:
    for minimum, score in tiers:
        if value >= minimum:
            return score
    return default


def _at_most(value: float, tiers: Sequence[Tuple[float, int]], default: int) -> int:
    for maximum, score in tiers:
        if value <= maximum:
            return score
    return default


def score_usage_frequency(event_count: int) -> int:
    """100+ events in 90 days is excellent usage."""
    return _at_least(event_count, FREQUENCY_TIERS)


def score_feature_adoption(features_used: int) -> int:
    """10+ distinct features is excellent adoption."""
    return _at_least(features_used, ADOPTION_TIERS)


def score_usage_trend(trends: Sequence[UsageTrend]) -> int:
    """
    Score the last 4 weekly buckets. No weekly data at all scores 0.

    Rules are evaluated in order, first match wins.
    """
    if not trends:
        return 0
    recent = [t.trend for t in trends[-4:]]
    up = recent.count(WeekTrend.increasing)
    down = recent.count(WeekTrend.decreasing)

    rules = (
        (up >= 3, 100),
        (up >= 2, 80),
        (down <= 1 and up >= 1, 60),
        (down >= 2, 30),
        (down >= 3, 10),
    )
    for matched, score in rules:
        if matched:
            return score
    return 50  # stable


def days_since_last_event(events: Sequence[UsageEvent], now: datetime) -> Optional[int]:
    if not events:
        return None
    latest = max(e.timestamp for e in events)
    return (now - latest) // DAY


def score_recency(days_since_last: Optional[int]) -> int:
    if days_since_last is None:
        return 0
    return _at_most(days_since_last, RECENCY_TIERS, default=10)


def score_consistency(trends: Sequence[UsageTrend]) -> int:
    """Lower week-to-week variation scores higher; 50 with under 2 weeks of data."""
    if len(trends) < 2:
        return 50
    counts = [t.event_count for t in trends]
    if sum(counts) == 0:
        return 0
    return _at_most(coefficient_of_variation(counts), CONSISTENCY_TIERS, default=20)


def impact_of(value: float) -> Impact:
    if value >= 70:
        return Impact.positive
    if value >= 40:
        return Impact.neutral
    return Impact.negative


def determine_risk_level(score: float) -> RiskLevel:
    for minimum, level in RISK_TIERS:
        if score >= minimum:
            return level
    return RiskLevel.critical


def generate_recommendations(factors: Sequence[ScoreFactor], risk_level: RiskLevel) -> List[str]:
    """Two fixed actions per negative factor, urgency first, capped at 5."""
    recommendations: List[str] = []
    for factor in factors:
        if factor.impact is Impact.negative:
            recommendations.extend(RECOMMENDATIONS.get(factor.name, ()))
    if risk_level in URGENCY:
        recommendations.insert(0, URGENCY[risk_level])
    return recommendations[:MAX_RECOMMENDATIONS]


def weighted_total(factors: Sequence[ScoreFactor]) -> int:
    return round_half_up(sum(f.value * f.weight for f in factors))


# ---------- descriptions ----------

def _trend_description(trends: Sequence[UsageTrend]) -> str:
    if not trends:
        return "No usage data available"
    return f"Recent usage is {trends[-1].trend.value}"


def _recency_description(days: Optional[int]) -> str:
    if days is None:
        return "No recent activity"
    if days == 0:
        return "Active today"
    if days == 1:
        return "Active yesterday"
    return f"Last active {days} days ago"


def _consistency_description(score: int) -> str:
    if score >= 80:
        return "Very consistent usage pattern"
    if score >= 60:
        return "Mostly consistent usage"
    if score >= 40:
        return "Somewhat irregular usage"
    return "Highly irregular usage pattern"


def _factor(name: str, value: int, description: str) -> ScoreFactor:
    return ScoreFactor(
        name=name,
        value=value,
        weight=WEIGHTS[name],
        impact=impact_of(value),
        description=description,
    )


# ---------- store-backed score (INTEGRATION-TESTED) ----------

def build_renewal_score(
    company_id: str,
    events: Sequence[UsageEvent],
    now: datetime,
) -> RenewalHealthScore:
    """Compute the renewal score from an already-fetched 90-day event window."""
    trends = calculate_usage_trends(events)
    features = calculate_feature_adoption(events)
    days_since = days_since_last_event(events, now)

    consistency = score_consistency(trends)
    factors = [
        _factor("Usage Frequency", score_usage_frequency(len(events)),
                f"{len(events)} events in the last 90 days"),
        _factor("Feature Adoption", score_feature_adoption(len(features)),
                f"{len(features)} features adopted"),
        _factor("Usage Trend", score_usage_trend(trends), _trend_description(trends)),
        _factor("Recency", score_recency(days_since), _recency_description(days_since)),
        _factor("Usage Consistency", consistency, _consistency_description(consistency)),
    ]

    score = weighted_total(factors)
    risk_level = determine_risk_level(score)
    return RenewalHealthScore(
        company_id=company_id,
        score=score,
        risk_level=risk_level,
        factors=factors,
        recommendations=generate_recommendations(factors, risk_level),
        calculated_at=now,
    )


def calculate_renewal_health_score(
    store: EventStore,
    company_id: str,
    now: datetime | None = None,
) -> RenewalHealthScore:
    """Fetch the 90-day window and score it; windows are relative to `now` if given."""
    if now is None:
        now = store.clock()
    events = store.query(company_id, LOOKBACK_DAYS, now=now)
    result = build_renewal_score(company_id, events, now)
    logger.debug("Renewal score for %s: %s (%s)", company_id, result.score, result.risk_level.value)
    return result


def batch_calculate_scores(
    store: EventStore,
    company_ids: Sequence[str],
    now: datetime | None = None,
) -> List[RenewalHealthScore]:
    """Scores in input order."""
    return [calculate_renewal_health_score(store, cid, now) for cid in company_ids]
