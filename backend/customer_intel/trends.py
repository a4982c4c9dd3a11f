"""
trends.py
=========
Behavioral trend analysis over a fixed 12-week histogram.

Deterministic statistics only (no trained model):
- OLS slope and R² of weekly counts against week index
- volatility index (coefficient of variation, capped at 1)
- week-over-week deltas and a 7-day vs 83-day activity ratio
- rule cascades for classification, usage signature and cohort tier

`classification` depends only on (slope, volatility, weekly counts), so the
same event set always yields the same result.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Sequence, Tuple

from .aggregation import (
    DAY,
    clamp,
    coefficient_of_variation,
    linear_regression,
    mean,
    round_half_up,
    weekly_histogram,
)
from .schemas import (
    BehavioralTrend,
    Cohort,
    CohortDrift,
    FeatureTrendBreakdown,
    MLUsageTrend,
    UsageEvent,
)
from .store import EventStore

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 90
WINDOW_WEEKS = 12
RECENT_WEEKS = 4
PREVIOUS_COHORT_WEEKS = 8
RECENT_DAYS = 7
BASELINE_DAYS = LOOKBACK_DAYS - RECENT_DAYS
FEATURE_SLOPE_THRESHOLD = 0.3
TOP_FEATURES = 10


class WeeklyStats:
    """Summary of one 12-week histogram shared by every rule below."""

    def __init__(self, weekly: Sequence[int], slope: float, volatility: float):
        self.weekly = list(weekly)
        self.slope = slope
        self.volatility = volatility
        self.mean = mean(self.weekly)
        self.recent_mean = mean(self.weekly[-RECENT_WEEKS:])


# ---------- pure statistics ----------

def volatility_index(weekly: Sequence[int]) -> float:
    if len(weekly) < 2:
        return 0.0
    return min(coefficient_of_variation(weekly), 1.0)


def trend_strength(weekly: Sequence[int], slope: float) -> float:
    """|slope| relative to the mean, as a 0..100 magnitude."""
    m = mean(weekly)
    if len(weekly) < 2 or m == 0:
        return 0.0
    return min(abs(slope) / m * 100, 100.0)


def weekly_deltas(weekly: Sequence[int]) -> List[float]:
    """Percent change week over week; 0→positive is +100, 0→0 is 0."""
    deltas: List[float] = []
    for previous, current in zip(weekly, weekly[1:]):
        if previous == 0:
            deltas.append(100.0 if current > 0 else 0.0)
        else:
            deltas.append((current - previous) / previous * 100)
    return deltas


def moving_average_ratio(events: Sequence[UsageEvent], now: datetime) -> float:
    """Last-7-day daily rate as a percentage of the daily rate over days 8–90."""
    recent = 0
    older = 0
    for event in events:
        age_days = (now - event.timestamp) / DAY
        if age_days <= RECENT_DAYS:
            recent += 1
        elif age_days <= LOOKBACK_DAYS:
            older += 1

    baseline_daily = older / BASELINE_DAYS
    recent_daily = recent / RECENT_DAYS
    if baseline_daily == 0:
        return 100.0 if recent_daily > 0 else 0.0
    return recent_daily / baseline_daily * 100


# ---------- rule cascades ----------

Predicate = Callable[[WeeklyStats], bool]

CLASSIFICATION_RULES: Sequence[Tuple[Predicate, BehavioralTrend]] = (
    (lambda s: s.recent_mean < 2 and s.mean < 5, BehavioralTrend.near_abandonment),
    (lambda s: s.slope < -2 and s.recent_mean < s.mean * 0.5, BehavioralTrend.sharp_decline),
    (lambda s: s.slope < -0.5 and s.recent_mean < s.mean * 0.8, BehavioralTrend.soft_decline),
    (lambda s: s.slope > 2 and s.recent_mean > s.mean * 1.3, BehavioralTrend.accelerating_usage),
    (lambda s: s.slope > 0.5 and s.volatility < 0.5, BehavioralTrend.healthy_growth),
)

SIGNATURE_RULES: Sequence[Tuple[Predicate, str]] = (
    (lambda s: s.mean >= 20 and s.volatility < 0.3 and s.slope >= 0, "cluster_power_stable"),
    (lambda s: s.mean >= 20 and s.volatility >= 0.3, "cluster_power_volatile"),
    (lambda s: s.mean >= 10 and s.slope > 0, "cluster_growing"),
    (lambda s: s.mean >= 10 and s.slope < 0, "cluster_declining"),
    (lambda s: s.mean >= 5 and s.volatility < 0.5, "cluster_casual_stable"),
    (lambda s: s.mean >= 5, "cluster_casual_volatile"),
    (lambda s: s.mean > 0, "cluster_minimal"),
)

# (minimum mean weekly events, cohort), highest first
COHORT_TIERS: Sequence[Tuple[float, Cohort]] = (
    (20, Cohort.power_user),
    (10, Cohort.active),
    (5, Cohort.casual),
    (1, Cohort.at_risk),
)
COHORT_RANK: Dict[Cohort, int] = {
    Cohort.power_user: 4,
    Cohort.active: 3,
    Cohort.casual: 2,
    Cohort.at_risk: 1,
    Cohort.dormant: 0,
}


def classify_behavioral_trend(slope: float, volatility: float, weekly: Sequence[int]) -> BehavioralTrend:
    stats = WeeklyStats(weekly, slope, volatility)
    for matches, label in CLASSIFICATION_RULES:
        if matches(stats):
            return label
    return BehavioralTrend.stabilizing


def usage_signature(weekly: Sequence[int], volatility: float, slope: float) -> str:
    stats = WeeklyStats(weekly, slope, volatility)
    for matches, label in SIGNATURE_RULES:
        if matches(stats):
            return label
    return "cluster_inactive"


def calculate_trend_score(slope: float, volatility: float, weekly: Sequence[int], r_squared: float) -> int:
    """
    Base 50, then:
      +/- up to 30 from the slope (x10)
      - 20 x volatility
      +/- up to 20 from recent-vs-overall mean
      + up to 10 from R²
    """
    m = mean(weekly)
    recent_mean = mean(weekly[-RECENT_WEEKS:])

    score = 50.0
    score += min(slope * 10, 30) if slope > 0 else max(slope * 10, -30)
    score -= volatility * 20
    if m > 0:
        ratio = recent_mean / m
        if ratio > 1:
            score += min((ratio - 1) * 20, 20)
        else:
            score -= min((1 - ratio) * 20, 20)
    score += r_squared * 10
    return round_half_up(clamp(score))


def determine_cohort(mean_weekly_events: float) -> Cohort:
    for minimum, cohort in COHORT_TIERS:
        if mean_weekly_events >= minimum:
            return cohort
    return Cohort.dormant


def detect_cohort_drift(weekly: Sequence[int]) -> CohortDrift:
    """
    Weeks 0–7 form the previous cohort, weeks 8–11 the current one.

    Drift means the customer dropped at least one tier.
    """
    previous = determine_cohort(mean(weekly[:PREVIOUS_COHORT_WEEKS]))
    current = determine_cohort(mean(weekly[-RECENT_WEEKS:]))
    return CohortDrift(
        previous_cohort=previous,
        current_cohort=current,
        drift_detected=COHORT_RANK[current] < COHORT_RANK[previous],
    )


def calculate_feature_trends(events: Sequence[UsageEvent], now: datetime) -> List[FeatureTrendBreakdown]:
    """Per-feature 12-week slope, top 10 features by usage."""
    timestamps: Dict[str, List[datetime]] = defaultdict(list)
    for event in events:
        if event.feature_name:
            timestamps[event.feature_name].append(event.timestamp)

    breakdown: List[FeatureTrendBreakdown] = []
    for name, stamps in timestamps.items():
        slope, _ = linear_regression(weekly_histogram(stamps, now, WINDOW_WEEKS))
        if slope > FEATURE_SLOPE_THRESHOLD:
            direction = "up"
        elif slope < -FEATURE_SLOPE_THRESHOLD:
            direction = "down"
        else:
            direction = "stable"
        breakdown.append(FeatureTrendBreakdown(
            feature_name=name,
            slope=slope,
            usage_count=len(stamps),
            trend_direction=direction,
        ))

    breakdown.sort(key=lambda f: (-f.usage_count, f.feature_name))
    return breakdown[:TOP_FEATURES]


# ---------- store-backed analysis ----------

def build_ml_trend(company_id: str, events: Sequence[UsageEvent], now: datetime) -> MLUsageTrend:
    weekly = weekly_histogram((e.timestamp for e in events), now, WINDOW_WEEKS)
    slope, r_squared = linear_regression(weekly)
    volatility = volatility_index(weekly)

    return MLUsageTrend(
        company_id=company_id,
        trend_score=calculate_trend_score(slope, volatility, weekly, r_squared),
        classification=classify_behavioral_trend(slope, volatility, weekly),
        volatility_index=volatility,
        trend_direction=slope,
        trend_strength=trend_strength(weekly, slope),
        usage_signature=usage_signature(weekly, volatility, slope),
        cohort_drift=detect_cohort_drift(weekly),
        weekly_deltas=weekly_deltas(weekly),
        moving_average=moving_average_ratio(events, now),
        feature_breakdown=calculate_feature_trends(events, now),
        calculated_at=now,
    )


def calculate_ml_usage_trend(
    store: EventStore,
    company_id: str,
    now: datetime | None = None,
) -> MLUsageTrend:
    if now is None:
        now = store.clock()
    events = store.query(company_id, LOOKBACK_DAYS, now=now)
    result = build_ml_trend(company_id, events, now)
    logger.debug("Behavioral trend for %s: %s", company_id, result.classification.value)
    return result


def batch_calculate_ml_trends(
    store: EventStore,
    company_ids: Sequence[str],
    now: datetime | None = None,
) -> List[MLUsageTrend]:
    return [calculate_ml_usage_trend(store, cid, now) for cid in company_ids]
