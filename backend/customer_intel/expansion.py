"""
expansion.py
============
Expansion likelihood: four opportunity vectors, detected signals, a 0–100
likelihood score and a horizon.

Vectors
-------
- seat_growth      → utilization tiers, power-user ratio, near/over capacity
- add_ons          → feature breadth, add-on interest events, heavy features
- feature_upgrades → regression slope, behavioral class, breadth, intensive features
- usage_based      → volume, recent growth, acceleration, positive weeks

Each vector gets a confidence of `base + score/100 * 0.3` (capped at 1.0),
where `base` depends on a vector-specific strong/weak split.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .aggregation import calculate_feature_adoption, clamp, mean, round_half_up
from .schemas import (
    BehavioralTrend,
    ExpansionHorizon,
    ExpansionPrediction,
    ExpansionSignal,
    ExpansionVector,
    ExpansionVectorDetail,
    FeatureAdoption,
    MLUsageTrend,
    SeatLicense,
    SeatUtilization,
    SignalStrength,
    UsageEvent,
)
from .store import EventStore, SeatStore
from .trends import build_ml_trend

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 90
SEAT_WINDOW_DAYS = 30
DEFAULT_LICENSED_SEATS = 10

UTILIZATION_HIGH = 80
UTILIZATION_MEDIUM = 60
FEATURES_HIGH = 8
FEATURES_MEDIUM = 5
POWER_USER_EVENTS_PER_WEEK = 10
USAGE_GROWTH_THRESHOLD = 20

ADD_ON_KEYWORDS = ("premium", "upgrade", "explore", "trial")
PREMIUM_EVENT_KEYWORDS = ("premium", "upgrade")
PREMIUM_FEATURE_KEYWORDS = ("premium", "advanced")

DECLINES = (BehavioralTrend.soft_decline, BehavioralTrend.sharp_decline)
STRENGTH_ORDER = {SignalStrength.strong: 0, SignalStrength.moderate: 1, SignalStrength.weak: 2}
MAX_RECOMMENDATIONS = 5


# ---------- seat utilization ----------

def calculate_seat_utilization(
    events: Sequence[UsageEvent],
    licensed_seats: int,
    now: datetime,
) -> SeatUtilization:
    """Distinct metadata.userId values over the last 30 days against licensed seats.

    Any event in `events` keeps the seat count at 1 or more, even when none
    of them falls inside the 30-day window.
    """
    cutoff = now - timedelta(days=SEAT_WINDOW_DAYS)
    activity = Counter(e.user_id for e in events if e.timestamp >= cutoff and e.user_id)

    current = len(activity) or (1 if events else 0)
    threshold = POWER_USER_EVENTS_PER_WEEK * 4

    return SeatUtilization(
        current_seats=current,
        licensed_seats=licensed_seats,
        utilization_percent=min(100, round_half_up(current / licensed_seats * 100)),
        power_users=sum(1 for count in activity.values() if count >= threshold),
    )


# ---------- vectors ----------

def _contains_any(text: Optional[str], keywords: Sequence[str]) -> bool:
    return bool(text) and any(k in text for k in keywords)


def seat_growth_score(seats: SeatUtilization) -> int:
    score = 0.0
    if seats.utilization_percent >= UTILIZATION_HIGH:
        score += 40
    elif seats.utilization_percent >= UTILIZATION_MEDIUM:
        score += 25
    else:
        score += max(0, seats.utilization_percent / 10)

    ratio = seats.power_users / seats.current_seats if seats.current_seats > 0 else 0
    score += ratio * 30

    if seats.current_seats >= seats.licensed_seats * 0.9:
        score += 20
    if seats.current_seats > seats.licensed_seats:
        score += 10
    return min(100, round_half_up(score))


def add_on_score(features: Sequence[FeatureAdoption], events: Sequence[UsageEvent]) -> int:
    score = 0.0
    if len(features) >= FEATURES_HIGH:
        score += 35
    elif len(features) >= FEATURES_MEDIUM:
        score += 20

    interest = sum(1 for e in events if _contains_any(e.event_type, ADD_ON_KEYWORDS))
    score += min(30, interest * 5)

    heavy = sum(1 for f in features if f.usage_count > 20)
    score += min(35, heavy * 7)
    return min(100, round_half_up(score))


def feature_upgrade_score(features: Sequence[FeatureAdoption], trend: MLUsageTrend) -> int:
    score = 0.0
    if trend.trend_direction > 1:
        score += 30
    elif trend.trend_direction > 0:
        score += 15

    score += {
        BehavioralTrend.accelerating_usage: 25,
        BehavioralTrend.healthy_growth: 20,
        BehavioralTrend.stabilizing: 10,
    }.get(trend.classification, 0)

    if len(features) >= FEATURES_HIGH:
        score += 20
    elif len(features) >= FEATURES_MEDIUM:
        score += 10

    intensive = sum(1 for f in features if f.usage_count > 30)
    score += min(25, intensive * 5)
    return min(100, round_half_up(score))


def usage_based_score(events: Sequence[UsageEvent], trend: MLUsageTrend) -> int:
    score = 0.0
    volume = len(events)
    if volume >= 200:
        score += 30
    elif volume >= 100:
        score += 20
    elif volume >= 50:
        score += 10

    recent = trend.weekly_deltas[-4:]
    growth = mean(recent)
    if growth > USAGE_GROWTH_THRESHOLD:
        score += 40
    elif growth > 10:
        score += 25
    elif growth > 0:
        score += 10

    # acceleration: latest two weeks grew faster than the two before
    if len(recent) >= 2 and mean(recent[-2:]) > mean(recent[:2]) + 5:
        score += 20

    score += sum(1 for d in recent if d > 0) * 5
    return min(100, round_half_up(score))


def vector_confidence(base: float, score: int) -> float:
    return min(1.0, round_half_up((base + score / 100 * 0.3) * 100) / 100)


# ---------- reasoning ----------

def _seat_reasoning(seats: SeatUtilization) -> str:
    if seats.utilization_percent >= 90:
        return f"Near capacity ({seats.utilization_percent}% utilization) with {seats.power_users} power users"
    if seats.utilization_percent >= 70:
        return f"Strong utilization ({seats.utilization_percent}%) suggests team growth"
    return (f"Current utilization at {seats.utilization_percent}% "
            f"({seats.current_seats}/{seats.licensed_seats} seats)")


def _add_on_reasoning(features: Sequence[FeatureAdoption]) -> str:
    if len(features) >= 8:
        return f"Heavy feature adoption ({len(features)} features) indicates add-on readiness"
    if len(features) >= 5:
        return f"Good feature breadth ({len(features)} features) - potential for add-ons"
    return f"Using {len(features)} features - build adoption before add-on discussion"


def _upgrade_reasoning(features: Sequence[FeatureAdoption], trend: MLUsageTrend) -> str:
    if trend.classification is BehavioralTrend.accelerating_usage:
        return "Rapidly growing usage suggests readiness for advanced features"
    if trend.classification is BehavioralTrend.healthy_growth:
        return "Consistent growth pattern indicates upgrade potential"
    intensive = sum(1 for f in features if f.usage_count > 30)
    if intensive:
        return f"Intensive use of {intensive} features suggests tier upgrade"
    return "Monitor usage growth for upgrade timing"


def _usage_reasoning(events: Sequence[UsageEvent], trend: MLUsageTrend) -> str:
    if len(events) >= 200 and trend.trend_direction > 0:
        return "High volume with positive trend - strong usage-based expansion candidate"
    if len(events) >= 100:
        return f"Significant usage volume ({len(events)} events) with growth potential"
    return f"Current usage at {len(events)} events - monitor for growth"


def calculate_expansion_vectors(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> List[ExpansionVectorDetail]:
    """All four vectors, highest score first."""
    seat = seat_growth_score(seats)
    add_on = add_on_score(features, events)
    upgrade = feature_upgrade_score(features, trend)
    usage = usage_based_score(events, trend)

    vectors = [
        ExpansionVectorDetail(
            type=ExpansionVector.seat_growth,
            score=seat,
            confidence=vector_confidence(0.8 if seats.utilization_percent > 70 else 0.5, seat),
            reasoning=_seat_reasoning(seats),
        ),
        ExpansionVectorDetail(
            type=ExpansionVector.add_ons,
            score=add_on,
            confidence=vector_confidence(0.7 if len(features) > 5 else 0.4, add_on),
            reasoning=_add_on_reasoning(features),
        ),
        ExpansionVectorDetail(
            type=ExpansionVector.feature_upgrades,
            score=upgrade,
            confidence=vector_confidence(0.75 if trend.trend_direction > 0 else 0.45, upgrade),
            reasoning=_upgrade_reasoning(features, trend),
        ),
        ExpansionVectorDetail(
            type=ExpansionVector.usage_based,
            score=usage,
            confidence=vector_confidence(0.8 if len(events) > 50 else 0.5, usage),
            reasoning=_usage_reasoning(events, trend),
        ),
    ]
    vectors.sort(key=lambda v: v.score, reverse=True)
    return vectors


# ---------- signals ----------

SignalRule = Callable[
    [Sequence[UsageEvent], Sequence[FeatureAdoption], MLUsageTrend, SeatUtilization],
    Optional[Tuple[str, SignalStrength, str]],
]


def _high_seat_utilization(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    pct = seats.utilization_percent
    if pct < 85:
        return None
    strength = SignalStrength.strong if pct >= 95 else SignalStrength.moderate
    return "high_seat_utilization", strength, f"Seat utilization at {pct}% - team growth likely"


def _usage_spike(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    delta = trend.weekly_deltas[-1] if trend.weekly_deltas else 0
    if delta <= 30:
        return None
    strength = SignalStrength.strong if delta > 50 else SignalStrength.moderate
    return "usage_spike", strength, f"{round_half_up(delta)}% usage increase this week"


def _feature_adoption_milestone(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    if len(features) < 8:
        return None
    strength = SignalStrength.strong if len(features) >= 12 else SignalStrength.moderate
    return "feature_adoption_milestone", strength, f"Using {len(features)} features - power user territory"


def _growth_classification(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    if trend.classification is BehavioralTrend.accelerating_usage:
        return "accelerating_usage", SignalStrength.strong, "Usage growth is accelerating"
    if trend.classification is BehavioralTrend.healthy_growth:
        return "healthy_growth", SignalStrength.moderate, "Consistent healthy usage growth"
    return None


def _multiple_power_users(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    if seats.power_users < 3:
        return None
    strength = SignalStrength.strong if seats.power_users >= 5 else SignalStrength.moderate
    return "multiple_power_users", strength, f"{seats.power_users} power users identified"


def _premium_interest(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    count = sum(
        1 for e in events
        if _contains_any(e.event_type, PREMIUM_EVENT_KEYWORDS)
        or _contains_any(e.feature_name, PREMIUM_FEATURE_KEYWORDS)
    )
    if count == 0:
        return None
    if count >= 5:
        strength = SignalStrength.strong
    elif count >= 2:
        strength = SignalStrength.moderate
    else:
        strength = SignalStrength.weak
    return "premium_feature_interest", strength, f"{count} interactions with premium features"


def _api_heavy_usage(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
) -> Optional[Tuple[str, SignalStrength, str]]:
    count = sum(
        1 for e in events
        if _contains_any(e.event_type, ("api",)) or _contains_any(e.feature_name, ("api",))
    )
    if count <= 10:
        return None
    strength = SignalStrength.strong if count >= 50 else SignalStrength.moderate
    return "api_heavy_usage", strength, "Heavy API usage suggests integration/automation needs"


SIGNAL_RULES: Sequence[SignalRule] = (
    _high_seat_utilization,
    _usage_spike,
    _feature_adoption_milestone,
    _growth_classification,
    _multiple_power_users,
    _premium_interest,
    _api_heavy_usage,
)


def detect_expansion_signals(
    events: Sequence[UsageEvent],
    features: Sequence[FeatureAdoption],
    trend: MLUsageTrend,
    seats: SeatUtilization,
    now: datetime,
) -> List[ExpansionSignal]:
    """Every matching rule contributes one signal; strongest first."""
    signals: List[ExpansionSignal] = []
    for rule in SIGNAL_RULES:
        hit = rule(events, features, trend, seats)
        if hit:
            kind, strength, description = hit
            signals.append(ExpansionSignal(type=kind, strength=strength, description=description, detected_at=now))
    signals.sort(key=lambda s: STRENGTH_ORDER[s.strength])
    return signals


# ---------- likelihood & horizon ----------

def _count(signals: Sequence[ExpansionSignal], strength: SignalStrength) -> int:
    return sum(1 for s in signals if s.strength is strength)


def calculate_likelihood_score(
    vectors: Sequence[ExpansionVectorDetail],
    signals: Sequence[ExpansionSignal],
    trend: MLUsageTrend,
) -> int:
    weighted = 0.0
    total_weight = 0.0
    for rank, vector in enumerate(vectors[:3]):
        weight = 1 / (rank + 1)
        weighted += vector.score * vector.confidence * weight
        total_weight += weight
    base = weighted / total_weight if total_weight > 0 else 0.0

    boost = min(20, _count(signals, SignalStrength.strong) * 8 + _count(signals, SignalStrength.moderate) * 3)

    if trend.classification is BehavioralTrend.accelerating_usage:
        adjustment = 10
    elif trend.classification is BehavioralTrend.healthy_growth:
        adjustment = 5
    elif trend.classification in DECLINES:
        adjustment = -15
    else:
        adjustment = 0

    return round_half_up(clamp(base + boost + adjustment))


def determine_horizon(score: int, signals: Sequence[ExpansionSignal], seats: SeatUtilization) -> ExpansionHorizon:
    strong = _count(signals, SignalStrength.strong)
    pct = seats.utilization_percent
    rules = (
        (score >= 75 and strong >= 2, ExpansionHorizon.ready_now),
        (pct >= 95 and score >= 60, ExpansionHorizon.ready_now),
        (score >= 55 and strong >= 1, ExpansionHorizon.likely_soon),
        (pct >= 80 and score >= 45, ExpansionHorizon.likely_soon),
        (score >= 35, ExpansionHorizon.potential),
    )
    for matched, horizon in rules:
        if matched:
            return horizon
    return ExpansionHorizon.not_likely


VECTOR_RECOMMENDATIONS: Dict[ExpansionVector, Tuple[str, ...]] = {
    ExpansionVector.seat_growth: ("Discuss team growth and additional user licensing",),
    ExpansionVector.add_ons: (
        "Demo relevant add-on features based on usage patterns",
        "Provide trial access to premium add-ons",
    ),
    ExpansionVector.feature_upgrades: (
        "Highlight advanced features that match their use case",
        "Offer upgrade to next tier with feature preview",
    ),
    ExpansionVector.usage_based: (
        "Review usage patterns and recommend appropriate tier",
        "Discuss predictable billing options for heavy usage",
    ),
}


def generate_recommendations(
    vectors: Sequence[ExpansionVectorDetail],
    signals: Sequence[ExpansionSignal],
    seats: SeatUtilization,
    horizon: ExpansionHorizon,
) -> List[str]:
    recs: List[str] = []
    if horizon is ExpansionHorizon.ready_now:
        recs.append("Schedule expansion conversation with decision maker")
        recs.append("Prepare ROI analysis based on current usage patterns")
    elif horizon is ExpansionHorizon.likely_soon:
        recs.append("Begin nurturing conversations about growth plans")
        recs.append("Share customer success stories about expansion benefits")

    top = vectors[0] if vectors else None
    if top and top.score >= 50:
        recs.extend(VECTOR_RECOMMENDATIONS[top.type])
        if top.type is ExpansionVector.seat_growth and seats.utilization_percent >= 90:
            recs.append("Offer volume discount for seat bundle")

    strong = {s.type for s in signals if s.strength is SignalStrength.strong}
    if "multiple_power_users" in strong:
        recs.append("Identify power users for champion program")
    if "api_heavy_usage" in strong:
        recs.append("Discuss enterprise API tier or dedicated support")

    return recs[:MAX_RECOMMENDATIONS]


# ---------- store-backed prediction ----------

def build_expansion_prediction(
    company_id: str,
    events: Sequence[UsageEvent],
    trend: MLUsageTrend,
    seat_license: Optional[SeatLicense],
    now: datetime,
    default_seats: int = DEFAULT_LICENSED_SEATS,
) -> ExpansionPrediction:
    licensed = seat_license.licensed_seats if seat_license else default_seats
    features = calculate_feature_adoption(events)
    seats = calculate_seat_utilization(events, licensed, now)
    vectors = calculate_expansion_vectors(events, features, trend, seats)
    signals = detect_expansion_signals(events, features, trend, seats, now)
    score = calculate_likelihood_score(vectors, signals, trend)
    horizon = determine_horizon(score, signals, seats)

    return ExpansionPrediction(
        company_id=company_id,
        likelihood_score=score,
        horizon=horizon,
        vectors=vectors,
        seat_utilization=seats,
        expansion_signals=signals,
        recommendations=generate_recommendations(vectors, signals, seats, horizon),
        calculated_at=now,
    )


def calculate_expansion_prediction(
    store: EventStore,
    seats: SeatStore,
    company_id: str,
    now: datetime | None = None,
    default_seats: int = DEFAULT_LICENSED_SEATS,
) -> ExpansionPrediction:
    if now is None:
        now = store.clock()
    events = store.query(company_id, LOOKBACK_DAYS, now=now)
    trend = build_ml_trend(company_id, events, now)
    result = build_expansion_prediction(company_id, events, trend, seats.get(company_id), now, default_seats)
    logger.debug("Expansion prediction for %s: %s (%s)", company_id, result.likelihood_score, result.horizon.value)
    return result


def batch_calculate_expansion_predictions(
    store: EventStore,
    seats: SeatStore,
    company_ids: Sequence[str],
    now: datetime | None = None,
    default_seats: int = DEFAULT_LICENSED_SEATS,
) -> List[ExpansionPrediction]:
    return [calculate_expansion_prediction(store, seats, cid, now, default_seats) for cid in company_ids]
