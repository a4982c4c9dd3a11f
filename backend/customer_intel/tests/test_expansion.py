"""
Expansion prediction (`customer_intel.expansion`).

Scope
-----
- seat utilization (distinct userIds, anonymous floor, power users)
- the four vector scorers and confidence formula
- signal detection and strength ordering
- likelihood roll-up and horizon cascade
- engine-level scenarios: empty company, seat scenario, licensed seats
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_event
from customer_intel.expansion import (
    batch_calculate_expansion_predictions,
    calculate_expansion_prediction,
    calculate_likelihood_score,
    calculate_seat_utilization,
    detect_expansion_signals,
    determine_horizon,
    seat_growth_score,
    vector_confidence,
)
from customer_intel.schemas import (
    ExpansionHorizon,
    ExpansionSignal,
    ExpansionVector,
    SeatLicense,
    SeatUtilization,
    SignalStrength,
    UsageEvent,
)
from customer_intel.trends import build_ml_trend


def _ev(days_ago, user=None, event_type="login", feature=None) -> UsageEvent:
    return UsageEvent(
        event_id=f"{days_ago}-{user}-{event_type}",
        company_id="acme",
        event_type=event_type,
        feature_name=feature,
        timestamp=FIXED_NOW - timedelta(days=days_ago),
        metadata={"userId": user} if user else None,
    )


def _seats(current, licensed=10, power=0):
    return SeatUtilization(
        current_seats=current,
        licensed_seats=licensed,
        utilization_percent=min(100, round(current / licensed * 100)),
        power_users=power,
    )


def _signal(strength, kind="x"):
    return ExpansionSignal(type=kind, strength=strength, description="", detected_at=FIXED_NOW)


def test_seat_utilization_counts_distinct_recent_users():
    events = [_ev(d, f"u{u}") for u in range(8) for d in (1, 2)] + [_ev(45, "old-user")]
    seats = calculate_seat_utilization(events, 10, FIXED_NOW)
    assert seats.current_seats == 8
    assert seats.utilization_percent == 80
    assert seats.power_users == 0


def test_seat_utilization_anonymous_activity_counts_as_one_seat():
    seats = calculate_seat_utilization([_ev(1)], 10, FIXED_NOW)
    assert seats.current_seats == 1
    assert calculate_seat_utilization([], 10, FIXED_NOW).current_seats == 0


def test_seat_floor_applies_to_older_events_in_window():
    seats = calculate_seat_utilization([_ev(45, "old-user"), _ev(60)], 10, FIXED_NOW)
    assert seats.current_seats == 1
    assert seats.utilization_percent == 10
    assert seats.power_users == 0


def test_power_users_need_40_events():
    events = [_ev(d % 30, "heavy") for d in range(40)] + [_ev(d % 30, "light") for d in range(39)]
    assert calculate_seat_utilization(events, 10, FIXED_NOW).power_users == 1


def test_utilization_capped_at_100():
    events = [_ev(1, f"u{u}") for u in range(15)]
    assert calculate_seat_utilization(events, 10, FIXED_NOW).utilization_percent == 100


def test_seat_growth_score_tiers():
    assert seat_growth_score(_seats(0)) == 0
    assert seat_growth_score(_seats(5)) == 5
    assert seat_growth_score(_seats(6)) == 25
    assert seat_growth_score(_seats(9)) == 60        # 40 + near-capacity 20
    assert seat_growth_score(_seats(12, power=12)) == 100


def test_vector_confidence():
    assert vector_confidence(0.5, 0) == 0.5
    assert vector_confidence(0.5, 50) == 0.65
    assert vector_confidence(0.8, 100) == 1.0


def test_signals_sorted_strong_first():
    events = [_ev(1, event_type="premium_preview")]
    trend = build_ml_trend("acme", events, FIXED_NOW)
    signals = detect_expansion_signals(events, [], trend, _seats(10, power=5), FIXED_NOW)
    kinds = {s.type: s.strength for s in signals}
    assert kinds["high_seat_utilization"] is SignalStrength.strong
    assert kinds["multiple_power_users"] is SignalStrength.strong
    assert kinds["premium_feature_interest"] is SignalStrength.weak
    order = [s.strength for s in signals]
    assert order == sorted(order, key=[SignalStrength.strong, SignalStrength.moderate, SignalStrength.weak].index)


def test_api_heavy_usage_signal():
    events = [_ev(d % 20, feature="api") for d in range(11)]
    trend = build_ml_trend("acme", events, FIXED_NOW)
    signals = detect_expansion_signals(events, [], trend, _seats(1), FIXED_NOW)
    assert [(s.type, s.strength) for s in signals if s.type == "api_heavy_usage"] == [
        ("api_heavy_usage", SignalStrength.moderate)
    ]


def test_likelihood_bounded_and_signal_boost_capped():
    trend = build_ml_trend("acme", [], FIXED_NOW)
    score = calculate_likelihood_score([], [_signal(SignalStrength.strong)] * 10, trend)
    assert score == 20


@pytest.mark.parametrize("score,strong,util,expected", [
    (80, 2, 0, ExpansionHorizon.ready_now),
    (60, 0, 95, ExpansionHorizon.ready_now),
    (55, 1, 0, ExpansionHorizon.likely_soon),
    (45, 0, 80, ExpansionHorizon.likely_soon),
    (80, 0, 0, ExpansionHorizon.potential),
    (35, 0, 0, ExpansionHorizon.potential),
    (34, 0, 0, ExpansionHorizon.not_likely),
])
def test_horizon_cascade(score, strong, util, expected):
    seats = _seats(util, licensed=100)
    assert seats.utilization_percent == util
    assert determine_horizon(score, [_signal(SignalStrength.strong)] * strong, seats) is expected


def test_empty_company_is_not_likely(intel):
    result = calculate_expansion_prediction(intel.events, intel.seats, "ghost", now=FIXED_NOW)
    assert result.horizon is ExpansionHorizon.not_likely
    assert result.likelihood_score == 0
    assert result.seat_utilization.current_seats == 0
    assert result.seat_utilization.licensed_seats == 10
    assert result.expansion_signals == []
    assert len(result.vectors) == 4
    assert {v.type for v in result.vectors} == set(ExpansionVector)
    assert all(0 < v.confidence <= 1 for v in result.vectors)


def test_eight_users_on_ten_seats(intel):
    intel.record_events(make_event(user=f"user{u}", ts=FIXED_NOW - timedelta(days=d)) for u in range(8) for d in (1, 5))
    result = intel.expansion_prediction("acme")
    assert result.seat_utilization.current_seats == 8
    assert result.seat_utilization.utilization_percent == 80


def test_quiet_month_still_counts_one_seat(intel):
    intel.record_events(make_event(user=f"user{u}", ts=FIXED_NOW - timedelta(days=50)) for u in range(4))
    result = intel.expansion_prediction("acme")
    assert result.seat_utilization.current_seats == 1
    assert result.seat_utilization.utilization_percent == 10


def test_licensed_seats_from_seat_store(intel):
    intel.record_events(make_event(user=f"user{u}", ts=FIXED_NOW - timedelta(days=1)) for u in range(5))
    intel.set_seat_data("acme", SeatLicense(licensed_seats=5))
    result = intel.expansion_prediction("acme")
    assert result.seat_utilization.licensed_seats == 5
    assert result.seat_utilization.utilization_percent == 100
    seat_vector = next(v for v in result.vectors if v.type is ExpansionVector.seat_growth)
    assert seat_vector.score == 60  # 40 for utilization, 20 for near capacity
    assert any(s.type == "high_seat_utilization" and s.strength is SignalStrength.strong
               for s in result.expansion_signals)


def test_vectors_sorted_and_bounded(intel):
    intel.record_events(
        make_event(user=f"u{i % 6}", feature=f"f{i % 9}", ts=FIXED_NOW - timedelta(hours=7 * i))
        for i in range(250)
    )
    result = intel.expansion_prediction("acme")
    scores = [v.score for v in result.vectors]
    assert scores == sorted(scores, reverse=True)
    assert all(0 <= s <= 100 for s in scores)
    assert 0 <= result.likelihood_score <= 100
    assert len(result.recommendations) <= 5


def test_batch_order(intel):
    results = batch_calculate_expansion_predictions(intel.events, intel.seats, ["a", "b", "c"], now=FIXED_NOW)
    assert [r.company_id for r in results] == ["a", "b", "c"]
