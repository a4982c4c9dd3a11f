"""
onboarding.py
=============
Onboarding health: milestone-based activation tracking against a fixed
9-step template.

Pipeline
--------
1. Resolve the onboarding start (explicit > stored > earliest event > now).
2. Mark milestones complete from the first matching event (eventType or featureName).
3. Derive coverage, time to first value, forecast and status.
4. Roll them up into one 0–100 score plus recommendations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .aggregation import DAY, clamp, round_half_up
from .schemas import OnboardingHealthScore, OnboardingMilestone, OnboardingStatus, UsageEvent
from .store import EventStore, OnboardingStartStore, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MilestoneTemplate:
    name: str
    expected_by_day: int
    is_aha_moment: bool
    weight: float


MILESTONE_TEMPLATE: Sequence[MilestoneTemplate] = (
    MilestoneTemplate("first_login",            1,  False, 0.10),
    MilestoneTemplate("profile_setup",          3,  False, 0.10),
    MilestoneTemplate("first_feature_use",      3,  True,  0.15),
    MilestoneTemplate("data_import",            7,  False, 0.10),
    MilestoneTemplate("team_member_invited",    7,  False, 0.10),
    MilestoneTemplate("integration_connected",  14, True,  0.15),
    MilestoneTemplate("first_workflow_created", 14, True,  0.15),
    MilestoneTemplate("report_generated",       21, False, 0.10),
    MilestoneTemplate("advanced_feature_used",  30, True,  0.05),
)

# eventType / featureName -> milestone name
EVENT_TO_MILESTONE: Dict[str, str] = {
    "login": "first_login",
    "profile_update": "profile_setup",
    "feature_use": "first_feature_use",
    "data_import": "data_import",
    "team_invite": "team_member_invited",
    "integration_setup": "integration_connected",
    "workflow_create": "first_workflow_created",
    "report_generate": "report_generated",
    "advanced_feature": "advanced_feature_used",
}

ACTIVATION_DAYS = 30
INFERENCE_LOOKBACK_DAYS = 365
CRITICAL_WEIGHT = 0.15
BLOCKED_AFTER_DAYS = 7
EARLY_BONUS = 0.1

STATUS_SCORES: Dict[OnboardingStatus, int] = {
    OnboardingStatus.on_track: 100,
    OnboardingStatus.behind: 60,
    OnboardingStatus.blocked: 30,
    OnboardingStatus.at_risk: 20,
}

MAX_RECOMMENDATIONS = 5


# ---------- milestones ----------

def evaluate_milestones(events: Sequence[UsageEvent], start: datetime) -> List[OnboardingMilestone]:
    """Earliest matching event completes a milestone."""
    completions: Dict[str, datetime] = {}
    # chronological, not arrival order: a late-ingested older event still wins
    for event in sorted(events, key=lambda e: e.timestamp):
        for key in (event.event_type, event.feature_name):
            milestone = EVENT_TO_MILESTONE.get(key) if key else None
            if milestone and milestone not in completions:
                completions[milestone] = event.timestamp

    return [
        OnboardingMilestone(
            name=t.name,
            completed=t.name in completions,
            completed_at=completions.get(t.name),
            expected_by_day=t.expected_by_day,
            expected_date=start + t.expected_by_day * DAY,
            is_aha_moment=t.is_aha_moment,
            weight=t.weight,
        )
        for t in MILESTONE_TEMPLATE
    ]


def milestone_coverage(milestones: Sequence[OnboardingMilestone], days_since_start: int) -> int:
    """
    Weighted completion of milestones that are due (or already done).

    Completing before the expected date earns a 10%-of-weight bonus.
    """
    relevant = [m for m in milestones if m.expected_by_day <= days_since_start or m.completed]
    if not relevant:
        # nothing due yet: benefit of the doubt
        return 70 if any(m.completed for m in milestones) else 50

    total_weight = 0.0
    completed_weight = 0.0
    for m in relevant:
        total_weight += m.weight
        if m.completed:
            completed_weight += m.weight
            if m.completed_at is not None and m.completed_at < m.expected_date:
                completed_weight += m.weight * EARLY_BONUS

    if total_weight == 0:
        return 50
    return min(100, round_half_up(completed_weight / total_weight * 100))


def time_to_first_value(milestones: Sequence[OnboardingMilestone], start: datetime) -> Optional[int]:
    """Whole days from start to the earliest completed aha moment."""
    reached = [m.completed_at for m in milestones if m.is_aha_moment and m.completed_at is not None]
    if not reached:
        return None
    return (min(reached) - start) // DAY


def progress_percent(milestones: Sequence[OnboardingMilestone]) -> float:
    return sum(1 for m in milestones if m.completed) / len(milestones) * 100


def expected_progress_percent(days_since_start: int) -> float:
    return min(days_since_start / ACTIVATION_DAYS, 1.0) * 100


# ---------- forecast ----------

def pace_multiplier(base_progress: float, days_since_start: int) -> float:
    expected = expected_progress_percent(days_since_start)
    return base_progress / expected if expected > 0 else 1.0


def activity_trend(events: Sequence[UsageEvent], now: datetime) -> float:
    """Last-7-day event count over the count 8–14 days ago."""
    recent = 0
    older = 0
    for event in events:
        age_days = (now - event.timestamp) / DAY
        if age_days <= 7:
            recent += 1
        elif age_days <= 14:
            older += 1
    if older > 0:
        return recent / older
    return 1.5 if recent > 0 else 0.5


def onboarding_forecast(milestones: Sequence[OnboardingMilestone], days_since_start: int) -> int:
    """
    Projected progress at day 30.

    Before day 30 the remaining days extrapolate half the current pace. On
    day 0 there is no pace to extrapolate, so the forecast is current progress.
    """
    base = progress_percent(milestones)
    if days_since_start >= ACTIVATION_DAYS or days_since_start <= 0:
        forecast = base
    else:
        days_remaining = ACTIVATION_DAYS - days_since_start
        forecast = min(100.0, base + (days_remaining / days_since_start) * base * 0.5)
    return round_half_up(clamp(forecast))


# ---------- status & score ----------

def determine_status(
    coverage: int,
    days_since_start: int,
    milestones: Sequence[OnboardingMilestone],
    now: datetime,
) -> OnboardingStatus:
    blocked = any(
        not m.completed and (now - m.expected_date) / DAY > BLOCKED_AFTER_DAYS
        for m in milestones
        if m.weight >= CRITICAL_WEIGHT
    )
    if blocked:
        return OnboardingStatus.blocked

    expected = expected_progress_percent(days_since_start)
    actual = progress_percent(milestones)
    if actual >= expected * 0.8 or coverage >= 70:
        return OnboardingStatus.on_track
    if days_since_start > 14 and actual < expected * 0.5:
        return OnboardingStatus.at_risk
    return OnboardingStatus.behind


def ttfv_score(days: int) -> int:
    if days <= 3:
        return 100
    if days <= 7:
        return 80
    if days <= 14:
        return 60
    if days <= 21:
        return 40
    return 20


def overall_score(
    coverage: int,
    ttfv: Optional[int],
    aha_reached: int,
    aha_total: int,
    status: OnboardingStatus,
    days_since_start: int,
) -> int:
    score = coverage * 0.4

    if ttfv is not None:
        score += ttfv_score(ttfv) * 0.2
    elif days_since_start < 7:
        score += 50 * 0.2  # still early, partial credit

    aha_score = aha_reached / aha_total * 100 if aha_total > 0 else 50
    score += aha_score * 0.25
    score += STATUS_SCORES[status] * 0.15
    return round_half_up(clamp(score))


def generate_recommendations(
    milestones: Sequence[OnboardingMilestone],
    status: OnboardingStatus,
    days_since_start: int,
    now: datetime,
) -> List[str]:
    recs: List[str] = []

    if status is OnboardingStatus.blocked:
        recs.append("URGENT: Schedule a call to identify and remove blockers")
        recs.append("Review support tickets for common issues")
    elif status is OnboardingStatus.at_risk:
        recs.append("Immediate outreach required - customer may abandon onboarding")
        recs.append("Consider assigning dedicated onboarding specialist")
    elif status is OnboardingStatus.behind:
        recs.append("Send reminder emails about incomplete setup steps")

    incomplete = [m for m in milestones if not m.completed]
    next_aha = next((m for m in incomplete if m.is_aha_moment), None)
    if next_aha:
        recs.append(f'Focus on achieving "{next_aha.name}" - key activation milestone')

    overdue = next((m for m in incomplete if now > m.expected_date), None)
    if overdue:
        recs.append(f'Overdue: "{overdue.name}" should have been completed')

    if days_since_start < 7:
        recs.append("Schedule kickoff call if not already done")
        recs.append("Share quick start guide and video tutorials")
    elif days_since_start < 14:
        recs.append("Offer live training session")
        recs.append("Check in on initial experience and questions")
    elif days_since_start < 30:
        recs.append("Review feature adoption and suggest advanced use cases")

    return recs[:MAX_RECOMMENDATIONS]


# ---------- store-backed score ----------

def resolve_start_date(
    store: EventStore,
    starts: OnboardingStartStore,
    company_id: str,
    now: datetime,
    explicit: Optional[datetime] = None,
) -> datetime:
    """Explicit > stored > earliest event in the last year (persisted) > now."""
    if explicit is not None:
        return as_utc(explicit)
    stored = starts.get(company_id)
    if stored is not None:
        return stored

    history = store.query(company_id, INFERENCE_LOOKBACK_DAYS, now=now)
    if not history:
        return now
    inferred = min(e.timestamp for e in history)
    starts.put(company_id, inferred)
    logger.info("Inferred onboarding start for %s: %s", company_id, inferred.isoformat())
    return inferred


def calculate_onboarding_health_score(
    store: EventStore,
    starts: OnboardingStartStore,
    company_id: str,
    start_date: Optional[datetime] = None,
    now: datetime | None = None,
) -> OnboardingHealthScore:
    if now is None:
        now = store.clock()
    start = resolve_start_date(store, starts, company_id, now, start_date)
    days_since = (now - start) // DAY

    events = store.query(company_id, max(days_since, ACTIVATION_DAYS), now=now)
    milestones = evaluate_milestones(events, start)

    coverage = milestone_coverage(milestones, days_since)
    ttfv = time_to_first_value(milestones, start)
    aha_reached = sum(1 for m in milestones if m.is_aha_moment and m.completed)
    aha_total = sum(1 for m in milestones if m.is_aha_moment)
    status = determine_status(coverage, days_since, milestones, now)

    result = OnboardingHealthScore(
        company_id=company_id,
        score=overall_score(coverage, ttfv, aha_reached, aha_total, status, days_since),
        status=status,
        milestone_coverage_score=coverage,
        time_to_first_value=ttfv,
        aha_moments_reached=aha_reached,
        aha_moments_total=aha_total,
        onboarding_forecast_score=onboarding_forecast(milestones, days_since),
        pace_multiplier=pace_multiplier(progress_percent(milestones), days_since),
        activity_trend=activity_trend(events, now),
        milestones=milestones,
        days_since_onboarding=days_since,
        recommendations=generate_recommendations(milestones, status, days_since, now),
        calculated_at=now,
    )
    logger.debug("Onboarding score for %s: %s (%s)", company_id, result.score, status.value)
    return result


def batch_calculate_onboarding_scores(
    store: EventStore,
    starts: OnboardingStartStore,
    company_ids: Sequence[str],
    now: datetime | None = None,
) -> List[OnboardingHealthScore]:
    return [calculate_onboarding_health_score(store, starts, cid, now=now) for cid in company_ids]
