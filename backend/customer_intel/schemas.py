"""
schemas.py
==========
Pydantic value types for usage events and every score object.

Python attributes are snake_case; JSON field names are camelCase (the stable
contract with CRM sync and dashboard consumers). All score objects are
computed fresh per call and carry a `calculated_at` timestamp.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class Impact(str, Enum):
    positive = "positive"
    neutral = "neutral"
    negative = "negative"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class WeekTrend(str, Enum):
    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"


class BehavioralTrend(str, Enum):
    accelerating_usage = "accelerating_usage"
    healthy_growth = "healthy_growth"
    stabilizing = "stabilizing"
    soft_decline = "soft_decline"
    sharp_decline = "sharp_decline"
    near_abandonment = "near_abandonment"


class Cohort(str, Enum):
    power_user = "power_user"
    active = "active"
    casual = "casual"
    at_risk = "at_risk"
    dormant = "dormant"


class OnboardingStatus(str, Enum):
    on_track = "on_track"
    behind = "behind"
    blocked = "blocked"
    at_risk = "at_risk"


class ExpansionHorizon(str, Enum):
    ready_now = "ready_now"        # <30 days
    likely_soon = "likely_soon"    # 30-60 days
    potential = "potential"        # 60-90 days
    not_likely = "not_likely"      # >90 days or unlikely


class ExpansionVector(str, Enum):
    seat_growth = "seat_growth"
    add_ons = "add_ons"
    feature_upgrades = "feature_upgrades"
    usage_based = "usage_based"


class SignalStrength(str, Enum):
    strong = "strong"
    moderate = "moderate"
    weak = "weak"


# -----------------------------------------------------------------------------
# Usage events
# -----------------------------------------------------------------------------
class UsageEventIn(CamelModel):
    """Ingestion payload. At least one company identifier is required (checked by the store)."""
    company_id: Optional[str] = None
    external_company_id: Optional[str] = None
    event_type: str = Field(min_length=1)
    feature_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class UsageEvent(CamelModel):
    """An immutable stored usage fact."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str
    company_id: str
    external_company_id: Optional[str] = None
    event_type: str
    feature_name: Optional[str] = None
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None

    @property
    def user_id(self) -> Optional[str]:
        if not self.metadata:
            return None
        user = self.metadata.get("userId")
        return str(user) if user else None


class BatchEventsIn(CamelModel):
    events: List[UsageEventIn] = Field(min_length=1)


class UsageTrend(CamelModel):
    """One calendar-week bucket (weeks start on Sunday, UTC)."""
    period: str
    event_count: int
    active_users: int
    features_used: int
    trend: WeekTrend


class FeatureAdoption(CamelModel):
    feature_name: str
    usage_count: int
    last_used: datetime
    adoption_rate: int


# -----------------------------------------------------------------------------
# Renewal health
# -----------------------------------------------------------------------------
class ScoreFactor(CamelModel):
    name: str
    value: float = Field(ge=0, le=100)
    weight: float = Field(ge=0, le=1)
    impact: Impact
    description: str


class RenewalHealthScore(CamelModel):
    company_id: str
    score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    factors: List[ScoreFactor]
    recommendations: List[str]
    calculated_at: datetime


# -----------------------------------------------------------------------------
# Behavioral (ML) trend
# -----------------------------------------------------------------------------
class FeatureTrendBreakdown(CamelModel):
    feature_name: str
    slope: float
    usage_count: int
    trend_direction: str  # up | down | stable


class CohortDrift(CamelModel):
    previous_cohort: Cohort
    current_cohort: Cohort
    drift_detected: bool


class MLUsageTrend(CamelModel):
    company_id: str
    trend_score: int = Field(ge=0, le=100)
    classification: BehavioralTrend
    volatility_index: float = Field(ge=0, le=1)
    trend_direction: float
    trend_strength: float
    usage_signature: str
    cohort_drift: CohortDrift
    weekly_deltas: List[float]
    moving_average: float
    feature_breakdown: List[FeatureTrendBreakdown]
    calculated_at: datetime


# -----------------------------------------------------------------------------
# Onboarding
# -----------------------------------------------------------------------------
class OnboardingMilestone(CamelModel):
    name: str
    completed: bool = False
    completed_at: Optional[datetime] = None
    expected_by_day: int
    expected_date: datetime
    is_aha_moment: bool
    weight: float


class OnboardingHealthScore(CamelModel):
    company_id: str
    score: int = Field(ge=0, le=100)
    status: OnboardingStatus
    milestone_coverage_score: int = Field(ge=0, le=100)
    time_to_first_value: Optional[int] = None
    aha_moments_reached: int
    aha_moments_total: int
    onboarding_forecast_score: int = Field(ge=0, le=100)
    pace_multiplier: float
    activity_trend: float
    milestones: List[OnboardingMilestone]
    days_since_onboarding: int
    recommendations: List[str]
    calculated_at: datetime


class OnboardingStartIn(CamelModel):
    start_date: datetime


# -----------------------------------------------------------------------------
# Expansion
# -----------------------------------------------------------------------------
class SeatLicense(CamelModel):
    licensed_seats: int = Field(ge=1)
    metadata: Optional[Dict[str, Any]] = None


class SeatUtilization(CamelModel):
    current_seats: int
    licensed_seats: int
    utilization_percent: int
    power_users: int


class ExpansionVectorDetail(CamelModel):
    type: ExpansionVector
    score: int = Field(ge=0, le=100)
    confidence: float = Field(gt=0, le=1)
    reasoning: str


class ExpansionSignal(CamelModel):
    type: str
    strength: SignalStrength
    description: str
    detected_at: datetime


class ExpansionPrediction(CamelModel):
    company_id: str
    likelihood_score: int = Field(ge=0, le=100)
    horizon: ExpansionHorizon
    vectors: List[ExpansionVectorDetail]
    seat_utilization: SeatUtilization
    expansion_signals: List[ExpansionSignal]
    recommendations: List[str]
    calculated_at: datetime


# -----------------------------------------------------------------------------
# Combined view
# -----------------------------------------------------------------------------
class CustomerIntelligenceSuite(CamelModel):
    company_id: str
    renewal_health: RenewalHealthScore
    ml_trend: MLUsageTrend
    onboarding_health: OnboardingHealthScore
    expansion_prediction: ExpansionPrediction
    calculated_at: datetime
