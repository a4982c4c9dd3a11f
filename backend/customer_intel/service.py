"""
service.py
==========
`CustomerIntelligence`: one object that owns the repositories and the clock
and exposes every engine as a method. Routers, the seeder and tests all go
through it.

Build one from settings with `build_intelligence()`; FastAPI handlers get the
process-wide instance via the `get_intel` dependency.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence

from .aggregation import calculate_feature_adoption, calculate_usage_trends
from .config import Settings, get_settings
from .expansion import (
    DEFAULT_LICENSED_SEATS,
    batch_calculate_expansion_predictions,
    build_expansion_prediction,
    calculate_expansion_prediction,
)
from .onboarding import batch_calculate_onboarding_scores, calculate_onboarding_health_score
from .schemas import (
    CustomerIntelligenceSuite,
    ExpansionPrediction,
    FeatureAdoption,
    MLUsageTrend,
    OnboardingHealthScore,
    RenewalHealthScore,
    SeatLicense,
    UsageEvent,
    UsageEventIn,
    UsageTrend,
)
from .scoring import LOOKBACK_DAYS, batch_calculate_scores, build_renewal_score, calculate_renewal_health_score
from .store import (
    Clock,
    EventStore,
    InMemoryEventStore,
    InMemoryKeyValueStore,
    OnboardingStartStore,
    SeatStore,
    as_utc,
    utcnow,
)
from .trends import batch_calculate_ml_trends, build_ml_trend, calculate_ml_usage_trend

logger = logging.getLogger(__name__)


class CustomerIntelligence:
    def __init__(
        self,
        events: EventStore,
        seats: SeatStore,
        starts: OnboardingStartStore,
        clock: Clock = utcnow,
        default_licensed_seats: int = DEFAULT_LICENSED_SEATS,
    ):
        self.events = events
        self.seats = seats
        self.starts = starts
        self.clock = clock
        self.default_licensed_seats = default_licensed_seats

    @classmethod
    def in_memory(cls, clock: Clock = utcnow, **kwargs) -> "CustomerIntelligence":
        return cls(InMemoryEventStore(clock=clock), InMemoryKeyValueStore(), InMemoryKeyValueStore(), clock, **kwargs)

    # ---------- writes ----------

    def record_event(self, payload: UsageEventIn) -> UsageEvent:
        return self.events.store(payload)

    def record_events(self, payloads: Iterable[UsageEventIn]) -> List[UsageEvent]:
        return self.events.store_many(payloads)

    def set_onboarding_start_date(self, company_id: str, start_date: datetime) -> None:
        self.starts.put(company_id, as_utc(start_date))
        logger.info("Onboarding start for %s set to %s", company_id, start_date.isoformat())

    def set_seat_data(self, company_id: str, seat_license: SeatLicense) -> None:
        self.seats.put(company_id, seat_license)
        logger.info("Licensed seats for %s set to %d", company_id, seat_license.licensed_seats)

    # ---------- reads ----------

    def list_company_ids(self) -> List[str]:
        return self.events.list_company_ids()

    def get_events(self, company_id: str, days: int = 30) -> List[UsageEvent]:
        """Most recent first."""
        events = self.events.query(company_id, days, now=self.clock())
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def usage_trends(self, company_id: str, days: int = LOOKBACK_DAYS) -> List[UsageTrend]:
        return calculate_usage_trends(self.events.query(company_id, days, now=self.clock()))

    def feature_adoption(self, company_id: str, days: int = LOOKBACK_DAYS) -> List[FeatureAdoption]:
        return calculate_feature_adoption(self.events.query(company_id, days, now=self.clock()))

    # ---------- engines ----------

    def renewal_health(self, company_id: str, now: Optional[datetime] = None) -> RenewalHealthScore:
        return calculate_renewal_health_score(self.events, company_id, now or self.clock())

    def ml_trend(self, company_id: str, now: Optional[datetime] = None) -> MLUsageTrend:
        return calculate_ml_usage_trend(self.events, company_id, now or self.clock())

    def onboarding_health(
        self,
        company_id: str,
        start_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> OnboardingHealthScore:
        return calculate_onboarding_health_score(
            self.events, self.starts, company_id, start_date=start_date, now=now or self.clock()
        )

    def expansion_prediction(self, company_id: str, now: Optional[datetime] = None) -> ExpansionPrediction:
        return calculate_expansion_prediction(
            self.events, self.seats, company_id, now or self.clock(), self.default_licensed_seats
        )

    def suite(self, company_id: str) -> CustomerIntelligenceSuite:
        """All four scores against one `now` and one 90-day event window."""
        now = self.clock()
        events = self.events.query(company_id, LOOKBACK_DAYS, now=now)
        trend = build_ml_trend(company_id, events, now)
        return CustomerIntelligenceSuite(
            company_id=company_id,
            renewal_health=build_renewal_score(company_id, events, now),
            ml_trend=trend,
            onboarding_health=self.onboarding_health(company_id, now=now),
            expansion_prediction=build_expansion_prediction(
                company_id, events, trend, self.seats.get(company_id), now, self.default_licensed_seats
            ),
            calculated_at=now,
        )

    # ---------- batches (input order preserved) ----------

    def batch_renewal_health(self, company_ids: Sequence[str]) -> List[RenewalHealthScore]:
        return batch_calculate_scores(self.events, company_ids, self.clock())

    def batch_ml_trends(self, company_ids: Sequence[str]) -> List[MLUsageTrend]:
        return batch_calculate_ml_trends(self.events, company_ids, self.clock())

    def batch_onboarding_health(self, company_ids: Sequence[str]) -> List[OnboardingHealthScore]:
        return batch_calculate_onboarding_scores(self.events, self.starts, company_ids, self.clock())

    def batch_expansion_predictions(self, company_ids: Sequence[str]) -> List[ExpansionPrediction]:
        return batch_calculate_expansion_predictions(
            self.events, self.seats, company_ids, self.clock(), self.default_licensed_seats
        )


def build_intelligence(settings: Settings) -> CustomerIntelligence:
    """Wire repositories for the configured backend."""
    if settings.storage_backend == "sql":
        from .db import make_engine, make_session_factory
        from .sql_store import SqlEventStore, SqlOnboardingStartStore, SqlSeatStore

        factory = make_session_factory(make_engine(settings.database_url, settings.echo_sql))
        logger.info("Using SQL repositories")
        return CustomerIntelligence(
            SqlEventStore(factory),
            SqlSeatStore(factory),
            SqlOnboardingStartStore(factory),
            default_licensed_seats=settings.default_licensed_seats,
        )

    logger.info("Using in-memory repositories")
    return CustomerIntelligence.in_memory(default_licensed_seats=settings.default_licensed_seats)


@lru_cache()
def get_intel() -> CustomerIntelligence:
    """FastAPI dependency; tests override it with their own instance."""
    return build_intelligence(get_settings())
