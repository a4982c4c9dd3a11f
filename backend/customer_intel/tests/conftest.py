"""
Shared fixtures.

- FIXED_NOW / clock   → a settable clock so every window is deterministic
- intel               → CustomerIntelligence over in-memory repositories
- client              → TestClient with `get_intel` overridden to `intel`
- make_event()        → build an ingestion payload tersely
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from customer_intel.main import app
from customer_intel.schemas import UsageEventIn
from customer_intel.service import CustomerIntelligence, get_intel

# a Wednesday, so the current calendar week (Sunday start) is partial
FIXED_NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_event(company_id="acme", event_type="login", feature=None, ts=None, user=None, **kwargs):
    return UsageEventIn(
        company_id=company_id,
        event_type=event_type,
        feature_name=feature,
        timestamp=ts,
        metadata={"userId": user} if user else None,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def intel(clock):
    return CustomerIntelligence.in_memory(clock=clock)


@pytest.fixture
def client(intel):
    app.dependency_overrides[get_intel] = lambda: intel
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
