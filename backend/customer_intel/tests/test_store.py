"""
Repository contract tests, run against both the in-memory and the
SQLAlchemy (temporary SQLite file) implementations.

Scope
-----
- validation: companyId or externalCompanyId required; batches are all-or-nothing
- materialization: injected id generator and clock, naive timestamps as UTC
- windowed query, list_company_ids, delete
- key/value side stores (seat licenses, onboarding start dates)
- the same renewal score from either backend
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from conftest import FIXED_NOW, FixedClock, make_event
from customer_intel.db import make_engine, make_session_factory
from customer_intel.schemas import SeatLicense, UsageEventIn
from customer_intel.service import CustomerIntelligence
from customer_intel.sql_store import SqlEventStore, SqlOnboardingStartStore, SqlSeatStore
from customer_intel.store import (
    EventValidationError,
    InMemoryEventStore,
    InMemoryKeyValueStore,
)


def _ids():
    counter = count(1)
    return lambda: f"evt-{next(counter)}"


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'store.db'}", echo=False)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def backend(request, session_factory):
    """(event store, seat store, onboarding start store) for each implementation."""
    clock = FixedClock(FIXED_NOW)
    if request.param == "memory":
        return InMemoryEventStore(clock, _ids()), InMemoryKeyValueStore(), InMemoryKeyValueStore()
    return (
        SqlEventStore(session_factory, clock, _ids()),
        SqlSeatStore(session_factory),
        SqlOnboardingStartStore(session_factory),
    )


def test_store_requires_a_company_identifier(backend):
    events, _, _ = backend
    with pytest.raises(EventValidationError, match="companyId or externalCompanyId"):
        events.store(UsageEventIn(event_type="login"))
    assert events.list_company_ids() == []


def test_store_materializes_id_and_default_timestamp(backend):
    events, _, _ = backend
    stored = events.store(make_event(user="u1"))
    assert stored.event_id == "evt-1"
    assert stored.timestamp == FIXED_NOW
    assert stored.user_id == "u1"

    (fetched,) = events.query("acme", 1)
    assert fetched == stored
    assert fetched.timestamp.tzinfo is not None


def test_external_company_id_is_the_fallback_key(backend):
    events, _, _ = backend
    stored = events.store(UsageEventIn(external_company_id="crm-42", event_type="login"))
    assert stored.company_id == ""
    assert stored.external_company_id == "crm-42"
    assert events.list_company_ids() == ["crm-42"]
    assert len(events.query("crm-42")) == 1


def test_naive_timestamps_are_utc(backend):
    events, _, _ = backend
    stored = events.store(make_event(ts=datetime(2024, 6, 10, 8, 30)))
    assert stored.timestamp == datetime(2024, 6, 10, 8, 30, tzinfo=timezone.utc)


def test_query_window_is_inclusive_of_cutoff(backend):
    events, _, _ = backend
    events.store_many([
        make_event(ts=FIXED_NOW - timedelta(days=30)),
        make_event(ts=FIXED_NOW - timedelta(days=30, seconds=1)),
        make_event(ts=FIXED_NOW - timedelta(days=2)),
        make_event(company_id="other", ts=FIXED_NOW),
    ])
    assert len(events.query("acme")) == 2
    assert len(events.query("acme", 90)) == 3
    assert len(events.query("acme", 1)) == 0
    assert sorted(events.list_company_ids()) == ["acme", "other"]


def test_batch_is_all_or_nothing(backend):
    events, _, _ = backend
    with pytest.raises(EventValidationError):
        events.store_many([make_event(), UsageEventIn(event_type="login"), make_event()])
    assert events.query("acme") == []


def test_batch_returns_events_in_input_order(backend):
    events, _, _ = backend
    stored = events.store_many([make_event(event_type=t) for t in ("a", "b", "c")])
    assert [e.event_type for e in stored] == ["a", "b", "c"]
    assert [e.event_id for e in stored] == ["evt-1", "evt-2", "evt-3"]


def test_delete_removes_only_that_company(backend):
    events, _, _ = backend
    events.store_many([make_event(), make_event(company_id="other")])
    events.delete("acme")
    events.delete("never-seen")
    assert events.query("acme") == []
    assert events.list_company_ids() == ["other"]


def test_seat_store_put_get_overwrite_delete(backend):
    _, seats, _ = backend
    assert seats.get("acme") is None
    seats.put("acme", SeatLicense(licensed_seats=25, metadata={"plan": "growth"}))
    seats.put("acme", SeatLicense(licensed_seats=30))
    assert seats.get("acme") == SeatLicense(licensed_seats=30)
    assert seats.list_keys() == ["acme"]
    seats.delete("acme")
    assert seats.get("acme") is None


def test_onboarding_start_store_round_trips_utc(backend):
    _, _, starts = backend
    start = FIXED_NOW - timedelta(days=14)
    starts.put("acme", start)
    assert starts.get("acme") == start
    assert starts.list_keys() == ["acme"]
    starts.delete("acme")
    assert starts.get("acme") is None


def test_same_renewal_score_on_both_backends(session_factory):
    clock = FixedClock(FIXED_NOW)
    memory = CustomerIntelligence.in_memory(clock=clock)
    sql = CustomerIntelligence(
        SqlEventStore(session_factory, clock),
        SqlSeatStore(session_factory),
        SqlOnboardingStartStore(session_factory),
        clock,
    )
    payloads = [
        make_event(feature=f"f{i % 5}", user=f"u{i % 3}", ts=FIXED_NOW - timedelta(hours=13 * i))
        for i in range(60)
    ]
    memory.record_events(payloads)
    sql.record_events(payloads)

    assert memory.renewal_health("acme") == sql.renewal_health("acme")
    assert memory.ml_trend("acme") == sql.ml_trend("acme")
