"""
store.py
========
Repository interfaces and their in-memory implementations.

- EventStore:     append-only usage events keyed by company; time-windowed reads
- KeyValueStore:  per-company side data (seat licenses, onboarding start dates)

Engines only read from these; writes are atomic per company key. The SQL
implementations live in `sql_store.py` and share the same contracts, so the
scoring logic never knows which backend it runs on.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar
from uuid import uuid4

from .schemas import SeatLicense, UsageEvent, UsageEventIn

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
IdGenerator = Callable[[], str]

V = TypeVar("V")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return str(uuid4())


def as_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class EventValidationError(ValueError):
    """Raised when an event cannot be attributed to any company."""


# -----------------------------------------------------------------------------
# Event store
# -----------------------------------------------------------------------------
class EventStore(ABC):
    """
    Base class for usage-event repositories.

    `store()` validates and materializes the event (id + default timestamp)
    before handing it to the backend-specific `_append()`.
    """

    def __init__(self, clock: Clock = utcnow, id_generator: IdGenerator = new_event_id):
        self.clock = clock
        self.id_generator = id_generator

    @staticmethod
    def company_key(payload: UsageEventIn) -> str:
        """
        The key an event is stored under: companyId, else externalCompanyId.

        The two namespaces are not reconciled; a company addressed by both
        ids ends up in two buckets.
        """
        key = payload.company_id or payload.external_company_id
        if not key:
            raise EventValidationError("Either companyId or externalCompanyId is required")
        return key

    def _materialize(self, payload: UsageEventIn) -> UsageEvent:
        return UsageEvent(
            event_id=self.id_generator(),
            company_id=payload.company_id or "",
            external_company_id=payload.external_company_id,
            event_type=payload.event_type,
            feature_name=payload.feature_name,
            timestamp=as_utc(payload.timestamp) if payload.timestamp else self.clock(),
            metadata=payload.metadata,
        )

    def store(self, payload: UsageEventIn) -> UsageEvent:
        key = self.company_key(payload)
        event = self._materialize(payload)
        self._append([(key, event)])
        logger.info("Stored %s event %s for %s", event.event_type, event.event_id, key)
        return event

    def store_many(self, payloads: Iterable[UsageEventIn]) -> List[UsageEvent]:
        """Validate every payload first; nothing is stored if any one is invalid."""
        payloads = list(payloads)
        keys = [self.company_key(p) for p in payloads]
        items = [(key, self._materialize(p)) for key, p in zip(keys, payloads)]
        self._append(items)
        logger.info("Stored batch of %d events", len(items))
        return [event for _, event in items]

    def query(self, company_id: str, lookback_days: int = 30, now: Optional[datetime] = None) -> List[UsageEvent]:
        """Events with `timestamp >= now - lookback_days`, in no particular order."""
        cutoff = (now or self.clock()) - timedelta(days=lookback_days)
        return self._since(company_id, cutoff)

    @abstractmethod
    def _append(self, items: List[tuple[str, UsageEvent]]) -> None: ...

    @abstractmethod
    def _since(self, company_id: str, cutoff: datetime) -> List[UsageEvent]: ...

    @abstractmethod
    def list_company_ids(self) -> List[str]: ...

    @abstractmethod
    def delete(self, company_id: str) -> None: ...


class InMemoryEventStore(EventStore):
    """Process-local store; per-key lists guarded by one lock."""

    def __init__(self, clock: Clock = utcnow, id_generator: IdGenerator = new_event_id):
        super().__init__(clock, id_generator)
        self._events: Dict[str, List[UsageEvent]] = {}
        self._lock = threading.Lock()

    def _append(self, items: List[tuple[str, UsageEvent]]) -> None:
        with self._lock:
            for key, event in items:
                self._events.setdefault(key, []).append(event)

    def _since(self, company_id: str, cutoff: datetime) -> List[UsageEvent]:
        with self._lock:
            events = list(self._events.get(company_id, ()))
        return [e for e in events if e.timestamp >= cutoff]

    def list_company_ids(self) -> List[str]:
        with self._lock:
            return list(self._events.keys())

    def delete(self, company_id: str) -> None:
        with self._lock:
            self._events.pop(company_id, None)


# -----------------------------------------------------------------------------
# Key/value side stores
# -----------------------------------------------------------------------------
class KeyValueStore(ABC, Generic[V]):
    """get / put / list_keys / delete, scoped by company id."""

    @abstractmethod
    def get(self, company_id: str) -> Optional[V]: ...

    @abstractmethod
    def put(self, company_id: str, value: V) -> None: ...

    @abstractmethod
    def list_keys(self) -> List[str]: ...

    @abstractmethod
    def delete(self, company_id: str) -> None: ...


class InMemoryKeyValueStore(KeyValueStore[V]):
    def __init__(self) -> None:
        self._data: Dict[str, V] = {}
        self._lock = threading.Lock()

    def get(self, company_id: str) -> Optional[V]:
        with self._lock:
            return self._data.get(company_id)

    def put(self, company_id: str, value: V) -> None:
        with self._lock:
            self._data[company_id] = value

    def list_keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def delete(self, company_id: str) -> None:
        with self._lock:
            self._data.pop(company_id, None)


SeatStore = KeyValueStore[SeatLicense]
OnboardingStartStore = KeyValueStore[datetime]
