"""
sql_store.py
============
SQLAlchemy-backed repositories with the same contracts as `store.py`.

Each call opens its own short-lived session from the injected factory, so
writes commit atomically and reads see a consistent snapshot per call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from .models import OnboardingStartRecord, SeatLicenseRecord, UsageEventRecord
from .schemas import SeatLicense, UsageEvent
from .store import Clock, EventStore, IdGenerator, KeyValueStore, as_utc, new_event_id, utcnow

logger = logging.getLogger(__name__)


def _naive_utc(ts: datetime) -> datetime:
    return as_utc(ts).replace(tzinfo=None)


def _to_event(row: UsageEventRecord) -> UsageEvent:
    return UsageEvent(
        event_id=row.event_id,
        company_id=row.company_id,
        external_company_id=row.external_company_id,
        event_type=row.event_type,
        feature_name=row.feature_name,
        timestamp=row.timestamp.replace(tzinfo=timezone.utc),
        metadata=row.meta,
    )


class SqlEventStore(EventStore):
    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = utcnow,
        id_generator: IdGenerator = new_event_id,
    ):
        super().__init__(clock, id_generator)
        self._session_factory = session_factory

    def _append(self, items: List[tuple[str, UsageEvent]]) -> None:
        with self._session_factory() as db:
            for key, event in items:
                db.add(UsageEventRecord(
                    event_id=event.event_id,
                    company_key=key,
                    company_id=event.company_id,
                    external_company_id=event.external_company_id,
                    event_type=event.event_type,
                    feature_name=event.feature_name,
                    timestamp=_naive_utc(event.timestamp),
                    meta=event.metadata,
                ))
            db.commit()

    def _since(self, company_id: str, cutoff: datetime) -> List[UsageEvent]:
        with self._session_factory() as db:
            rows = db.execute(
                select(UsageEventRecord)
                .where(UsageEventRecord.company_key == company_id)
                .where(UsageEventRecord.timestamp >= _naive_utc(cutoff))
                .order_by(UsageEventRecord.timestamp)
            ).scalars().all()
            return [_to_event(r) for r in rows]

    def list_company_ids(self) -> List[str]:
        with self._session_factory() as db:
            return list(db.execute(select(UsageEventRecord.company_key).distinct()).scalars().all())

    def delete(self, company_id: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(UsageEventRecord).where(UsageEventRecord.company_key == company_id))
            db.commit()
        logger.info("Deleted usage events for %s", company_id)


class SqlSeatStore(KeyValueStore[SeatLicense]):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, company_id: str) -> Optional[SeatLicense]:
        with self._session_factory() as db:
            row = db.get(SeatLicenseRecord, company_id)
            if row is None:
                return None
            return SeatLicense(licensed_seats=row.licensed_seats, metadata=row.meta)

    def put(self, company_id: str, value: SeatLicense) -> None:
        with self._session_factory() as db:
            db.merge(SeatLicenseRecord(
                company_id=company_id,
                licensed_seats=value.licensed_seats,
                meta=value.metadata,
            ))
            db.commit()

    def list_keys(self) -> List[str]:
        with self._session_factory() as db:
            return list(db.execute(select(SeatLicenseRecord.company_id)).scalars().all())

    def delete(self, company_id: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(SeatLicenseRecord).where(SeatLicenseRecord.company_id == company_id))
            db.commit()


class SqlOnboardingStartStore(KeyValueStore[datetime]):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, company_id: str) -> Optional[datetime]:
        with self._session_factory() as db:
            row = db.get(OnboardingStartRecord, company_id)
            return row.start_date.replace(tzinfo=timezone.utc) if row else None

    def put(self, company_id: str, value: datetime) -> None:
        with self._session_factory() as db:
            db.merge(OnboardingStartRecord(company_id=company_id, start_date=_naive_utc(value)))
            db.commit()

    def list_keys(self) -> List[str]:
        with self._session_factory() as db:
            return list(db.execute(select(OnboardingStartRecord.company_id)).scalars().all())

    def delete(self, company_id: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(OnboardingStartRecord).where(OnboardingStartRecord.company_id == company_id))
            db.commit()
