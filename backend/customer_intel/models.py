"""
models.py
=========
ORM models for the SQL-backed repositories.

- UsageEventRecord:  append-only usage facts, keyed by the company key used at ingestion
- SeatLicenseRecord: licensed seat count per company (externally supplied)
- OnboardingStartRecord: onboarding start date per company (explicit or inferred)
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from .db import Base


# -----------------------------------------------------------------------------
# Usage events
# -----------------------------------------------------------------------------
class UsageEventRecord(Base):
    """
    One stored usage event.

    Notes:
    - `company_key` is whichever identifier was supplied at ingestion
      (companyId, falling back to externalCompanyId). All reads go through it.
    - `company_id` keeps the raw value ("" when only the external id was given).
    - Timestamps are stored as naive UTC; the repository re-attaches the zone.
    """
    __tablename__ = "usage_events"
    __table_args__ = (
        Index("ix_usage_events_company_ts", "company_key", "timestamp"),
    )

    id = Column(Integer, primary_key=True)
    event_id = Column(String, nullable=False, unique=True)
    company_key = Column(String, nullable=False, index=True)
    company_id = Column(String, nullable=False, default="")
    external_company_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False)
    feature_name = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False)

    # `metadata` is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)


# -----------------------------------------------------------------------------
# Seat licenses
# -----------------------------------------------------------------------------
class SeatLicenseRecord(Base):
    __tablename__ = "seat_licenses"

    company_id = Column(String, primary_key=True)
    licensed_seats = Column(Integer, nullable=False)
    meta = Column("metadata", JSON, nullable=True)


# -----------------------------------------------------------------------------
# Onboarding start dates
# -----------------------------------------------------------------------------
class OnboardingStartRecord(Base):
    __tablename__ = "onboarding_starts"

    company_id = Column(String, primary_key=True)
    start_date = Column(DateTime, nullable=False)
