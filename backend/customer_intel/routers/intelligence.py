"""
routers/intelligence.py
=======================
Behavioral trend, onboarding, expansion and the combined suite.

Exposes:
- GET  /api/intelligence/ml-trend/{company_id}
- GET  /api/intelligence/ml-trend?companyIds=
- GET  /api/intelligence/onboarding/{company_id}?startDate=
- POST /api/intelligence/onboarding/{company_id}/start-date
- GET  /api/intelligence/onboarding?companyIds=
- GET  /api/intelligence/expansion/{company_id}
- POST /api/intelligence/expansion/{company_id}/seats
- GET  /api/intelligence/expansion?companyIds=
- GET  /api/intelligence/suite/{company_id}
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..schemas import (
    CustomerIntelligenceSuite,
    ExpansionPrediction,
    MLUsageTrend,
    OnboardingHealthScore,
    OnboardingStartIn,
    SeatLicense,
)
from ..service import CustomerIntelligence, get_intel
from .deps import parse_company_ids, require_api_key

router = APIRouter(prefix="/api/intelligence", tags=["intelligence"], dependencies=[Depends(require_api_key)])


# ---------- behavioral trend ----------

@router.get("/ml-trend", response_model=List[MLUsageTrend])
def batch_ml_trends(
    company_ids: List[str] = Depends(parse_company_ids),
    intel: CustomerIntelligence = Depends(get_intel),
):
    return intel.batch_ml_trends(company_ids)


@router.get("/ml-trend/{company_id}", response_model=MLUsageTrend)
def ml_trend(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    return intel.ml_trend(company_id)


# ---------- onboarding ----------

@router.get("/onboarding", response_model=List[OnboardingHealthScore])
def batch_onboarding(
    company_ids: List[str] = Depends(parse_company_ids),
    intel: CustomerIntelligence = Depends(get_intel),
):
    return intel.batch_onboarding_health(company_ids)


@router.get("/onboarding/{company_id}", response_model=OnboardingHealthScore)
def onboarding(
    company_id: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    intel: CustomerIntelligence = Depends(get_intel),
):
    """
    Onboarding health. `startDate` overrides the stored/inferred start for
    this call only; use the POST endpoint to persist one.
    """
    return intel.onboarding_health(company_id, start_date=start_date)


@router.post("/onboarding/{company_id}/start-date", response_model=OnboardingHealthScore)
def set_onboarding_start(
    company_id: str,
    payload: OnboardingStartIn,
    intel: CustomerIntelligence = Depends(get_intel),
):
    intel.set_onboarding_start_date(company_id, payload.start_date)
    return intel.onboarding_health(company_id)


# ---------- expansion ----------

@router.get("/expansion", response_model=List[ExpansionPrediction])
def batch_expansion(
    company_ids: List[str] = Depends(parse_company_ids),
    intel: CustomerIntelligence = Depends(get_intel),
):
    return intel.batch_expansion_predictions(company_ids)


@router.get("/expansion/{company_id}", response_model=ExpansionPrediction)
def expansion(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    return intel.expansion_prediction(company_id)


@router.post("/expansion/{company_id}/seats", response_model=ExpansionPrediction)
def set_seats(
    company_id: str,
    payload: SeatLicense,
    intel: CustomerIntelligence = Depends(get_intel),
):
    """Record licensed seats (from billing/CRM) and return the refreshed prediction."""
    intel.set_seat_data(company_id, payload)
    return intel.expansion_prediction(company_id)


# ---------- combined ----------

@router.get("/suite/{company_id}", response_model=CustomerIntelligenceSuite)
def suite(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    return intel.suite(company_id)
