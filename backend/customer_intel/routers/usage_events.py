"""
routers/usage_events.py
=======================
Ingestion and raw-usage read endpoints.

Exposes:
- POST /api/usage-events                         (one event)
- POST /api/usage-events/batch                   (all-or-nothing)
- GET  /api/usage-events/{company_id}?days=30    (most recent first)
- GET  /api/usage-events/{company_id}/trends     (calendar-week buckets)
- GET  /api/usage-events/{company_id}/features   (per-feature adoption)
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import Settings, get_settings
from ..schemas import BatchEventsIn, FeatureAdoption, UsageEvent, UsageEventIn, UsageTrend
from ..service import CustomerIntelligence, get_intel
from ..store import EventValidationError
from .deps import require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage-events", tags=["usage-events"], dependencies=[Depends(require_api_key)])


@router.post("", response_model=UsageEvent, status_code=201)
def record_event(payload: UsageEventIn, intel: CustomerIntelligence = Depends(get_intel)):
    """
    Store one usage event.

    Either `companyId` or `externalCompanyId` is required; `timestamp`
    defaults to the server clock.
    """
    try:
        return intel.record_event(payload)
    except EventValidationError as e:
        logger.warning("Rejected usage event: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/batch", response_model=List[UsageEvent], status_code=201)
def record_events(
    payload: BatchEventsIn,
    intel: CustomerIntelligence = Depends(get_intel),
    settings: Settings = Depends(get_settings),
):
    """Store up to MAX_BATCH_EVENTS events; if any one is invalid none are stored."""
    if len(payload.events) > settings.max_batch_events:
        logger.warning("Rejected batch of %d events", len(payload.events))
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.max_batch_events} events per batch",
        )
    try:
        return intel.record_events(payload.events)
    except EventValidationError as e:
        logger.warning("Rejected usage event batch: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{company_id}", response_model=List[UsageEvent])
def list_events(
    company_id: str,
    days: int = Query(30, ge=1, le=365),
    intel: CustomerIntelligence = Depends(get_intel),
):
    return intel.get_events(company_id, days)


@router.get("/{company_id}/trends", response_model=List[UsageTrend])
def usage_trends(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    return intel.usage_trends(company_id)


@router.get("/{company_id}/features", response_model=List[FeatureAdoption])
def feature_adoption(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    return intel.feature_adoption(company_id)
