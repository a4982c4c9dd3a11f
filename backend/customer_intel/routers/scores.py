"""
routers/scores.py
=================
Renewal health scores.

Exposes:
- GET /api/scores/{company_id}
- GET /api/scores?companyIds=a,b,c   (results in input order)
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from ..schemas import RenewalHealthScore
from ..service import CustomerIntelligence, get_intel
from .deps import parse_company_ids, require_api_key

router = APIRouter(prefix="/api/scores", tags=["scores"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=List[RenewalHealthScore])
def batch_scores(
    company_ids: List[str] = Depends(parse_company_ids),
    intel: CustomerIntelligence = Depends(get_intel),
):
    return intel.batch_renewal_health(company_ids)


@router.get("/{company_id}", response_model=RenewalHealthScore)
def renewal_score(company_id: str, intel: CustomerIntelligence = Depends(get_intel)):
    """A company with no events is not an error: it scores as critical risk."""
    return intel.renewal_health(company_id)
