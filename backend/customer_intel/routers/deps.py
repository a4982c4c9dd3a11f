"""
routers/deps.py
===============
Dependencies shared by the API routers.

- require_api_key: enforces `X-API-Key` when `API_KEY` is configured
- parse_company_ids: splits `?companyIds=a,b,c` and enforces the batch limit
"""

from __future__ import annotations

import logging
import secrets
from typing import List, Optional

from fastapi import Depends, Header, HTTPException, Query

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


def require_api_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.api_key:
        return
    if x_api_key is None or not secrets.compare_digest(x_api_key, settings.api_key):
        logger.warning("Rejected request with missing or invalid API key")
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def parse_company_ids(
    company_ids: str = Query(..., alias="companyIds", description="Comma-separated company ids"),
    settings: Settings = Depends(get_settings),
) -> List[str]:
    ids = [cid.strip() for cid in company_ids.split(",") if cid.strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="companyIds must list at least one id")
    if len(ids) > settings.max_batch_companies:
        logger.warning("Rejected batch of %d company ids", len(ids))
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.max_batch_companies} company ids per request",
        )
    return ids
