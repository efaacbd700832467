"""
Coverage Routes for Hub Engines
===============================

Endpoints:
----------
- POST /coverage/check: Does a hub deliver to a location

Returns the coverage result as-is; ``ok`` false with a reason such as
OUT_OF_COVERAGE is a normal answer, not an HTTP error.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.coverage import CoverageCheckRequest, CoverageOut
from ..services.coverage import check_coverage


logger = logging.getLogger(__name__)

coverage_router = APIRouter(prefix="/coverage", tags=["Coverage"])


@coverage_router.post("/check", response_model=CoverageOut)
def post_coverage_check(
    payload: CoverageCheckRequest,
    db: Session = Depends(get_db),
) -> CoverageOut:
    result = check_coverage(db, payload.hub_id, payload.lat, payload.lng)
    logger.debug("Coverage for hub %s: %s", payload.hub_id, result.reason.value)
    return CoverageOut(**result.to_dict())
