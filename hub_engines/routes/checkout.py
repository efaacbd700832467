"""
Checkout Routes for Hub Engines
===============================

Endpoints:
----------
- POST /checkout/quote: Price a cart
- POST /coupons/validate: Preview a coupon (no redemption)

Quote Gates:
------------
The quote is only computed once the hub passes both gates:

1. Availability: a refused decision returns 409 with the block envelope
   (``error: "availability_block"``).
2. Coverage (delivery only): an uncovered location returns 409 with
   ``error: "coverage_block"``.

Quote failures from the totals engine map to 400 (invalid params, empty
cart, minimum order), 404 (unknown hub) or 409 (delivery unavailable).
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..clock import get_now
from ..db import get_db
from ..schemas.checkout import (
    CouponValidateRequest,
    CouponValidateResponse,
    QuoteRequest,
    QuoteResponse,
)
from ..services.availability import build_block_response, decide_availability
from ..services.coupons import resolve_coupon
from ..services.coverage import check_coverage
from ..services.totals import quote


logger = logging.getLogger(__name__)

checkout_router = APIRouter(prefix="/checkout", tags=["Checkout"])
coupons_router = APIRouter(prefix="/coupons", tags=["Coupons"])

QUOTE_ERROR_STATUS = {
    "invalid_params": 400,
    "cart_empty": 400,
    "min_order_not_met": 400,
    "hub_not_found": 404,
    "delivery_unavailable": 409,
    "quote_failed": 500,
}


@checkout_router.post("/quote", response_model=QuoteResponse)
def post_checkout_quote(
    payload: QuoteRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Price a cart after the availability and coverage gates.

    Returns the totals, the snapshot to store on the order, and the coupon
    outcome when a code was sent.
    """
    decision = decide_availability(db, payload.hub_id, now)
    if not decision.can_order:
        logger.info("Quote blocked for hub %s: %s", payload.hub_id, decision.reason.value)
        return JSONResponse(status_code=409, content=build_block_response(decision))

    zone_id = payload.zone_id
    if payload.fulfillment_type == "delivery":
        coverage = check_coverage(db, payload.hub_id, payload.delivery_lat, payload.delivery_lng)
        if not coverage.ok:
            logger.info("Quote out of coverage for hub %s: %s", payload.hub_id, coverage.reason.value)
            return JSONResponse(
                status_code=409,
                content={
                    "success": False,
                    "error": "coverage_block",
                    "reason": coverage.reason.value,
                    "coverage": coverage.to_dict(),
                },
            )
        zone_id = zone_id or coverage.zone_id

    params = payload.model_dump()
    params["zone_id"] = zone_id
    result = quote(db, params, now=now)

    if not result["success"]:
        status_code = QUOTE_ERROR_STATUS.get(result["error"], 400)
        return JSONResponse(status_code=status_code, content=result)

    return QuoteResponse(**result)


@coupons_router.post("/validate", response_model=CouponValidateResponse)
def post_coupon_validate(
    payload: CouponValidateRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> CouponValidateResponse:
    """Validate a code against a subtotal without counting a use."""
    result = resolve_coupon(db, payload.code, payload.subtotal, lock=False, now=now)
    return CouponValidateResponse(**result.to_dict())
