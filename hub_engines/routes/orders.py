"""
Order Routes for Hub Engines
============================

Endpoints:
----------
- GET /orders/{order_id}/totals: Totals read from the order's frozen snapshot

An order whose snapshots fail the canonical state check answers 409 with the
failing reason, so clients never see totals that were not locked at creation.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.orders import OrderTotalsOut
from ..services.orders import get_order_totals_from_snapshot, validate_order_canonical_state


logger = logging.getLogger(__name__)

orders_router = APIRouter(prefix="/orders", tags=["Orders"])


@orders_router.get("/{order_id}/totals", response_model=OrderTotalsOut)
def get_order_totals(
    order_id: int,
    db: Session = Depends(get_db),
):
    state = validate_order_canonical_state(db, order_id)
    if not state.valid:
        status_code = 404 if state.reason in ("ORDER_NOT_FOUND", "INVALID_ORDER_ID") else 409
        return JSONResponse(status_code=status_code, content={"success": False, **state.to_dict()})

    totals = get_order_totals_from_snapshot(db, order_id)
    if totals is None:
        return JSONResponse(status_code=409, content={"success": False, "reason": "SNAPSHOT_UNAVAILABLE"})

    return OrderTotalsOut(order_id=order_id, state=state.to_dict(), **totals)
