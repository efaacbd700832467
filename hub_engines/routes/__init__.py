"""
Routes Package for Hub Engines
==============================

Thin FastAPI routers over the decision engines in ``hub_engines.services``.
Each module defines an APIRouter with a prefix and tags:

- hubs.py: Availability decision and hours display
- coverage.py: Delivery coverage check
- checkout.py: Checkout quote (availability and coverage gated) and coupon preview
- orders.py: Snapshot totals for an order

Route Dependencies:
-------------------
- get_db: Database session, injected with Depends()

Error Handling:
---------------
Engines return tagged results; routes map refusals that block checkout onto
409 JSONResponse bodies carrying the engine's reason code, and raise
HTTPException(404) for unknown resources.

Usage:
------
    from hub_engines.routes import hubs_router, checkout_router

    app.include_router(hubs_router)
"""

from .hubs import hubs_router
from .coverage import coverage_router
from .checkout import checkout_router, coupons_router
from .orders import orders_router

__all__ = [
    "hubs_router",
    "coverage_router",
    "checkout_router",
    "coupons_router",
    "orders_router",
]
