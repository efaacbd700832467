"""
Services Package for Hub Engines
================================

Decision engines for the delivery marketplace and the writers that act on
their decisions.

Available Services:
-------------------
- **geo**: Haversine distance, polygon parsing, point-in-polygon
- **hours**: Hub opening hours display and open/closed status
- **availability**: Whether a hub can take an order right now
- **coverage**: Whether a hub delivers to a location (zones, then radius)
- **distance**: Hub-to-customer distance and ETA
- **delivery_fee**: Fee rule resolution and fee calculation
- **tax**: Sales tax on the taxable base
- **coupons**: Coupon validation, discount, redemption
- **totals**: Checkout quote and totals snapshot
- **orders**: Order creation from a quote and order state guards
- **payments**: Payment records, status guards, webhook reconciliation
- **addresses**: Saved customer addresses
- **helpers**: Shared utility functions

Design Philosophy:
------------------
1. **Tagged Results**: Engines return dataclasses with a stable ``reason``
   code and never raise for business conditions. Unexpected errors are
   logged and turned into a fail-closed result.

2. **Dependency Injection**: Engines receive the database session and the
   evaluation time (``now``) rather than reading globals.

3. **Writers Own Their Transactions**: Anything that writes (order creation,
   payment creation, coupon redemption, default address, webhook
   reconciliation) locks the guarded row inside ``db.transaction()`` and
   re-checks before writing.

Usage:
------
    from hub_engines.services.availability import decide_availability
    from hub_engines.services.totals import quote

Or import the entire module:

    from hub_engines.services import availability, coverage, totals
"""

from . import helpers
from . import geo
from . import hours
from . import availability
from . import coverage
from . import distance
from . import delivery_fee
from . import tax
from . import coupons
from . import totals
from . import orders
from . import payments
from . import addresses

__all__ = [
    "helpers",
    "geo",
    "hours",
    "availability",
    "coverage",
    "distance",
    "delivery_fee",
    "tax",
    "coupons",
    "totals",
    "orders",
    "payments",
    "addresses",
]
