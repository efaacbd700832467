"""
Schemas Package for Hub Engines
===============================

Pydantic models used for API request validation and response serialization.

Schema Organization:
--------------------
- **hubs.py**: Availability decision and hours display
- **coverage.py**: Coverage check request/response
- **checkout.py**: Quote and coupon preview
- **orders.py**: Snapshot totals of an order

Naming Conventions:
-------------------
- *Out: Response models (e.g., AvailabilityOut)
- *Request: Request bodies (e.g., QuoteRequest)
- *Response: Composite responses (e.g., QuoteResponse)

Usage:
------
    from hub_engines.schemas import QuoteRequest, AvailabilityOut
"""

# Hub schemas
from .hubs import (
    AvailabilityOut,
    HoursInterval,
    DayHoursOut,
    HubHoursOut,
)

# Coverage schemas
from .coverage import (
    CoverageCheckRequest,
    CoverageOut,
)

# Checkout schemas
from .checkout import (
    QuoteRequest,
    QuoteResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)

# Order schemas
from .orders import (
    OrderTotalsOut,
)

__all__ = [
    "AvailabilityOut",
    "HoursInterval",
    "DayHoursOut",
    "HubHoursOut",
    "CoverageCheckRequest",
    "CoverageOut",
    "QuoteRequest",
    "QuoteResponse",
    "CouponValidateRequest",
    "CouponValidateResponse",
    "OrderTotalsOut",
]
