"""
Exceptions raised inside writer transactions.

Engines report business outcomes as tagged results and never raise to their
callers. The writers (order creation, payment creation, coupon redemption,
address reassignment) raise one of these from inside ``transaction()`` so the
block rolls back, then catch it at their own boundary and turn it into a
tagged failure carrying ``reason``.
"""

from typing import Any, Dict, Optional


class HubEngineError(Exception):
    """Base class carrying a stable reason code."""

    def __init__(self, reason: str, message: str = "", extra: Optional[Dict[str, Any]] = None):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason
        self.extra = extra or {}


class OrderCreationError(HubEngineError):
    pass


class PaymentConflictError(HubEngineError):
    pass


class CouponRedemptionError(HubEngineError):
    pass


class AddressNotFoundError(HubEngineError):
    pass
