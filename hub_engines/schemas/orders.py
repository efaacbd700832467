"""
Order Schemas for Hub Engines
=============================

Response model for GET /orders/{order_id}/totals. Every money field is read
from the order's frozen totals snapshot, never recomputed.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class OrderTotalsOut(BaseModel):
    order_id: int
    subtotal: float
    tax_rate: float
    tax_amount: float
    delivery_fee: float
    software_fee: float
    discount_amount: float
    tip_amount: float
    total: float
    currency: Optional[str] = None
    version: Optional[str] = None
    calculated_at: Optional[str] = None
    delivery: Optional[Dict[str, Any]] = None
    coupon: Optional[Dict[str, Any]] = None
    software_fee_rule: Optional[Dict[str, Any]] = None
    state: Dict[str, Any]
