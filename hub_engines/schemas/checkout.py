"""
Checkout Schemas for Hub Engines
================================

Request models for the checkout quote and coupon preview endpoints.

Endpoint Coverage:
------------------
- POST /checkout/quote: Price a cart (availability and coverage gated)
- POST /coupons/validate: Preview a coupon against a subtotal

Usage:
------
    request = QuoteRequest(
        hub_id=1,
        subtotal=42.50,
        item_count=3,
        fulfillment_type="delivery",
        delivery_lat=41.88,
        delivery_lng=-87.63,
        coupon_code="SAVE10",
    )
    result = quote(db, request.model_dump())
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class QuoteRequest(BaseModel):
    """
    Cart summary to price.

    Attributes:
        hub_id: Hub the cart belongs to
        subtotal: Sum of cart line totals
        item_count: Number of items in the cart
        fulfillment_type: "delivery" or "pickup"
        tip_amount: Optional tip, never taxed
        delivery_lat / delivery_lng: Required for delivery
        zone_id: Delivery zone from a prior coverage check, if any
        coupon_code: Optional coupon to apply
    """
    hub_id: int = Field(..., gt=0)
    city_id: Optional[int] = None
    subtotal: float = Field(..., ge=0)
    item_count: int = Field(..., ge=0)
    fulfillment_type: Literal["delivery", "pickup"] = "delivery"
    tip_amount: float = Field(0.0, ge=0)
    delivery_lat: Optional[float] = Field(None, ge=-90, le=90)
    delivery_lng: Optional[float] = Field(None, ge=-180, le=180)
    zone_id: Optional[int] = None
    coupon_code: Optional[str] = None

    @model_validator(mode="after")
    def check_delivery_coords(self) -> "QuoteRequest":
        if self.fulfillment_type == "delivery" and (self.delivery_lat is None or self.delivery_lng is None):
            raise ValueError("delivery_lat and delivery_lng are required for delivery")
        return self


class QuoteResponse(BaseModel):
    success: bool
    totals: Dict[str, Any]
    snapshot: Dict[str, Any]
    coupon: Optional[Dict[str, Any]] = None


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)


class CouponValidateResponse(BaseModel):
    valid: bool
    reason: str
    message: str
    discount_amount: float = 0.0
    snapshot: Optional[Dict[str, Any]] = None
