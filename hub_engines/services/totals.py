"""
Totals Engine
=============

Builds a checkout quote and the frozen totals snapshot an order is created
from.

Key Functions:
--------------
- resolve_software_fee: Hub-scoped service fee override, else the city fee
- quote: Orchestrates coupon, tax, distance, delivery fee and software fee

Money Flow:
-----------
    discount     = coupon discount, clamped to [0, subtotal]
    tax          = tax engine on (subtotal - discount); fees and tip never taxed
    delivery_fee = fee engine on the hub-to-customer distance (delivery only)
    software_fee = resolve_software_fee
    total        = max(0, subtotal - discount + tax + delivery_fee + software_fee + tip)

Snapshot Contract:
------------------
``quote()["snapshot"]`` is persisted verbatim into ``orders.totals_snapshot``
and never recomputed. Keys are only ever added, never removed:

    version, currency, source, calculated_at,
    is_snapshot_locked (True), is_cart_detached (True),
    hub_id, city_id, fulfillment_type,
    subtotal, discount_amount, tax_rate, tax_amount,
    delivery_fee, software_fee, tip_amount, total,
    software_fee_rule, coupon, delivery

``delivery`` is None for pickup, otherwise
``{distance_km, distance_mi, eta_minutes, delivery_fee, fee_rule_id,
fee_rule_name, fee_reason, is_free, zone_id}``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import ORDER_SNAPSHOT_VERSION, SNAPSHOT_CURRENCY
from ..models import Hub, SoftwareFee
from .coupons import resolve_coupon
from .delivery_fee import FeeReason, calculate_fee
from .distance import calculate_delivery_distance
from .helpers import round_money, to_float, to_int
from .tax import resolve_tax

logger = logging.getLogger(__name__)

FULFILLMENT_TYPES = ("delivery", "pickup")


@dataclass(frozen=True)
class SoftwareFeeResult:
    applied: bool
    scope: Optional[str] = None
    city_id: Optional[int] = None
    hub_id: Optional[int] = None
    fee_amount: float = 0.0
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "scope": self.scope,
            "city_id": self.city_id,
            "hub_id": self.hub_id,
            "fee_amount": self.fee_amount,
            "label": self.label,
        }


def resolve_software_fee(db: Session, city_id: Any, subtotal: Any = 0.0, hub_id: Any = 0) -> SoftwareFeeResult:
    """
    Service fee for a hub.

    An active hub-scoped fee wins over the city's fee (scope "city",
    hub_id 0). With neither configured no fee is applied. The newest active
    row wins within a scope.
    """
    city_id = to_int(city_id)
    hub_id = to_int(hub_id)

    try:
        row = None
        if hub_id > 0:
            row = (
                db.query(SoftwareFee)
                .filter(SoftwareFee.scope == "hub", SoftwareFee.hub_id == hub_id, SoftwareFee.status == "active")
                .order_by(SoftwareFee.id.desc())
                .first()
            )
        if row is None and city_id > 0:
            row = (
                db.query(SoftwareFee)
                .filter(
                    SoftwareFee.scope == "city",
                    SoftwareFee.city_id == city_id,
                    SoftwareFee.hub_id == 0,
                    SoftwareFee.status == "active",
                )
                .order_by(SoftwareFee.id.desc())
                .first()
            )
    except Exception:
        logger.exception("Software fee lookup failed (city %s, hub %s)", city_id, hub_id)
        row = None

    if row is None:
        return SoftwareFeeResult(applied=False)

    fee_amount = round_money(max(0.0, to_float(row.fee_amount)))
    return SoftwareFeeResult(
        applied=True,
        scope=row.scope,
        city_id=row.city_id,
        hub_id=row.hub_id,
        fee_amount=fee_amount,
        label="Service Fee ($%.2f)" % fee_amount,
    )


def _utc_iso(now: Optional[datetime]) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


def _error(error: str, **extra: Any) -> Dict[str, Any]:
    result = {"success": False, "error": error}
    result.update(extra)
    return result


def quote(db: Session, params: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Price a cart for checkout.

    Args:
        db: Database session
        params: hub_id, subtotal, item_count, and optionally city_id,
                fulfillment_type ("delivery"/"pickup"), tip_amount,
                delivery_lat, delivery_lng, zone_id, coupon_code
        now: Evaluation time for coupon windows and calculated_at

    Returns:
        {"success": True, "totals": {...}, "snapshot": {...}, "coupon": {...}|None}
        or {"success": False, "error": <code>, ...}

    Error codes: invalid_params, cart_empty, hub_not_found,
    min_order_not_met (with min_order), delivery_unavailable (with reason).
    A coupon that does not validate is reported under "coupon" and simply not
    applied.
    """
    if not isinstance(params, dict):
        return _error("invalid_params")

    try:
        return _quote(db, params, now)
    except Exception:
        logger.exception("Quote failed for hub %s", params.get("hub_id"))
        return _error("quote_failed")


def _quote(db: Session, params: Dict[str, Any], now: Optional[datetime]) -> Dict[str, Any]:
    hub_id = to_int(params.get("hub_id"))
    fulfillment_type = str(params.get("fulfillment_type") or "delivery")
    if fulfillment_type not in FULFILLMENT_TYPES:
        fulfillment_type = "delivery"

    subtotal = round_money(to_float(params.get("subtotal")))
    item_count = to_int(params.get("item_count"))
    tip_amount = round_money(max(0.0, to_float(params.get("tip_amount"))))

    if hub_id <= 0:
        return _error("invalid_params")
    if subtotal <= 0 or item_count <= 0:
        return _error("cart_empty")

    hub = db.query(Hub).filter(Hub.id == hub_id).first()
    if hub is None:
        return _error("hub_not_found")

    city_id = to_int(params.get("city_id")) or to_int(hub.city_id)

    min_order = to_float(hub.min_order)
    if min_order > 0 and subtotal < min_order:
        return _error("min_order_not_met", min_order=min_order)

    # Coupon
    discount = 0.0
    coupon_snapshot = None
    coupon_info = None
    coupon_code = params.get("coupon_code")
    if coupon_code:
        coupon = resolve_coupon(db, coupon_code, subtotal, lock=False, now=now)
        coupon_info = {"valid": coupon.valid, "reason": coupon.reason, "message": coupon.message}
        if coupon.valid:
            discount = coupon.discount_amount
            coupon_snapshot = coupon.snapshot

    # Tax on goods only
    tax = resolve_tax(db, subtotal - discount, hub_id)

    # Delivery
    delivery_fee = 0.0
    delivery_snapshot = None
    if fulfillment_type == "delivery":
        distance = calculate_delivery_distance(db, hub_id, params.get("delivery_lat"), params.get("delivery_lng"))
        if not distance.ok:
            return _error("delivery_unavailable", reason=distance.reason.value)

        zone_id = to_int(params.get("zone_id")) or None
        fee = calculate_fee(db, hub_id, distance.distance_km, subtotal, zone_id=zone_id, city_id=city_id or None)
        if not fee.ok and fee.reason != FeeReason.NO_RULE_FOUND:
            return _error("delivery_unavailable", reason=fee.reason.value)

        delivery_fee = fee.fee if fee.ok else 0.0
        delivery_snapshot = {
            "distance_km": distance.distance_km,
            "distance_mi": distance.distance_mi,
            "eta_minutes": distance.eta_minutes,
            "delivery_fee": delivery_fee,
            "fee_rule_id": fee.rule_id,
            "fee_rule_name": fee.rule_name,
            "fee_reason": fee.reason.value,
            "is_free": fee.is_free,
            "zone_id": zone_id,
        }

    software = resolve_software_fee(db, city_id, subtotal, hub_id)
    software_fee = software.fee_amount if software.applied else 0.0
    software_rule = None
    if software.applied:
        software_rule = {
            "scope": software.scope,
            "city_id": software.city_id,
            "hub_id": software.hub_id,
            "fee_amount": software.fee_amount,
            "label": software.label,
        }

    total = round_money(max(0.0, subtotal - discount + tax.amount + delivery_fee + software_fee + tip_amount))

    totals = {
        "subtotal": subtotal,
        "discount_amount": discount,
        "tax_rate": round_money(tax.rate),
        "tax_amount": tax.amount,
        "delivery_fee": round_money(delivery_fee),
        "software_fee": software_fee,
        "tip_amount": tip_amount,
        "total": total,
    }

    snapshot = {
        "version": ORDER_SNAPSHOT_VERSION,
        "currency": SNAPSHOT_CURRENCY,
        "source": "checkout_quote",
        "calculated_at": _utc_iso(now),
        "is_snapshot_locked": True,
        "is_cart_detached": True,
        "hub_id": hub_id,
        "city_id": city_id or None,
        "fulfillment_type": fulfillment_type,
        **totals,
        "software_fee_rule": software_rule,
        "coupon": coupon_snapshot,
        "delivery": delivery_snapshot,
    }

    logger.debug("Quote for hub %s: total=%.2f", hub_id, total)
    return {
        "success": True,
        "totals": totals,
        "snapshot": snapshot,
        "coupon": coupon_info,
    }
