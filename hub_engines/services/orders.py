"""
Order Service
=============

Turns a checkout quote into an order and enforces the rule that, once it
exists, an order is the single source of truth for its own items and totals.

Key Functions:
--------------
- create_order_from_quote: Persist an order from a quote snapshot and detach the cart
- validate_order_canonical_state: Check an order's snapshots and cart detachment
- get_order_totals_from_snapshot / get_order_items_from_snapshot: Frozen reads
- is_cart_converted: Whether a session's cart has been turned into an order
- can_modify_order: Only "placed" orders may still change

Snapshots:
----------
``orders.totals_snapshot`` holds the quote snapshot verbatim plus
``finalized_at`` (and the frozen delivery address when one was given).
``orders.cart_snapshot`` holds the hub and the cart lines as they were at
creation. Neither is ever recomputed; the accessors below read only these
columns and never look at carts, fee rules or coupons.

Order Creation:
---------------
    cart lookup -> converted cart returns the existing order
    availability gate
    duplicate window (same session/hub/customer, live status, last N minutes)
    snapshot checks: SNAPSHOT_INCOMPLETE, INVALID_TAX_AMOUNT,
                     SUBTOTAL_MISMATCH, INVALID_TOTAL, DELIVERY_SNAPSHOT_INCOMPLETE
    one transaction:
        redeem coupon (row locked, re-validated)
        insert order (status "placed") + items + status history
        mark cart "converted" (exactly one row, else roll back)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import ORDER_IDEMPOTENCY_WINDOW_MINUTES, ORDER_SNAPSHOT_VERSION, SUBTOTAL_TOLERANCE
from ..db import transaction
from ..errors import CouponRedemptionError, OrderCreationError
from ..models import Cart, Hub, Order, OrderItem, OrderStatusHistory, utcnow
from .availability import decide_availability
from .coupons import redeem_coupon_in_transaction
from .helpers import dump_json, load_json, round_money, to_float, to_int

logger = logging.getLogger(__name__)

# Orders in these states block a second order from the same session
LIVE_ORDER_STATUSES = ("placed", "confirmed", "preparing", "ready", "out_for_delivery")

MONEY_KEYS = (
    "subtotal",
    "tax_rate",
    "tax_amount",
    "delivery_fee",
    "software_fee",
    "discount_amount",
    "tip_amount",
    "total",
)


@dataclass
class GuardResult:
    """Outcome of a state guard: validity plus a stable reason code."""

    allowed: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"allowed": self.allowed, "reason": self.reason}
        data.update(self.details)
        return data


@dataclass
class OrderStateResult:
    valid: bool
    reason: str
    order_id: Optional[int] = None
    snapshot_version: Optional[str] = None
    cart_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"valid": self.valid, "reason": self.reason}
        if self.valid:
            data["order_id"] = self.order_id
            data["snapshot_version"] = self.snapshot_version
        if self.cart_status is not None:
            data["cart_status"] = self.cart_status
        return data


@dataclass
class OrderCreationResult:
    success: bool
    reason: str
    message: str = ""
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    already_exists: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "reason": self.reason,
            "message": self.message,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "already_exists": self.already_exists,
        }
        data.update(self.details)
        return data


# =============================================================================
# Canonical state
# =============================================================================

def _load_order(db: Session, order_id: Any) -> Optional[Order]:
    order_id = to_int(order_id)
    if order_id <= 0:
        return None
    return db.query(Order).filter(Order.id == order_id).first()


def is_cart_converted(db: Session, session_token: Optional[str]) -> bool:
    """True when the latest cart for ``session_token`` has been converted."""
    if not session_token:
        return False
    cart = (
        db.query(Cart)
        .filter(Cart.session_token == session_token)
        .order_by(Cart.id.desc())
        .first()
    )
    return cart is not None and cart.status == "converted"


def validate_order_canonical_state(db: Session, order_id: Any) -> OrderStateResult:
    """
    Check that an order is self-contained.

    Both snapshots must exist and decode, the totals snapshot must carry
    ``is_snapshot_locked`` and ``is_cart_detached`` set to true, and the
    session's cart must either be gone or be exactly "converted".
    """
    if to_int(order_id) <= 0:
        return OrderStateResult(valid=False, reason="INVALID_ORDER_ID")

    try:
        order = _load_order(db, order_id)
    except Exception:
        logger.exception("Order lookup failed for order %s", order_id)
        return OrderStateResult(valid=False, reason="ORDER_NOT_FOUND")

    if order is None:
        return OrderStateResult(valid=False, reason="ORDER_NOT_FOUND")
    if not order.totals_snapshot:
        return OrderStateResult(valid=False, reason="TOTALS_SNAPSHOT_MISSING")
    if not order.cart_snapshot:
        return OrderStateResult(valid=False, reason="CART_SNAPSHOT_MISSING")

    totals = load_json(order.totals_snapshot)
    if not isinstance(totals, dict):
        return OrderStateResult(valid=False, reason="TOTALS_SNAPSHOT_CORRUPT")
    if not isinstance(load_json(order.cart_snapshot), dict):
        return OrderStateResult(valid=False, reason="CART_SNAPSHOT_CORRUPT")

    if totals.get("is_snapshot_locked") is not True:
        return OrderStateResult(valid=False, reason="SNAPSHOT_NOT_LOCKED")
    if totals.get("is_cart_detached") is not True:
        return OrderStateResult(valid=False, reason="CART_NOT_DETACHED")

    if order.session_token:
        cart = (
            db.query(Cart)
            .filter(Cart.session_token == order.session_token, Cart.hub_id == order.hub_id)
            .order_by(Cart.id.desc())
            .first()
        )
        if cart is not None and cart.status != "converted":
            return OrderStateResult(valid=False, reason="CART_NOT_CONVERTED", cart_status=cart.status)

    return OrderStateResult(
        valid=True,
        reason="OK",
        order_id=order.id,
        snapshot_version=totals.get("version"),
    )


def get_order_totals_from_snapshot(db: Session, order_id: Any) -> Optional[Dict[str, Any]]:
    """
    Totals exactly as frozen at creation, or None when the order is not
    canonical.
    """
    state = validate_order_canonical_state(db, order_id)
    if not state.valid:
        logger.info("Refusing snapshot totals for order %s: %s", order_id, state.reason)
        return None

    order = _load_order(db, order_id)
    snapshot = load_json(order.totals_snapshot)

    totals = {key: to_float(snapshot.get(key)) for key in MONEY_KEYS}
    totals["currency"] = snapshot.get("currency")
    totals["version"] = snapshot.get("version")
    totals["delivery"] = snapshot.get("delivery")
    totals["coupon"] = snapshot.get("coupon")
    totals["software_fee_rule"] = snapshot.get("software_fee_rule")
    totals["calculated_at"] = snapshot.get("calculated_at")
    return totals


def get_order_items_from_snapshot(db: Session, order_id: Any) -> List[Dict[str, Any]]:
    """Cart lines frozen at creation; empty when the order is not canonical."""
    state = validate_order_canonical_state(db, order_id)
    if not state.valid:
        return []

    order = _load_order(db, order_id)
    cart_snapshot = load_json(order.cart_snapshot) or {}
    items = cart_snapshot.get("items")
    return items if isinstance(items, list) else []


def can_modify_order(db: Session, order_id: Any) -> GuardResult:
    """Only orders still in "placed" may be changed."""
    if to_int(order_id) <= 0:
        return GuardResult(allowed=False, reason="INVALID_ORDER_ID")

    order = _load_order(db, order_id)
    if order is None:
        return GuardResult(allowed=False, reason="ORDER_NOT_FOUND")
    if order.status != "placed":
        return GuardResult(
            allowed=False,
            reason="ORDER_ALREADY_CONFIRMED",
            details={"status": order.status},
        )
    return GuardResult(allowed=True, reason="OK")


# =============================================================================
# Creation
# =============================================================================

def _new_order_number() -> str:
    return "ORD-" + uuid.uuid4().hex[:10].upper()


def _find_recent_order(
    db: Session,
    session_token: str,
    hub_id: int,
    customer_id: Optional[int],
    since: datetime,
) -> Optional[Order]:
    query = db.query(Order).filter(
        Order.session_token == session_token,
        Order.hub_id == hub_id,
        Order.status.in_(LIVE_ORDER_STATUSES),
        Order.created_at >= since,
    )
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).first()


def build_cart_snapshot(hub: Hub, cart: Cart, now: datetime) -> Dict[str, Any]:
    items = []
    for item in cart.items:
        items.append({
            "item_id": item.item_id,
            "name_snapshot": item.name_snapshot,
            "image_snapshot": item.image_snapshot,
            "quantity": item.quantity,
            "unit_price": round_money(to_float(item.unit_price)),
            "line_total": round_money(to_float(item.line_total)),
            "modifiers": load_json(item.modifiers_json) or [],
        })

    return {
        "version": ORDER_SNAPSHOT_VERSION,
        "hub": {
            "id": hub.id,
            "city_id": hub.city_id,
            "name": hub.name,
            "address": hub.address,
            "lat": hub.latitude,
            "lng": hub.longitude,
        },
        "session_token": cart.session_token,
        "items": items,
        "subtotal": round_money(sum(i["line_total"] for i in items)),
        "item_count": sum(int(i["quantity"] or 0) for i in items),
        "created_at": now.strftime("%Y-%m-%d %H:%M:%S"),
    }


def _reject(reason: str, message: str, **details: Any) -> OrderCreationResult:
    return OrderCreationResult(success=False, reason=reason, message=message, details=details)


def _check_snapshot(snapshot: Dict[str, Any], cart: Cart, fulfillment_type: str) -> Optional[OrderCreationResult]:
    if "tax_amount" not in snapshot or "tax_rate" not in snapshot:
        return _reject("SNAPSHOT_INCOMPLETE", "Order snapshot is missing required tax information. Please re-quote your order.")

    if to_float(snapshot.get("tax_amount")) < 0:
        return _reject("INVALID_TAX_AMOUNT", "Invalid tax amount in order snapshot. Please re-quote your order.")

    cart_subtotal = round_money(sum(to_float(item.line_total) for item in cart.items))
    if abs(cart_subtotal - to_float(snapshot.get("subtotal"))) > SUBTOTAL_TOLERANCE + 1e-9:
        return _reject("SUBTOTAL_MISMATCH", "Cart has changed. Please re-quote your order.")

    if to_float(snapshot.get("total")) <= 0:
        return _reject("INVALID_TOTAL", "Order total is invalid.")

    if fulfillment_type == "delivery" and not isinstance(snapshot.get("delivery"), dict):
        return _reject("DELIVERY_SNAPSHOT_INCOMPLETE", "Delivery snapshot incomplete (fee or coverage missing)")

    return None


def create_order_from_quote(
    db: Session,
    session_token: str,
    hub_id: Any,
    snapshot: Dict[str, Any],
    customer_id: Optional[int] = None,
    customer: Optional[Dict[str, Any]] = None,
    address: Optional[Dict[str, Any]] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OrderCreationResult:
    """
    Create an order from a quote snapshot.

    Args:
        db: Database session
        session_token: Session owning the cart
        hub_id: Hub the cart belongs to
        snapshot: ``quote()["snapshot"]``, persisted verbatim
        customer_id: Logged-in customer, if any
        customer: Optional name/phone/email
        address: Optional frozen delivery address {address_id, label, lat, lng}
        notes: Free-text instructions
        now: Creation time (naive UTC), defaults to the current time

    Returns:
        OrderCreationResult. ``already_exists`` is set when an existing order
        was returned instead of creating a new one.
    """
    hub_id = to_int(hub_id)
    if now is None:
        now = utcnow()
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    customer = customer or {}

    if not session_token or hub_id <= 0:
        return _reject("INVALID_REQUEST", "Session and hub are required.")
    if not isinstance(snapshot, dict):
        return _reject("SNAPSHOT_INCOMPLETE", "Order snapshot is missing. Please re-quote your order.")

    cart = (
        db.query(Cart)
        .filter(Cart.session_token == session_token, Cart.hub_id == hub_id)
        .order_by(Cart.id.desc())
        .first()
    )
    if cart is None:
        return _reject("CART_NOT_FOUND", "No cart found for this session.")

    window = timedelta(minutes=ORDER_IDEMPOTENCY_WINDOW_MINUTES)

    if cart.status == "converted":
        existing = _find_recent_order(db, session_token, hub_id, customer_id, (cart.updated_at or now) - window)
        if existing is not None:
            return OrderCreationResult(
                success=True,
                reason="ORDER_ALREADY_FINALIZED",
                message="Order already exists for this cart.",
                order_id=existing.id,
                order_number=existing.order_number,
                already_exists=True,
            )
        logger.error("Converted cart %s has no matching order (hub %s)", cart.id, hub_id)
        return _reject("CART_ALREADY_CONVERTED", "This cart has already been checked out.")

    if not cart.items:
        return _reject("CART_EMPTY", "Cart is empty.")

    availability = decide_availability(db, hub_id, now)
    if not availability.can_order:
        return _reject(
            "AVAILABILITY_BLOCK",
            availability.message,
            availability=availability.to_dict(),
        )

    existing = _find_recent_order(db, session_token, hub_id, customer_id, now - window)
    if existing is not None:
        return OrderCreationResult(
            success=True,
            reason="DUPLICATE_ORDER_PREVENTED",
            message="Order already exists for this session.",
            order_id=existing.id,
            order_number=existing.order_number,
            already_exists=True,
        )

    fulfillment_type = snapshot.get("fulfillment_type") or "delivery"
    rejection = _check_snapshot(snapshot, cart, fulfillment_type)
    if rejection is not None:
        return rejection

    hub = db.query(Hub).filter(Hub.id == hub_id).first()
    if hub is None:
        return _reject("HUB_NOT_FOUND", "This restaurant is currently unavailable.")

    totals_snapshot = dict(snapshot)
    totals_snapshot.update(
        version=snapshot.get("version") or ORDER_SNAPSHOT_VERSION,
        is_snapshot_locked=True,
        is_cart_detached=True,
        finalized_at=now.strftime("%Y-%m-%d %H:%M:%S"),
    )
    if fulfillment_type == "delivery" and address:
        totals_snapshot["address"] = {
            "version": "v1",
            "address_id": address.get("address_id"),
            "label": str(address.get("label") or ""),
            "lat": to_float(address.get("lat")),
            "lng": to_float(address.get("lng")),
            "frozen_at": now.strftime("%Y-%m-%d %H:%M:%S"),
        }

    cart_snapshot = build_cart_snapshot(hub, cart, now)
    coupon = snapshot.get("coupon") if isinstance(snapshot.get("coupon"), dict) else None
    delivery = snapshot.get("delivery") if isinstance(snapshot.get("delivery"), dict) else {}

    try:
        with transaction(db):
            if coupon:
                redeem_coupon_in_transaction(db, coupon.get("code"), snapshot.get("subtotal"), now=now)

            order = Order(
                order_number=_new_order_number(),
                hub_id=hub_id,
                city_id=hub.city_id,
                customer_id=customer_id,
                session_token=session_token,
                fulfillment_type=fulfillment_type,
                customer_name=customer.get("name"),
                customer_phone=customer.get("phone"),
                customer_email=customer.get("email"),
                delivery_address=(address or {}).get("label"),
                delivery_lat=to_float((address or {}).get("lat")) or None,
                delivery_lng=to_float((address or {}).get("lng")) or None,
                subtotal=to_float(snapshot.get("subtotal")),
                tax_amount=to_float(snapshot.get("tax_amount")),
                delivery_fee=to_float(delivery.get("delivery_fee", snapshot.get("delivery_fee"))),
                software_fee=to_float(snapshot.get("software_fee")),
                discount_amount=to_float(snapshot.get("discount_amount")),
                tip_amount=to_float(snapshot.get("tip_amount")),
                total=to_float(snapshot.get("total")),
                coupon_code=coupon.get("code") if coupon else None,
                status="placed",
                payment_status="pending",
                totals_snapshot=dump_json(totals_snapshot),
                cart_snapshot=dump_json(cart_snapshot),
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            db.add(order)
            db.flush()

            for item in cart_snapshot["items"]:
                db.add(OrderItem(
                    order_id=order.id,
                    item_id=item["item_id"],
                    name_snapshot=item["name_snapshot"],
                    image_snapshot=item["image_snapshot"],
                    quantity=item["quantity"],
                    unit_price=item["unit_price"],
                    total_price=item["line_total"],
                    modifiers_json=dump_json(item["modifiers"]) if item["modifiers"] else None,
                ))

            db.add(OrderStatusHistory(order_id=order.id, status="placed", changed_by=customer_id, created_at=now))

            detached = (
                db.query(Cart)
                .filter(Cart.id == cart.id, Cart.status != "converted")
                .update({Cart.status: "converted", Cart.updated_at: now}, synchronize_session="fetch")
            )
            if detached != 1:
                raise OrderCreationError("CART_DETACHMENT_FAILED", "Cart could not be detached.")

    except CouponRedemptionError as e:
        logger.info("Order for cart %s rejected, coupon no longer valid: %s", cart.id, e.reason)
        return _reject("COUPON_INVALID", e.message, coupon_reason=e.reason)
    except OrderCreationError as e:
        logger.error("Order creation rolled back for cart %s: %s", cart.id, e.reason)
        return _reject(e.reason, e.message)
    except Exception:
        logger.exception("Order creation failed for cart %s", cart.id)
        return _reject("ORDER_CREATION_FAILED", "Unable to create order.")

    logger.info(
        "Order finalized: order_id=%s order_number=%s hub_id=%s total=%.2f snapshot_version=%s",
        order.id,
        order.order_number,
        hub_id,
        order.total,
        totals_snapshot["version"],
    )
    return OrderCreationResult(
        success=True,
        reason="ORDER_CREATED",
        message="Order placed.",
        order_id=order.id,
        order_number=order.order_number,
    )
