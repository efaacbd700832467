"""
Coupon Engine
=============

Validates a coupon code against a subtotal and computes the discount.

Validation Order:
-----------------
    empty code          -> invalid
    no such coupon      -> invalid
    status != active    -> inactive
    now < starts_at     -> not_started
    now > expires_at    -> expired
    used >= limit       -> limit_reached
    subtotal < minimum  -> min_subtotal
    unknown type        -> invalid_type
    otherwise           -> ok

Discount:
---------
``percent`` takes ``subtotal * value / 100`` with value clamped to [0, 100];
``fixed`` takes ``value`` (never below 0). The result is clamped to
[0, subtotal] so a coupon can never push an order below zero.

Locking:
--------
``resolve_coupon(..., lock=True)`` reads the coupon row ``FOR UPDATE``. That
only means something inside a transaction, which is how ``redeem_coupon``
uses it to serialize concurrent redemptions against ``usage_limit``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import CouponRedemptionError
from ..models import Coupon, utcnow
from .helpers import round_money, to_float

logger = logging.getLogger(__name__)

COUPON_TYPES = ("percent", "fixed")


@dataclass
class CouponResult:
    valid: bool
    reason: str
    message: str
    discount_amount: float = 0.0
    snapshot: Optional[Dict[str, Any]] = None
    coupon_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "message": self.message,
            "discount_amount": self.discount_amount,
            "snapshot": self.snapshot,
        }


def _reject(reason: str, message: str) -> CouponResult:
    return CouponResult(valid=False, reason=reason, message=message)


def _naive_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def normalize_code(code: Any) -> str:
    return str(code or "").strip().upper()


def evaluate_coupon(coupon: Optional[Coupon], subtotal: float, now: Optional[datetime] = None) -> CouponResult:
    """Run the validation chain against an already-loaded coupon row."""
    if coupon is None:
        return _reject("invalid", "Invalid coupon code.")

    if coupon.status != "active":
        return _reject("inactive", "This coupon is no longer active.")

    current = _naive_utc(now)
    if coupon.starts_at is not None and current < coupon.starts_at:
        return _reject("not_started", "This coupon is not yet active.")
    if coupon.expires_at is not None and current > coupon.expires_at:
        return _reject("expired", "This coupon has expired.")

    if coupon.usage_limit is not None and (coupon.used_count or 0) >= coupon.usage_limit:
        return _reject("limit_reached", "This coupon has reached its usage limit.")

    if coupon.min_subtotal is not None and subtotal < float(coupon.min_subtotal):
        return _reject(
            "min_subtotal",
            "Minimum order of $%.2f required for this coupon." % float(coupon.min_subtotal),
        )

    coupon_type = coupon.type or ""
    if coupon_type not in COUPON_TYPES:
        logger.warning("Coupon %s has invalid type %r", coupon.id, coupon_type)
        return _reject("invalid_type", "Coupon configuration invalid.")

    value = max(0.0, to_float(coupon.value))
    if coupon_type == "percent":
        value = min(value, 100.0)
        discount = round_money(subtotal * value / 100)
    else:
        discount = round_money(value)

    discount = max(0.0, min(discount, subtotal))

    snapshot = {
        "coupon_id": coupon.id,
        "code": coupon.code,
        "type": coupon_type,
        "value": value,
        "amount": discount,
        "applied_at": current.strftime("%Y-%m-%d %H:%M:%S"),
    }

    return CouponResult(
        valid=True,
        reason="ok",
        message="Coupon applied: $%.2f off" % discount,
        discount_amount=discount,
        snapshot=snapshot,
        coupon_id=coupon.id,
    )


def find_coupon(db: Session, code: str, lock: bool = False) -> Optional[Coupon]:
    query = db.query(Coupon).filter(func.upper(Coupon.code) == code)
    if lock:
        query = query.with_for_update()
    return query.first()


def resolve_coupon(
    db: Session,
    code: Any,
    subtotal: Any,
    lock: bool = False,
    now: Optional[datetime] = None,
) -> CouponResult:
    """
    Validate ``code`` for ``subtotal``.

    Never raises. A failed lookup is logged and reported as ``invalid``.

    Args:
        db: Database session
        code: Customer-entered code, matched case-insensitively
        subtotal: Cart subtotal the discount applies to
        lock: Read the coupon row FOR UPDATE (use inside a transaction)
        now: Evaluation time, defaults to the current UTC time
    """
    code = normalize_code(code)
    subtotal = max(0.0, to_float(subtotal))

    if not code:
        return _reject("invalid", "Coupon code is required.")

    try:
        coupon = find_coupon(db, code, lock=lock)
    except Exception:
        logger.exception("Coupon lookup failed for code %s", code)
        return _reject("invalid", "Invalid coupon code.")

    return evaluate_coupon(coupon, subtotal, now)


def redeem_coupon_in_transaction(db: Session, code: Any, subtotal: Any, now: Optional[datetime] = None) -> CouponResult:
    """
    Lock, re-validate and count one use of a coupon.

    Must run inside an open ``transaction()``. Raises CouponRedemptionError
    when the coupon no longer validates so the surrounding transaction rolls
    back.
    """
    result = resolve_coupon(db, code, subtotal, lock=True, now=now)
    if not result.valid:
        raise CouponRedemptionError(result.reason, result.message)

    coupon = db.query(Coupon).filter(Coupon.id == result.coupon_id).first()
    coupon.used_count = (coupon.used_count or 0) + 1
    db.flush()
    return result


def redeem_coupon(db: Session, code: Any, subtotal: Any, now: Optional[datetime] = None) -> CouponResult:
    """
    Redeem a coupon in its own transaction.

    Returns the validation result; ``used_count`` is only incremented when it
    is valid.
    """
    try:
        with transaction(db):
            result = redeem_coupon_in_transaction(db, code, subtotal, now=now)
    except CouponRedemptionError as e:
        logger.info("Coupon %s not redeemed: %s", normalize_code(code), e.reason)
        return _reject(e.reason, e.message)
    except Exception:
        logger.exception("Coupon redemption failed for code %s", normalize_code(code))
        return _reject("invalid", "Invalid coupon code.")

    logger.info("Coupon %s redeemed (coupon_id=%s)", normalize_code(code), result.coupon_id)
    return result
