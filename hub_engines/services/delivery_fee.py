"""
Delivery Fee Engine
===================

Picks the delivery fee rule that applies to a hub (or one of its zones, or its
city) and computes the fee for a given distance and subtotal.

Rule Resolution:
----------------
One query over active rules matching the zone, the hub or the city, ordered by
a synthesized scope rank (zone 3, hub 2, city 1), then ``priority DESC``,
then ``id DESC``. The first row wins.

Fee Calculation:
----------------
Checked in this order once a rule is found:

1. distance_km > max_distance_km         -> MAX_DISTANCE_EXCEEDED (ok=False)
2. subtotal >= min_subtotal_free_delivery -> FREE_DELIVERY_SUBTOTAL (fee 0)
3. distance_km <= free_delivery_distance  -> FREE_DELIVERY_DISTANCE (fee 0)
4. Formula by fee_type:
     flat            flat_fee
     distance_based  base_fee + distance_km * per_km_rate
     tiered          same as distance_based for now
     subtotal_based  subtotal * subtotal_percentage / 100
   then clamped to [min_fee, max_fee] (each bound only when set and non-zero)
   and rounded to 2 decimals.

An unknown fee_type yields a zero fee.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from ..models import DeliveryFeeRule
from .helpers import round_money, to_float, to_int

logger = logging.getLogger(__name__)


class FeeReason(str, Enum):
    CALCULATED = "CALCULATED"
    FREE_DELIVERY_SUBTOTAL = "FREE_DELIVERY_SUBTOTAL"
    FREE_DELIVERY_DISTANCE = "FREE_DELIVERY_DISTANCE"
    MAX_DISTANCE_EXCEEDED = "MAX_DISTANCE_EXCEEDED"
    NO_RULE_FOUND = "NO_RULE_FOUND"
    INVALID_HUB_ID = "INVALID_HUB_ID"
    INVALID_INPUTS = "INVALID_INPUTS"


@dataclass(frozen=True)
class FeeResult:
    ok: bool
    reason: FeeReason
    fee: float = 0.0
    rule_id: Optional[int] = None
    rule_name: Optional[str] = None
    is_free: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "fee": self.fee,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "reason": self.reason.value,
            "is_free": self.is_free,
        }


def resolve_rule(
    db: Session,
    hub_id: int,
    zone_id: Optional[int] = None,
    city_id: Optional[int] = None,
) -> Optional[DeliveryFeeRule]:
    """Highest-ranked active rule for the zone/hub/city, or None."""
    scopes = [DeliveryFeeRule.hub_id == hub_id]
    if zone_id:
        scopes.append(DeliveryFeeRule.zone_id == zone_id)
    if city_id:
        # Known mis-scope: this also matches rules pinned to another hub in the
        # same city (hub_id=99, city_id=1); they rank 2 and beat the city rule.
        scopes.append(DeliveryFeeRule.city_id == city_id)

    scope_rank = case(
        (DeliveryFeeRule.zone_id.isnot(None), 3),
        (DeliveryFeeRule.hub_id.isnot(None), 2),
        (DeliveryFeeRule.city_id.isnot(None), 1),
        else_=0,
    )

    return (
        db.query(DeliveryFeeRule)
        .filter(DeliveryFeeRule.is_active.is_(True), or_(*scopes))
        .order_by(scope_rank.desc(), DeliveryFeeRule.priority.desc(), DeliveryFeeRule.id.desc())
        .first()
    )


def compute_rule_fee(rule: DeliveryFeeRule, distance_km: float, subtotal: float) -> float:
    """Raw fee for ``rule`` before free-delivery checks, clamped and rounded."""
    fee_type = rule.fee_type or "flat"

    if fee_type == "flat":
        fee = to_float(rule.flat_fee)
    elif fee_type in ("distance_based", "tiered"):
        # Tiered pricing is not modelled separately yet
        fee = to_float(rule.base_fee) + distance_km * to_float(rule.per_km_rate)
    elif fee_type == "subtotal_based":
        fee = subtotal * to_float(rule.subtotal_percentage) / 100
    else:
        logger.warning("Fee rule %s has unknown fee_type %r", rule.id, fee_type)
        fee = 0.0

    min_fee = to_float(rule.min_fee)
    max_fee = to_float(rule.max_fee)
    if min_fee and fee < min_fee:
        fee = min_fee
    if max_fee and fee > max_fee:
        fee = max_fee

    return round_money(fee)


def apply_fee_rule(rule: DeliveryFeeRule, distance_km: float, subtotal: float) -> FeeResult:
    min_subtotal_free = to_float(rule.min_subtotal_free_delivery)
    free_distance = to_float(rule.free_delivery_distance)

    if min_subtotal_free and subtotal >= min_subtotal_free:
        return FeeResult(
            ok=True,
            reason=FeeReason.FREE_DELIVERY_SUBTOTAL,
            rule_id=rule.id,
            rule_name=rule.rule_name,
            is_free=True,
        )

    if free_distance and distance_km <= free_distance:
        return FeeResult(
            ok=True,
            reason=FeeReason.FREE_DELIVERY_DISTANCE,
            rule_id=rule.id,
            rule_name=rule.rule_name,
            is_free=True,
        )

    return FeeResult(
        ok=True,
        reason=FeeReason.CALCULATED,
        fee=compute_rule_fee(rule, distance_km, subtotal),
        rule_id=rule.id,
        rule_name=rule.rule_name,
    )


def calculate_fee(
    db: Session,
    hub_id: Any,
    distance_km: Any,
    subtotal: Any,
    zone_id: Optional[int] = None,
    city_id: Optional[int] = None,
) -> FeeResult:
    """
    Delivery fee for a hub at ``distance_km`` with ``subtotal`` in the cart.

    Never raises. A failed rule lookup is logged and reported as NO_RULE_FOUND.
    """
    hub_id = to_int(hub_id)
    distance_km = to_float(distance_km)
    subtotal = to_float(subtotal)

    if hub_id <= 0:
        return FeeResult(ok=False, reason=FeeReason.INVALID_HUB_ID)
    if distance_km < 0 or subtotal < 0:
        return FeeResult(ok=False, reason=FeeReason.INVALID_INPUTS)

    try:
        rule = resolve_rule(db, hub_id, zone_id=zone_id, city_id=city_id)
    except Exception:
        logger.exception("Fee rule lookup failed for hub %s", hub_id)
        rule = None

    if rule is None:
        return FeeResult(ok=False, reason=FeeReason.NO_RULE_FOUND)

    max_distance = to_float(rule.max_distance_km)
    if max_distance and distance_km > max_distance:
        return FeeResult(
            ok=False,
            reason=FeeReason.MAX_DISTANCE_EXCEEDED,
            rule_id=rule.id,
            rule_name=rule.rule_name,
        )

    return apply_fee_rule(rule, distance_km, subtotal)
