"""
Tax calculation.

Sales tax is a single percentage configured per hub (``hubs.tax_rate``). The
caller decides what is taxable: fees that must not be taxed, the software fee
in particular, are left out of ``tax_base`` before calling. This module never
looks at how the base was built.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models import Hub
from .helpers import round_money, to_float, to_int

logger = logging.getLogger(__name__)

TAX_SOURCE = "hub_setting"


@dataclass(frozen=True)
class TaxResult:
    """Resolved tax for one base amount."""

    applied: bool
    amount: float
    rate: float
    hub_id: Optional[int]
    source: str = TAX_SOURCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "amount": self.amount,
            "rate": self.rate,
            "source": self.source,
            "hub_id": self.hub_id,
        }


def calculate_tax(tax_base: float, rate: float) -> float:
    """
    Tax on ``tax_base`` at ``rate`` percent, rounded to cents and never negative.

    Args:
        tax_base: Taxable amount
        rate: Percentage, e.g. 8.25

    Returns:
        Tax amount
    """
    if tax_base <= 0 or rate <= 0:
        return 0.0
    return max(0.0, round_money(tax_base * rate / 100))


def resolve_tax(db: Session, tax_base: Any, hub_id: Any) -> TaxResult:
    """
    Tax for ``tax_base`` using the rate of an active hub.

    A non-positive base, a missing or inactive hub, or a lookup error all
    produce a zero, not-applied result.
    """
    hub_id = to_int(hub_id)
    tax_base = to_float(tax_base)

    if hub_id <= 0 or tax_base <= 0:
        return TaxResult(applied=False, amount=0.0, rate=0.0, hub_id=hub_id or None)

    try:
        hub = db.query(Hub).filter(Hub.id == hub_id, Hub.status == "active").first()
    except Exception:
        logger.exception("Tax rate lookup failed for hub %s", hub_id)
        hub = None

    if hub is None:
        return TaxResult(applied=False, amount=0.0, rate=0.0, hub_id=hub_id)

    rate = max(0.0, to_float(hub.tax_rate))
    amount = calculate_tax(tax_base, rate)

    return TaxResult(applied=amount > 0, amount=amount, rate=rate, hub_id=hub_id)
