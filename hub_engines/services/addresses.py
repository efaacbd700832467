"""
Customer Addresses
==================

Saved delivery addresses: coordinate normalization, one-line formatting for
order snapshots, and the customer's default address.

Which rows count as deleted depends on the table's marker columns; every read
here goes through the table's ``SoftDeleteStrategy`` (see
``hub_engines.schema_cache``), so a table without markers returns nothing.

Usage:
------
    cache = SchemaCache(engine)
    rows = list_addresses_for_customer(db, customer_id, cache=cache)
    set_default_address(db, customer_id, rows[-1].id, cache=cache)
"""

import logging
import math
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import COORD_PRECISION, LAT_RANGE, LNG_RANGE, SCHEMA_CACHE_TTL_SECONDS
from ..db import transaction
from ..errors import AddressNotFoundError
from ..models import CustomerAddress
from ..schema_cache import SchemaCache, SoftDeleteStrategy, get_schema_cache
from .helpers import to_int

logger = logging.getLogger(__name__)

ADDRESS_SEPARATOR = " • "
DEFAULT_COUNTRY = "USA"


def normalize_coords(lat: Any, lng: Any) -> Tuple[Optional[float], Optional[float]]:
    """
    Validate a coordinate pair.

    Returns ``(lat, lng)`` rounded to 7 decimals, or ``(None, None)`` when
    either value is missing, non-numeric, out of range, or both are 0 (the
    usual "never geocoded" placeholder).
    """
    if lat is None or lng is None or lat == "" or lng == "" or isinstance(lat, bool) or isinstance(lng, bool):
        return None, None
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return None, None

    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None, None
    if lat == 0.0 and lng == 0.0:
        return None, None
    if not (LAT_RANGE[0] <= lat <= LAT_RANGE[1]) or not (LNG_RANGE[0] <= lng <= LNG_RANGE[1]):
        return None, None

    return round(lat, COORD_PRECISION), round(lng, COORD_PRECISION)


def _raw(address: Any, name: str) -> Any:
    if isinstance(address, dict):
        return address.get(name)
    return getattr(address, name, None)


def _text(address: Any, name: str) -> str:
    value = _raw(address, name)
    return str(value).strip() if value is not None else ""


def format_one_line(address: Any) -> str:
    """
    "line1 • line2 • City, ST 12345 • Country" with empty parts skipped.

    Accepts a CustomerAddress or a dict. A missing country defaults to USA.
    """
    if not address:
        return ""

    parts = [p for p in (_text(address, "line1"), _text(address, "line2")) if p]

    city, state, postal = _text(address, "city"), _text(address, "state"), _text(address, "postal_code")
    city_line = city
    if state:
        city_line += ", " + state
    if postal:
        city_line += " " + postal
    city_line = city_line.strip(", ").strip()
    if city_line:
        parts.append(city_line)

    country = _text(address, "country") if _raw(address, "country") is not None else DEFAULT_COUNTRY
    if country:
        parts.append(country)

    return ADDRESS_SEPARATOR.join(parts)


def address_soft_delete(db: Session, cache: Optional[SchemaCache] = None) -> SoftDeleteStrategy:
    if cache is None:
        cache = get_schema_cache(db.get_bind(), ttl_seconds=SCHEMA_CACHE_TTL_SECONDS)
    return cache.soft_delete_strategy(CustomerAddress.__table__)


def list_addresses_for_customer(
    db: Session,
    customer_id: Any,
    cache: Optional[SchemaCache] = None,
) -> List[CustomerAddress]:
    """Active addresses for a customer, default first, then newest first."""
    customer_id = to_int(customer_id)
    if customer_id <= 0:
        return []

    strategy = address_soft_delete(db, cache)
    return (
        db.query(CustomerAddress)
        .filter(
            CustomerAddress.customer_id == customer_id,
            strategy.active_clause(CustomerAddress.__table__),
        )
        .order_by(CustomerAddress.is_default.desc(), CustomerAddress.id.desc())
        .all()
    )


def get_default_address(
    db: Session,
    customer_id: Any,
    cache: Optional[SchemaCache] = None,
) -> Optional[CustomerAddress]:
    customer_id = to_int(customer_id)
    if customer_id <= 0:
        return None

    strategy = address_soft_delete(db, cache)
    return (
        db.query(CustomerAddress)
        .filter(
            CustomerAddress.customer_id == customer_id,
            CustomerAddress.is_default.is_(True),
            strategy.active_clause(CustomerAddress.__table__),
        )
        .order_by(CustomerAddress.id.desc())
        .first()
    )


def set_default_address(
    db: Session,
    customer_id: Any,
    address_id: Any,
    cache: Optional[SchemaCache] = None,
) -> bool:
    """
    Make ``address_id`` the customer's only default address.

    The target row is locked and must belong to the customer and be active.
    Clearing the old default and setting the new one happen in one
    transaction, so a failure leaves the previous default in place.
    """
    customer_id = to_int(customer_id)
    address_id = to_int(address_id)
    if customer_id <= 0 or address_id <= 0:
        return False

    strategy = address_soft_delete(db, cache)

    try:
        with transaction(db):
            address = (
                db.query(CustomerAddress)
                .filter(CustomerAddress.id == address_id, CustomerAddress.customer_id == customer_id)
                .with_for_update()
                .first()
            )
            if address is None or not strategy.is_active(address):
                raise AddressNotFoundError("ADDRESS_NOT_FOUND")

            db.query(CustomerAddress).filter(
                CustomerAddress.customer_id == customer_id,
                CustomerAddress.id != address_id,
                CustomerAddress.is_default.is_(True),
            ).update({CustomerAddress.is_default: False}, synchronize_session="fetch")

            address.is_default = True
    except AddressNotFoundError:
        logger.info("Address %s not available as default for customer %s", address_id, customer_id)
        return False
    except Exception:
        logger.exception("Setting default address %s failed for customer %s", address_id, customer_id)
        return False

    logger.info("Customer %s default address set to %s", customer_id, address_id)
    return True
