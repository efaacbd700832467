"""
Configuration Module for Hub Engines
====================================

This module centralizes the environment variables and business constants the
decision engines depend on. Everything here is read once at import time and
exposed as typed module-level constants.

Configuration Categories:
-------------------------
- **Database**: Connection URL for the marketplace store (cities, hubs, zones,
  fee rules, coupons, carts, orders, payments).

- **Availability**: The closing-soon cutoff during which a hub that is still
  technically open refuses new orders.

- **Delivery ETA**: Prep time, average courier speed, traffic multiplier and
  rounding step used by the ETA estimate. These are business policy, so they
  are overridable per deployment.

- **Geo**: Earth radius constants, coordinate ranges and the ray-casting
  epsilon used to guard horizontal polygon edges.

- **Orders & Payments**: Snapshot schema version, duplicate-order window and
  default currency.

- **Schema Introspection**: TTL for the column-existence cache.

- **CORS Settings**: Allowed origins for the HTTP adapter.

Environment Variables:
----------------------
- DATABASE_URL: SQLAlchemy URL (default: "sqlite:///./hub_engines.db")
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: "INFO")
- AVAILABILITY_CUTOFF_MINUTES: Closing-soon window (default: 15)
- ETA_PREP_MINUTES: Kitchen prep time (default: 15)
- ETA_AVERAGE_SPEED_KMH: Courier speed (default: 30)
- ETA_TRAFFIC_FACTOR: Traffic multiplier (default: 1.2)
- ETA_ROUND_TO_MINUTES: ETA rounding step (default: 5)
- ORDER_IDEMPOTENCY_WINDOW_MINUTES: Duplicate-order window (default: 10)
- SCHEMA_CACHE_TTL_SECONDS: Column cache TTL (default: 300)
- CORS_ORIGINS: Comma-separated allowed origins (default: "*")

Usage:
------
    from hub_engines.config import (
        AVAILABILITY_CUTOFF_MINUTES,
        ETA_TRAFFIC_FACTOR,
        RAY_CASTING_EPSILON,
    )
"""

import os
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# Database
# =============================================================================

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./hub_engines.db")


# =============================================================================
# Availability
# =============================================================================
# Orders are refused inside this window before the active interval closes.

AVAILABILITY_CUTOFF_MINUTES: int = int(os.getenv("AVAILABILITY_CUTOFF_MINUTES", "15"))

# Used by the informational hours view when a hub has no timezone set.
# The order-gating availability decision never falls back to this.
DEFAULT_HUB_TIMEZONE: str = os.getenv("DEFAULT_HUB_TIMEZONE", "America/Chicago")


# =============================================================================
# Delivery ETA
# =============================================================================

ETA_PREP_MINUTES: int = int(os.getenv("ETA_PREP_MINUTES", "15"))
ETA_AVERAGE_SPEED_KMH: float = float(os.getenv("ETA_AVERAGE_SPEED_KMH", "30"))
ETA_TRAFFIC_FACTOR: float = float(os.getenv("ETA_TRAFFIC_FACTOR", "1.2"))
ETA_ROUND_TO_MINUTES: int = int(os.getenv("ETA_ROUND_TO_MINUTES", "5"))


# =============================================================================
# Geo
# =============================================================================

EARTH_RADIUS_KM: float = 6371.0
EARTH_RADIUS_MI: float = 3959.0
KM_PER_MILE: float = 1.609344

# Substituted for the denominator of a horizontal edge during ray casting
RAY_CASTING_EPSILON: float = 1e-12

LAT_RANGE: Tuple[float, float] = (-90.0, 90.0)
LNG_RANGE: Tuple[float, float] = (-180.0, 180.0)

# Stored coordinates are normalized to this many decimal places
COORD_PRECISION: int = 7


# =============================================================================
# Orders & Payments
# =============================================================================

ORDER_SNAPSHOT_VERSION: str = "v5"
ORDER_IDEMPOTENCY_WINDOW_MINUTES: int = int(os.getenv("ORDER_IDEMPOTENCY_WINDOW_MINUTES", "10"))
SUBTOTAL_TOLERANCE: float = 0.01
DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "usd").lower()
SNAPSHOT_CURRENCY: str = "USD"


# =============================================================================
# Schema Introspection
# =============================================================================

SCHEMA_CACHE_TTL_SECONDS: int = int(os.getenv("SCHEMA_CACHE_TTL_SECONDS", "300"))


# =============================================================================
# CORS Settings
# =============================================================================

_cors_env = os.getenv("CORS_ORIGINS", "*")
CORS_ORIGINS: List[str] = [o.strip() for o in _cors_env.split(",") if o.strip()] or ["*"]
