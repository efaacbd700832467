"""
Helper Functions for Hub Engines
================================

Small shared utilities used by every engine module.

Key Functions:
--------------
- round_money: Round a currency amount to 2 decimals
- to_float / to_int: Lenient numeric coercion for loosely-typed inputs
- load_json: Decode a JSON text column without raising
- dump_json: Encode a snapshot for a JSON text column

Usage:
------
    from hub_engines.services.helpers import round_money, load_json

    fee = round_money(base_fee + distance_km * per_km_rate)
    intervals = load_json(hub.hours_monday)
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def round_money(amount: float) -> float:
    """Round to 2 decimal places for currency."""
    return round(amount, 2)


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a column value or request parameter to float."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def load_json(raw: Any) -> Optional[Any]:
    """
    Decode a JSON text column.

    Already-decoded lists and dicts are returned as-is. Empty input and
    malformed JSON both return None; callers decide what that means.
    """
    if raw is None:
        return None
    if isinstance(raw, (list, dict)):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.debug("Could not decode JSON column: %s", e)
        return None


def dump_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=False)
