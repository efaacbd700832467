"""
Coverage Schemas for Hub Engines
================================

Request and response models for POST /coverage/check.
"""

from typing import Optional

from pydantic import BaseModel, Field


class CoverageCheckRequest(BaseModel):
    """
    Location to check against a hub's delivery area.

    Example:
        {"hub_id": 1, "lat": 41.8781, "lng": -87.6298}
    """
    hub_id: int = Field(..., gt=0)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CoverageOut(BaseModel):
    ok: bool
    zone_id: Optional[int] = None
    reason: str
    zone_name: Optional[str] = None
    distance_mi: Optional[float] = None
    radius_mi: Optional[float] = None
