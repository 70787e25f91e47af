"""
Geographic Calculations

Great-circle distance between GPS fixes, used to decide whether a vehicle
has moved far enough for its state to be worth persisting.
"""

from math import asin, cos, radians, sin, sqrt
from typing import Optional

from .constants import EARTH_RADIUS_METERS


def haversine_distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two GPS coordinates in meters.

    Examples:
        >>> round(haversine_distance_meters(40.7128, -74.0060, 51.5074, -0.1278) / 1000)
        5570
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))

    return EARTH_RADIUS_METERS * c


def distance_between_fixes(
    lat1: Optional[float], lon1: Optional[float], lat2: Optional[float], lon2: Optional[float]
) -> Optional[float]:
    """Distance in meters, or None when either fix is incomplete."""
    if None in (lat1, lon1, lat2, lon2):
        return None
    return haversine_distance_meters(lat1, lon1, lat2, lon2)
