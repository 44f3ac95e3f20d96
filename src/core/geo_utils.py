"""
WasteWatch - Geospatial Utilities
Common geospatial calculations for report locations.
"""

import math
from typing import Tuple
from dataclasses import dataclass

from src.core.constants import LATITUDE_RANGE, LONGITUDE_RANGE

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Point:
    """Geographic point with latitude and longitude."""
    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return is_valid_latitude(self.latitude) and is_valid_longitude(self.longitude)

    def to_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_tuple_lonlat(self) -> Tuple[float, float]:
        """Return as (longitude, latitude) for GeoJSON compatibility."""
        return (self.longitude, self.latitude)

    def to_geojson(self) -> dict:
        return {"type": "Point", "coordinates": list(self.to_tuple_lonlat())}


def is_valid_latitude(latitude: float) -> bool:
    return LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]


def is_valid_longitude(longitude: float) -> bool:
    return LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates in decimal degrees
        lat2, lon2: Second point coordinates in decimal degrees

    Returns:
        Distance in kilometers
    """
    # Convert to radians
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_between(a: Point, b: Point) -> float:
    """Great-circle distance between two points in meters."""
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude) * 1000
