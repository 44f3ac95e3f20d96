"""
WasteWatch - Core Utilities
Central configuration, error taxonomy, and utility functions.
"""

from src.core.config import settings
from src.core.constants import (
    WASTE_THRESHOLD,
    MEDIUM_CONFIDENCE_THRESHOLD,
    HIGH_CONFIDENCE_THRESHOLD,
    ADMISSION_MIN_CONFIDENCE,
)
from src.core.errors import ErrorCode, WasteWatchError
from src.core.geo_utils import (
    Point,
    haversine_distance,
    distance_between,
)

__all__ = [
    "settings",
    "WASTE_THRESHOLD",
    "MEDIUM_CONFIDENCE_THRESHOLD",
    "HIGH_CONFIDENCE_THRESHOLD",
    "ADMISSION_MIN_CONFIDENCE",
    "ErrorCode",
    "WasteWatchError",
    "Point",
    "haversine_distance",
    "distance_between",
]
