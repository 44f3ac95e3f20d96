"""
WasteWatch - Constants and Reference Data
Static values used throughout the application.
"""

from typing import Dict, Tuple

# =============================================================================
# WASTE DETECTOR
# =============================================================================

# Class id the detector assigns to waste (class 0 is non-waste)
WASTE_CLASS_ID: int = 1

# Fixed inference parameters sent with every detection request
DETECTOR_IMAGE_SIZE: int = 640
DETECTOR_CONFIDENCE_FLOOR: float = 0.25
DETECTOR_IOU_THRESHOLD: float = 0.45

DETECTOR_MODEL_VERSION: str = "YOLOv8"

# =============================================================================
# CONFIDENCE THRESHOLDS
# =============================================================================

# Minimum max-confidence for a verdict to count as waste at all
WASTE_THRESHOLD: float = 0.25

# Tier boundaries: [0, 0.65) unverified, [0.65, 0.85) medium, [0.85, 1] high
MEDIUM_CONFIDENCE_THRESHOLD: float = 0.65
HIGH_CONFIDENCE_THRESHOLD: float = 0.85

# Admission gate, independent of (and stricter than) the medium tier boundary
ADMISSION_MIN_CONFIDENCE: float = 0.70

# =============================================================================
# GEOGRAPHIC LIMITS
# =============================================================================

LATITUDE_RANGE: Tuple[float, float] = (-90.0, 90.0)
LONGITUDE_RANGE: Tuple[float, float] = (-180.0, 180.0)

# =============================================================================
# POINTS
# =============================================================================

POINTS_BY_CATEGORY: Dict[str, int] = {
    "standard": 10,
    "hazardous": 20,
    "large": 15,
}

DEFAULT_POINTS: int = 10

# =============================================================================
# PAGINATION
# =============================================================================

DEFAULT_PAGE_SIZE: int = 10
MAX_PAGE_SIZE: int = 100

# Number of recent resolutions shown on a supervisor profile
PROFILE_RECENT_RESOLVED: int = 10
