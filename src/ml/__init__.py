"""
WasteWatch - Machine Learning Module
Waste detection on citizen photos via a remote YOLO model.
"""

from src.ml.verdict_cache import (
    FingerprintCache,
    fingerprint,
)
from src.ml.waste_classifier import (
    WasteClassifier,
    ClassificationVerdict,
    ClassificationError,
    ConfidenceTier,
    Detection,
    tier_for,
)

__all__ = [
    # Verdict Cache
    "FingerprintCache",
    "fingerprint",
    # Waste Classifier
    "WasteClassifier",
    "ClassificationVerdict",
    "ClassificationError",
    "ConfidenceTier",
    "Detection",
    "tier_for",
]
