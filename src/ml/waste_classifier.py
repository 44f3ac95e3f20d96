"""
Waste classifier client for citizen-submitted photos
Calls a remote YOLO detection endpoint and normalizes its verdict

API Documentation: https://docs.ultralytics.com/hub/inference-api/
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from src.core.constants import (
    WASTE_CLASS_ID,
    DETECTOR_IMAGE_SIZE,
    DETECTOR_CONFIDENCE_FLOOR,
    DETECTOR_IOU_THRESHOLD,
    DETECTOR_MODEL_VERSION,
    WASTE_THRESHOLD,
    MEDIUM_CONFIDENCE_THRESHOLD,
    HIGH_CONFIDENCE_THRESHOLD,
)
from src.core.deadline import DeadlineExceeded, call_with_deadline
from src.core.errors import ErrorCode
from src.ml.verdict_cache import FingerprintCache, fingerprint

logger = logging.getLogger(__name__)


class ConfidenceTier(str, Enum):
    """Confidence bucket of a verdict."""
    UNVERIFIED = "unverified"
    MEDIUM = "medium"
    HIGH = "high"


def tier_for(confidence: float) -> ConfidenceTier:
    """Bucket a confidence score, regardless of whether it counts as waste."""
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceTier.HIGH
    if confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.UNVERIFIED


@dataclass(frozen=True)
class Detection:
    """Single object detected in the image."""
    class_id: int
    confidence: float
    name: Optional[str] = None

    @property
    def is_waste(self) -> bool:
        return self.class_id == WASTE_CLASS_ID


@dataclass(frozen=True)
class ClassificationVerdict:
    """
    Normalized output of the waste detector.

    Attributes:
        is_waste: Max waste confidence reached the waste threshold
        confidence: Max confidence among waste detections (0 if none)
        tier: Confidence bucket
        model_version: Detector model family
    """
    is_waste: bool
    confidence: float
    tier: ConfidenceTier
    model_version: str = DETECTOR_MODEL_VERSION

    @property
    def label(self) -> str:
        return "waste" if self.is_waste else "non-waste"

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence >= HIGH_CONFIDENCE_THRESHOLD

    @property
    def is_verified_waste(self) -> bool:
        return self.is_waste and self.is_high_confidence

    def snapshot(self) -> Dict[str, Any]:
        """Verification fields embedded on a report."""
        return {
            "is_waste": self.is_waste,
            "confidence": self.confidence,
            "tier": self.tier.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_waste": self.is_waste,
            "label": self.label,
            "confidence": self.confidence,
            "tier": self.tier.value,
            "is_high_confidence": self.is_high_confidence,
            "is_verified_waste": self.is_verified_waste,
            "model_version": self.model_version,
        }


class ClassificationError(Exception):
    """
    Typed failure of a classification call.

    Attributes:
        code: SERVICE_TIMEOUT, SERVICE_DOWN or SERVICE_ERROR
        upstream_status: HTTP status returned by the detector, if any
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        upstream_status: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.upstream_status = upstream_status

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


def extract_detections(payload: Dict[str, Any]) -> List[Detection]:
    """
    Extract a flat detection list from either known response shape.

    Shapes:
        {"images": [{"results": [...]}]}
        {"predictions": [{"detections": [...]}]}

    Raises:
        ValueError: If the detections field is present but not a list
    """
    raw: Any = None

    images = payload.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        raw = images[0].get("results")

    if not raw:
        predictions = payload.get("predictions")
        if isinstance(predictions, list) and predictions and isinstance(predictions[0], dict):
            raw = predictions[0].get("detections")

    if not raw:
        return []

    if not isinstance(raw, list):
        raise ValueError(f"Unexpected detections type: {type(raw).__name__}")

    detections = []
    for item in raw:
        try:
            detections.append(Detection(
                class_id=int(item["class"]),
                confidence=float(item["confidence"]),
                name=item.get("name"),
            ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to parse detection {item!r}: {e}")
            continue

    return detections


def build_verdict(detections: List[Detection]) -> ClassificationVerdict:
    """Reduce detections to a verdict using the max waste-class confidence."""
    waste_scores = [d.confidence for d in detections if d.is_waste]
    confidence = max(waste_scores) if waste_scores else 0.0

    return ClassificationVerdict(
        is_waste=confidence >= WASTE_THRESHOLD,
        confidence=confidence,
        tier=tier_for(confidence),
    )


class WasteClassifier:
    """
    Client for the remote waste detection endpoint.

    Usage:
        classifier = WasteClassifier(api_key="your_key")
        verdict = classifier.classify(image_bytes)

    Every call is bounded by a wall-clock deadline. Successful verdicts are
    cached by image fingerprint, so identical bytes within the cache TTL
    never reach the detector twice.
    """

    DEFAULT_ENDPOINT = "https://predict.ultralytics.com"

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = DEFAULT_ENDPOINT,
        model_url: str = "",
        timeout: float = 30.0,
        cache: Optional[FingerprintCache[ClassificationVerdict]] = None,
        executor: Optional[Executor] = None,
        http_client: Optional[httpx.Client] = None
    ):
        """
        Initialize classifier.

        Args:
            api_key: Detector API key sent as x-api-key
            endpoint: Detection endpoint URL
            model_url: Model identifier sent with each request
            timeout: Wall-clock deadline in seconds
            cache: Verdict cache; no caching when None
            executor: Executor running the deadline-bounded request
            http_client: Preconfigured HTTP client (tests inject a mock transport)
        """
        self.api_key = api_key
        self.endpoint = endpoint
        self.model_url = model_url
        self.timeout = timeout
        self.cache = cache

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="classifier"
        )
        self._client = http_client or httpx.Client(timeout=timeout)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        self._client.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def classify(
        self,
        image_data: bytes,
        filename: str = "image.jpg",
        content_type: str = "image/jpeg"
    ) -> ClassificationVerdict:
        """
        Classify an image as waste or non-waste.

        Args:
            image_data: Decoded image bytes
            filename: File name of the multipart part
            content_type: MIME type of the image

        Returns:
            ClassificationVerdict

        Raises:
            ClassificationError: On timeout, connection failure or bad response
        """
        key = fingerprint(image_data)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Verdict cache hit for {key[:12]}")
                return cached

        if not self.api_key:
            raise ClassificationError(
                ErrorCode.SERVICE_ERROR, "Detector API key not configured"
            )

        try:
            payload = call_with_deadline(
                self._executor,
                self._request,
                image_data,
                filename,
                content_type,
                timeout=self.timeout,
            )
        except DeadlineExceeded:
            logger.warning(f"Detector call exceeded {self.timeout}s deadline")
            raise ClassificationError(
                ErrorCode.SERVICE_TIMEOUT,
                f"Detector did not respond within {self.timeout}s",
            )

        try:
            detections = extract_detections(payload)
        except ValueError as e:
            raise ClassificationError(ErrorCode.SERVICE_ERROR, f"Malformed response: {e}")

        verdict = build_verdict(detections)

        if self.cache is not None:
            self.cache.put(key, verdict)

        logger.info(
            f"Classified {key[:12]}: {verdict.label} "
            f"(confidence={verdict.confidence:.3f}, tier={verdict.tier.value})"
        )

        return verdict

    def _request(
        self,
        image_data: bytes,
        filename: str,
        content_type: str
    ) -> Dict[str, Any]:
        """POST the image and return the decoded JSON body."""
        data = {
            "model": self.model_url,
            "imgsz": str(DETECTOR_IMAGE_SIZE),
            "conf": str(DETECTOR_CONFIDENCE_FLOOR),
            "iou": str(DETECTOR_IOU_THRESHOLD),
        }
        files = {"file": (filename, image_data, content_type)}

        try:
            response = self._client.post(
                self.endpoint,
                headers={"x-api-key": self.api_key},
                data=data,
                files=files,
            )
        except httpx.TimeoutException as e:
            raise ClassificationError(ErrorCode.SERVICE_TIMEOUT, f"Detector timed out: {e}")
        except httpx.ConnectError as e:
            logger.error(f"Detector unreachable: {e}")
            raise ClassificationError(ErrorCode.SERVICE_DOWN, f"Detector unreachable: {e}")
        except httpx.HTTPError as e:
            raise ClassificationError(ErrorCode.SERVICE_ERROR, str(e))

        if not response.is_success:
            logger.error(f"Detector returned {response.status_code}")
            raise ClassificationError(
                ErrorCode.SERVICE_ERROR,
                f"API_ERROR: {response.status_code} - {response.text}",
                upstream_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise ClassificationError(
                ErrorCode.SERVICE_ERROR,
                "Detector returned a non-JSON body",
                upstream_status=response.status_code,
            )

        if not isinstance(payload, dict):
            raise ClassificationError(
                ErrorCode.SERVICE_ERROR,
                "Detector returned an unexpected JSON document",
                upstream_status=response.status_code,
            )

        return payload
