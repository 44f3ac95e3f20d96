"""
Submission validation for crowdsourced waste reports
Checks required fields, image payload and coordinates before verification
"""

import base64
import binascii
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from src.core.constants import LATITUDE_RANGE, LONGITUDE_RANGE
from src.core.errors import ErrorCode, SubmissionValidationError
from src.core.geo_utils import is_valid_latitude, is_valid_longitude
from src.crowdsource.models import ReportCategory, utcnow

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:(image/\w+);base64,")
BASE64_IMAGE = re.compile(r"^(data:image/\w+;base64,)?[A-Za-z0-9+/=]+$")

DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024


@dataclass
class ReportSubmission:
    """Raw report fields as received from a client."""
    title: Optional[str] = None
    image: Optional[str] = None
    details: Optional[str] = None
    address: Optional[str] = None
    latitude: Any = None
    longitude: Any = None
    photo_timestamp: Any = None
    category: Optional[str] = None
    force_submit: bool = False


@dataclass
class ValidatedSubmission:
    """Submission that passed every input check."""
    title: str
    details: str
    address: str
    latitude: float
    longitude: float
    image_data: bytes
    content_type: str
    photo_timestamp: datetime
    category: ReportCategory
    force_submit: bool = False

    @property
    def image_size(self) -> int:
        return len(self.image_data)


def strip_data_url(image: str) -> str:
    """Remove an optional data:image/...;base64, prefix."""
    return DATA_URL_PREFIX.sub("", image, count=1)


def decoded_size(image: str) -> int:
    """Byte size the base64 payload decodes to, without decoding it."""
    raw = strip_data_url(image)
    padding = len(raw) - len(raw.rstrip("="))
    return max(0, len(raw) * 3 // 4 - min(padding, 2))


def decode_image(image: str) -> bytes:
    """
    Decode a base64 (optionally data-URL prefixed) image.

    Raises:
        SubmissionValidationError: INVALID_IMAGE_FORMAT
    """
    if not isinstance(image, str) or not BASE64_IMAGE.match(image):
        raise SubmissionValidationError(ErrorCode.INVALID_IMAGE_FORMAT, "Invalid image format")

    raw = strip_data_url(image)
    raw += "=" * (-len(raw) % 4)

    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise SubmissionValidationError(ErrorCode.INVALID_IMAGE_FORMAT, "Invalid image format")


def parse_coordinate(value: Any) -> Optional[float]:
    """Parse a coordinate from a number or numeric string. None if not numeric."""
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    if math.isnan(number) or math.isinf(number):
        return None

    return number


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class SubmissionValidator:
    """
    Validates raw report submissions.

    Checks run in a fixed order so each failure names the stage that
    rejected the input: required fields, image size, image format,
    coordinates, then category and timestamp.
    """

    def __init__(
        self,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize validator.

        Args:
            max_image_bytes: Largest accepted decoded image size (inclusive)
            clock: Source of the default photo timestamp
        """
        self.max_image_bytes = max_image_bytes
        self._clock = clock

    def validate(self, submission: ReportSubmission) -> ValidatedSubmission:
        """
        Validate a submission.

        Args:
            submission: Raw client fields

        Returns:
            ValidatedSubmission with decoded image and parsed coordinates

        Raises:
            SubmissionValidationError: On the first failing stage
        """
        self._check_required(submission)

        if not isinstance(submission.image, str):
            raise SubmissionValidationError(ErrorCode.INVALID_IMAGE_FORMAT, "Invalid image format")

        size = decoded_size(submission.image)
        if size > self.max_image_bytes:
            raise SubmissionValidationError(
                ErrorCode.IMAGE_TOO_LARGE,
                f"Image too large (max {self.max_image_bytes // (1024 * 1024)}MB)",
                details={"size_bytes": size, "max_bytes": self.max_image_bytes},
                status_code=413,
            )

        image_data = decode_image(submission.image)
        latitude, longitude = self._parse_location(submission.latitude, submission.longitude)

        match = DATA_URL_PREFIX.match(submission.image)
        content_type = match.group(1) if match else "image/jpeg"

        return ValidatedSubmission(
            title=submission.title.strip(),
            details=submission.details.strip(),
            address=submission.address.strip(),
            latitude=latitude,
            longitude=longitude,
            image_data=image_data,
            content_type=content_type,
            photo_timestamp=self._parse_timestamp(submission.photo_timestamp),
            category=self._parse_category(submission.category),
            force_submit=bool(submission.force_submit),
        )

    def _check_required(self, submission: ReportSubmission) -> None:
        missing: List[str] = [
            name for name in ("title", "image", "details", "address")
            if _blank(getattr(submission, name))
        ]
        if _blank(submission.latitude) or _blank(submission.longitude):
            missing.append("location")

        if missing:
            raise SubmissionValidationError(
                ErrorCode.MISSING_FIELDS,
                f"Missing required fields: {', '.join(missing)}",
                details={"missing_fields": missing},
            )

    def _parse_location(self, latitude: Any, longitude: Any):
        lat = parse_coordinate(latitude)
        lon = parse_coordinate(longitude)

        if lat is None or lon is None:
            raise SubmissionValidationError(ErrorCode.INVALID_COORDINATES, "Invalid coordinates")

        if not is_valid_latitude(lat) or not is_valid_longitude(lon):
            raise SubmissionValidationError(
                ErrorCode.INVALID_COORDINATES_RANGE,
                "Coordinates out of valid range",
                details={
                    "valid_latitude_range": list(LATITUDE_RANGE),
                    "valid_longitude_range": list(LONGITUDE_RANGE),
                    "received": {"latitude": lat, "longitude": lon},
                },
            )

        return lat, lon

    def _parse_category(self, category: Optional[str]) -> ReportCategory:
        if _blank(category):
            return ReportCategory.STANDARD
        try:
            return ReportCategory(category)
        except ValueError:
            raise SubmissionValidationError(
                ErrorCode.INVALID_CATEGORY,
                f"Unknown report category: {category}",
                details={"valid_categories": [c.value for c in ReportCategory]},
            )

    def _parse_timestamp(self, value: Any) -> datetime:
        if _blank(value):
            return self._clock()

        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            except ValueError:
                raise SubmissionValidationError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Invalid photo timestamp: {value}",
                    details={"field": "photo_timestamp"},
                )

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


def validate_submission(
    submission: ReportSubmission,
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
) -> ValidatedSubmission:
    """
    Convenience function to validate a submission.

    Args:
        submission: Raw client fields
        max_image_bytes: Largest accepted decoded image size

    Returns:
        ValidatedSubmission
    """
    return SubmissionValidator(max_image_bytes=max_image_bytes).validate(submission)
