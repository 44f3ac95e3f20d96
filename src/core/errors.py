"""
WasteWatch - Error Taxonomy
Every failure carries a stable machine-readable code plus a human message.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes consumers program against."""

    # Input validation
    MISSING_FIELDS = "MISSING_FIELDS"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    INVALID_IMAGE_FORMAT = "INVALID_IMAGE_FORMAT"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    INVALID_COORDINATES_RANGE = "INVALID_COORDINATES_RANGE"
    INVALID_CATEGORY = "INVALID_CATEGORY"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_PAGINATION = "INVALID_PAGINATION"

    # Verification rejection
    NOT_WASTE = "NOT_WASTE"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"

    # Upstream unavailability
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SERVICE_TIMEOUT = "SERVICE_TIMEOUT"
    SERVICE_DOWN = "SERVICE_DOWN"
    SERVICE_ERROR = "SERVICE_ERROR"

    # Storage
    CLOUDINARY_TIMEOUT = "CLOUDINARY_TIMEOUT"
    CLOUDINARY_ERROR = "CLOUDINARY_ERROR"

    # Persistence
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Access
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_OWNER = "NOT_OWNER"

    # Lifecycle
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_IN_STATE = "ALREADY_IN_STATE"
    STALE_STATE = "STALE_STATE"
    REPORT_LOCKED = "REPORT_LOCKED"

    # Server
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class WasteWatchError(Exception):
    """Base class for failures surfaced to API consumers."""

    status_code: int = 500

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a response body."""
        body: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self):
        return f"<{type(self).__name__}({self.code.value}: {self.message})>"


class SubmissionValidationError(WasteWatchError):
    """Missing, malformed or out-of-range input."""
    status_code = 400


class VerificationRejected(WasteWatchError):
    """The photo did not pass waste verification."""
    status_code = 400


class ServiceUnavailable(WasteWatchError):
    """The classification service could not produce a verdict."""
    status_code = 503


class StorageTimeout(WasteWatchError):
    """The image upload lost the race against its deadline."""
    status_code = 504


class StorageError(WasteWatchError):
    """The image upload failed."""
    status_code = 500


class PersistenceValidationError(WasteWatchError):
    """A document violated a store schema constraint."""
    status_code = 400


class NotFoundError(WasteWatchError):
    status_code = 404


class AuthenticationError(WasteWatchError):
    status_code = 401


class PermissionDenied(WasteWatchError):
    status_code = 403


class InvalidTransition(WasteWatchError):
    """The report's current state does not permit the transition."""
    status_code = 409


class StaleStateError(WasteWatchError):
    """The report changed state between read and conditional update."""
    status_code = 409
