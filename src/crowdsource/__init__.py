"""
WasteWatch - Crowdsource Module
Citizen waste reports, submission validation and report lifecycle.

Admission, lifecycle and the report handler are imported from their
own modules; they depend on the database package, which depends on
the models exported here.
"""

from src.crowdsource.models import (
    Report,
    ReportCategory,
    ReportStatus,
    User,
    UserRole,
    points_for,
)
from src.crowdsource.validation import (
    ReportSubmission,
    SubmissionValidator,
    ValidatedSubmission,
    validate_submission,
)

__all__ = [
    # Models
    "Report",
    "ReportCategory",
    "ReportStatus",
    "User",
    "UserRole",
    "points_for",
    # Validation
    "ReportSubmission",
    "SubmissionValidator",
    "ValidatedSubmission",
    "validate_submission",
]
