"""
Admission controller for waste report submissions

Orchestrates: Validation → Classification → Confidence gate → Upload → Persist → Points
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from src.core.constants import ADMISSION_MIN_CONFIDENCE
from src.core.errors import ErrorCode, ServiceUnavailable, VerificationRejected
from src.crowdsource.models import Report, ReportStatus, new_id, points_for, utcnow
from src.crowdsource.validation import ReportSubmission, SubmissionValidator, ValidatedSubmission
from src.database.repository import ReportRepository, UserRepository
from src.ml.waste_classifier import ClassificationError, ClassificationVerdict, WasteClassifier
from src.storage.object_storage import StoredObject
from src.storage.uploader import BoundedUploader

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    """Outcome of a successful submission."""
    report: Report
    points_earned: int
    classification: Optional[ClassificationVerdict] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report": self.report.to_dict(),
            "points_earned": self.points_earned,
            "classification": self.classification.to_dict() if self.classification else None,
        }


class AdmissionController:
    """
    Decides whether a submitted report is persisted.

    Dependency Injection: every collaborator comes through the constructor.
    Only admitted reports reach object storage, and the report document is
    created in a single write after the upload succeeds.
    """

    def __init__(
        self,
        classifier: WasteClassifier,
        uploader: BoundedUploader,
        reports: ReportRepository,
        users: UserRepository,
        validator: Optional[SubmissionValidator] = None,
        min_confidence: float = ADMISSION_MIN_CONFIDENCE,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id
    ):
        self.classifier = classifier
        self.uploader = uploader
        self.reports = reports
        self.users = users
        self.validator = validator or SubmissionValidator()
        self.min_confidence = min_confidence
        self._clock = clock
        self._new_id = id_factory

    def admit(self, user_id: str, submission: ReportSubmission) -> AdmissionResult:
        """
        Run the admission pipeline.

        1. Input validation: fields, image size, image format, coordinates
        2. Classification: skipped when force_submit is set
        3. Confidence gate: NOT_WASTE / LOW_CONFIDENCE
        4. Upload raced against its deadline
        5. Persist as pending
        6. Award points (best-effort)

        Raises:
            WasteWatchError: Subclass naming the stage that rejected the submission
        """
        validated = self.validator.validate(submission)

        verdict = None
        if validated.force_submit:
            logger.info(f"Classification bypassed by force submit from user {user_id}")
        else:
            verdict = self._verify(validated)

        stored = self.uploader.upload(validated.image_data)
        report = self._persist(user_id, validated, stored, verdict)
        points = self._award_points(user_id, report)

        return AdmissionResult(report=report, points_earned=points, classification=verdict)

    def _verify(self, validated: ValidatedSubmission) -> ClassificationVerdict:
        try:
            verdict = self.classifier.classify(
                validated.image_data, content_type=validated.content_type
            )
        except ClassificationError as e:
            logger.warning(f"Waste verification unavailable: {e}")
            raise ServiceUnavailable(
                ErrorCode.SERVICE_UNAVAILABLE,
                "Waste verification service unavailable",
                details={"error": str(e), "reason": e.code.value},
            )

        if not verdict.is_waste:
            logger.info(f"Rejected submission: not waste (confidence={verdict.confidence:.3f})")
            raise VerificationRejected(
                ErrorCode.NOT_WASTE,
                "Image does not show recognizable waste",
                details={"classification": verdict.to_dict()},
            )

        if verdict.confidence < self.min_confidence:
            logger.info(f"Rejected submission: low confidence ({verdict.confidence:.3f})")
            raise VerificationRejected(
                ErrorCode.LOW_CONFIDENCE,
                "Low confidence in waste detection",
                details={"classification": verdict.to_dict()},
            )

        return verdict

    def _persist(
        self,
        user_id: str,
        validated: ValidatedSubmission,
        stored: StoredObject,
        verdict: Optional[ClassificationVerdict]
    ) -> Report:
        now = self._clock()
        report = Report(
            id=self._new_id(),
            user_id=user_id,
            title=validated.title,
            details=validated.details,
            address=validated.address,
            latitude=validated.latitude,
            longitude=validated.longitude,
            image_url=stored.url,
            public_id=stored.public_id,
            photo_timestamp=validated.photo_timestamp,
            category=validated.category,
            ai_verification=verdict.snapshot() if verdict else None,
            status=ReportStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        try:
            saved = self.reports.create(report)
        except Exception:
            # The photo belongs to no report now
            self.uploader.discard(stored.public_id)
            raise

        logger.info(f"Admitted report {saved.id} from user {user_id} [{saved.category.value}]")
        return saved

    def _award_points(self, user_id: str, report: Report) -> int:
        points = points_for(report.category)
        try:
            if self.users.adjust_counters(user_id, report_delta=1, points_delta=points) is None:
                logger.warning(f"Points not awarded: user {user_id} not found")
        except Exception as e:
            logger.warning(f"Points update failed for user {user_id}: {e}")
        return points
