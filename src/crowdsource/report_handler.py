"""
Waste report handler
Inbound operations for citizens and supervisors over the report store
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from src.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PROFILE_RECENT_RESOLVED
from src.core.errors import (
    ErrorCode,
    NotFoundError,
    PermissionDenied,
    ServiceUnavailable,
    SubmissionValidationError,
)
from src.core.geo_utils import Point
from src.crowdsource.admission import AdmissionController, AdmissionResult
from src.crowdsource.lifecycle import (
    Assign,
    MarkOutOfScope,
    PermanentlyResolve,
    Reject,
    ReportLifecycle,
    Resolve,
    Transition,
    transition_for_status,
)
from src.crowdsource.models import (
    DELETABLE_STATUSES,
    Report,
    ReportStatus,
    User,
    points_for,
    utcnow,
)
from src.crowdsource.validation import (
    ReportSubmission,
    SubmissionValidator,
    decode_image,
    decoded_size,
    parse_coordinate,
)
from src.database.repository import Page, ReportQuery, ReportRepository, UserRepository
from src.ml.waste_classifier import ClassificationError, ClassificationVerdict, WasteClassifier
from src.storage.uploader import BoundedUploader

logger = logging.getLogger(__name__)


class ReportHandler:
    """
    Handles waste reports from citizens and supervisors.

    Submissions go through the admission controller, status changes
    through the lifecycle state machine. Everything else is reads and
    owner deletes against the report store.
    """

    def __init__(
        self,
        reports: ReportRepository,
        users: UserRepository,
        classifier: WasteClassifier,
        uploader: BoundedUploader,
        validator: Optional[SubmissionValidator] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize report handler.

        Args:
            reports: Report store
            users: User store
            classifier: Waste classification client
            uploader: Deadline-bounded image uploader
            validator: Submission validator
            clock: Source of transition timestamps
        """
        self.reports = reports
        self.users = users
        self.classifier = classifier
        self.uploader = uploader
        self.validator = validator or SubmissionValidator()

        self.admission = AdmissionController(
            classifier=classifier,
            uploader=uploader,
            reports=reports,
            users=users,
            validator=self.validator,
            clock=clock,
        )
        self.lifecycle = ReportLifecycle(reports, clock=clock)

        logger.info("ReportHandler initialized")

    # =========================================================================
    # CITIZEN OPERATIONS
    # =========================================================================

    def submit(self, user: User, submission: ReportSubmission) -> AdmissionResult:
        """Submit a new report through admission control."""
        return self.admission.admit(user.id, submission)

    def classify_image(self, image: Optional[str]) -> ClassificationVerdict:
        """
        Classify an image without creating a report.

        Raises:
            SubmissionValidationError: Missing or malformed image
            ServiceUnavailable: Detector failure
        """
        if not image:
            raise SubmissionValidationError(
                ErrorCode.MISSING_FIELDS,
                "Missing required fields: image",
                details={"missing_fields": ["image"]},
            )
        self._check_image_size(image)
        data = decode_image(image)

        try:
            return self.classifier.classify(data)
        except ClassificationError as e:
            raise ServiceUnavailable(
                ErrorCode.SERVICE_UNAVAILABLE,
                "Waste verification service unavailable",
                details={"error": str(e), "reason": e.code.value},
            )

    def list_reports(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
        """All reports, newest first."""
        return self._page(ReportQuery(), "created_at", page, limit)

    def list_user_reports(self, user: User) -> List[Report]:
        """Reports submitted by the user, newest first."""
        return self.reports.find(ReportQuery(user_id=user.id), sort_by="created_at")

    def find_nearby(
        self,
        latitude: Any,
        longitude: Any,
        max_distance_m: Optional[float] = None,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[Report]:
        """Reports ordered by distance from a point, nearest first."""
        lat = parse_coordinate(latitude)
        lon = parse_coordinate(longitude)
        if lat is None or lon is None:
            raise SubmissionValidationError(ErrorCode.INVALID_COORDINATES, "Invalid coordinates")
        if not Point(latitude=lat, longitude=lon).is_valid:
            raise SubmissionValidationError(
                ErrorCode.INVALID_COORDINATES_RANGE,
                "Coordinates out of valid range",
                details={"received": {"latitude": lat, "longitude": lon}},
            )
        if max_distance_m is not None and max_distance_m < 0:
            raise SubmissionValidationError(
                ErrorCode.VALIDATION_ERROR, "max_distance must not be negative"
            )
        self._check_pagination(1, limit)

        return self.reports.find_nearby(lat, lon, max_distance_m=max_distance_m, limit=limit)

    def delete_report(self, user: User, report_id: str) -> Report:
        """
        Withdraw a report.

        Only the owner may delete, and only while the report is pending or
        in progress. The stored image is destroyed and the points awarded
        for the report are taken back.

        Returns:
            The deleted report
        """
        report = self._get(report_id)

        if report.user_id != user.id:
            raise PermissionDenied(ErrorCode.NOT_OWNER, "Only the report owner can delete it")

        if report.status not in DELETABLE_STATUSES:
            raise PermissionDenied(
                ErrorCode.REPORT_LOCKED,
                f"Report can no longer be deleted ({report.status.value})",
                details={"status": report.status.value},
            )

        if not self.reports.delete(report_id, DELETABLE_STATUSES):
            current = self.reports.get(report_id)
            if current is None:
                raise NotFoundError(ErrorCode.NOT_FOUND, f"Report {report_id} not found")
            raise PermissionDenied(
                ErrorCode.REPORT_LOCKED,
                f"Report can no longer be deleted ({current.status.value})",
                details={"status": current.status.value},
            )

        if report.public_id:
            self.uploader.discard(report.public_id)

        points = points_for(report.category)
        try:
            self.users.adjust_counters(user.id, report_delta=-1, points_delta=-points)
        except Exception as e:
            logger.warning(f"Points reversal failed for user {user.id}: {e}")

        logger.info(f"Report {report_id} deleted by owner {user.id} (-{points} points)")
        return report

    # =========================================================================
    # SUPERVISOR QUEUES
    # =========================================================================

    def list_pending(self, actor: User, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
        self._require_supervisor(actor)
        return self._page(ReportQuery(status=ReportStatus.PENDING), "created_at", page, limit)

    def list_in_progress(self, actor: User, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
        self._require_supervisor(actor)
        return self._page(ReportQuery(status=ReportStatus.IN_PROGRESS), "updated_at", page, limit)

    def list_resolved(self, actor: User, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
        self._require_supervisor(actor)
        return self._page(ReportQuery(status=ReportStatus.RESOLVED), "resolved_at", page, limit)

    def get_resolved_report(self, actor: User, report_id: str) -> Report:
        self._require_supervisor(actor)
        report = self.reports.get(report_id)
        if report is None or report.status != ReportStatus.RESOLVED:
            raise NotFoundError(ErrorCode.NOT_FOUND, f"Resolved report {report_id} not found")
        return report

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def assign(
        self,
        actor: User,
        report_id: str,
        assignee_id: Optional[str] = None,
        message: Optional[str] = None
    ) -> Report:
        """Assign a report to a supervisor (the actor by default)."""
        return self._transition(actor, report_id, Assign(assignee_id=assignee_id, message=message))

    def resolve(
        self,
        actor: User,
        report_id: str,
        image: Optional[str],
        latitude: Any,
        longitude: Any,
        address: Optional[str]
    ) -> Report:
        """
        Resolve an in-progress report with cleanup evidence.

        The base64 evidence photo is uploaded under the same deadline as
        submission photos, and destroyed again if the transition fails.
        """
        request = Resolve(image=image, latitude=latitude, longitude=longitude, address=address)

        report = self._get(report_id)
        self.lifecycle.check(report, actor, request)

        self._check_image_size(image)
        stored = self.uploader.upload(decode_image(image))

        request = Resolve(
            image=stored.url,
            latitude=latitude,
            longitude=longitude,
            address=address,
            public_id=stored.public_id,
        )
        try:
            return self.lifecycle.apply(report_id, actor, request)
        except Exception:
            self.uploader.discard(stored.public_id)
            raise

    def reject(self, actor: User, report_id: str, reason: Optional[str]) -> Report:
        return self._transition(actor, report_id, Reject(reason=reason))

    def mark_out_of_scope(self, actor: User, report_id: str, reason: Optional[str]) -> Report:
        return self._transition(actor, report_id, MarkOutOfScope(reason=reason))

    def permanently_resolve(self, actor: User, report_id: str) -> Report:
        return self._transition(actor, report_id, PermanentlyResolve())

    def update_status(
        self,
        actor: User,
        report_id: str,
        status: Union[ReportStatus, str],
        assignee_id: Optional[str] = None,
        message: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Report:
        """Move a report to a target status through its transition."""
        self._require_supervisor(actor)
        request = transition_for_status(
            status, assignee_id=assignee_id, message=message, reason=reason
        )
        return self._transition(actor, report_id, request)

    # =========================================================================
    # PROFILE
    # =========================================================================

    def supervisor_profile(self, actor: User) -> Dict[str, Any]:
        """Supervisor profile with resolution statistics."""
        self._require_supervisor(actor)

        resolved_query = ReportQuery(status=ReportStatus.RESOLVED, resolved_by=actor.id)
        resolved_count = self.reports.count(resolved_query)
        in_progress_count = self.reports.count(
            ReportQuery(status=ReportStatus.IN_PROGRESS, assigned_to=actor.id)
        )

        handled = resolved_count + in_progress_count
        success_rate = round(resolved_count / handled * 100) if handled else 0

        recent = self.reports.find(
            resolved_query, sort_by="resolved_at", limit=PROFILE_RECENT_RESOLVED
        )

        return {
            "user": actor.to_dict(),
            "stats": {
                "resolved_count": resolved_count,
                "in_progress_count": in_progress_count,
                "success_rate": success_rate,
            },
            "recent_resolved": [r.to_dict() for r in recent],
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _transition(self, actor: User, report_id: str, request: Transition) -> Report:
        if isinstance(request, Assign) and request.assignee_id and request.assignee_id != actor.id:
            self._require_supervisor(actor)
            assignee = self.users.get(request.assignee_id)
            if assignee is None or not assignee.is_supervisor:
                raise SubmissionValidationError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Assignee {request.assignee_id} is not a supervisor",
                    details={"field": "assignee_id"},
                )
        return self.lifecycle.apply(report_id, actor, request)

    def _get(self, report_id: str) -> Report:
        report = self.reports.get(report_id)
        if report is None:
            raise NotFoundError(ErrorCode.NOT_FOUND, f"Report {report_id} not found")
        return report

    def _require_supervisor(self, actor: User) -> None:
        if not actor.is_supervisor:
            raise PermissionDenied(ErrorCode.FORBIDDEN, "Supervisor role required")

    def _check_image_size(self, image: str) -> None:
        if not isinstance(image, str):
            raise SubmissionValidationError(ErrorCode.INVALID_IMAGE_FORMAT, "Invalid image format")
        size = decoded_size(image)
        if size > self.validator.max_image_bytes:
            raise SubmissionValidationError(
                ErrorCode.IMAGE_TOO_LARGE,
                "Image too large",
                details={"size_bytes": size, "max_bytes": self.validator.max_image_bytes},
                status_code=413,
            )

    def _check_pagination(self, page: int, limit: int) -> None:
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise SubmissionValidationError(
                ErrorCode.INVALID_PAGINATION,
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
                details={"page": page, "limit": limit},
            )

    def _page(self, query: ReportQuery, sort_by: str, page: int, limit: int) -> Page:
        self._check_pagination(page, limit)
        items = self.reports.find(query, sort_by=sort_by, skip=(page - 1) * limit, limit=limit)
        return Page(items=items, page=page, limit=limit, total=self.reports.count(query))
