"""
Report lifecycle state machine

pending → in-progress → {resolved, rejected, out-of-scope}
resolved → permanent-resolved

Every transition is supervisor-only and goes through one guarded handler:
role check, state check, evidence check, then a conditional update keyed
on the status the check was made against.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from src.core.errors import (
    ErrorCode,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    StaleStateError,
    SubmissionValidationError,
)
from src.core.geo_utils import Point, distance_between
from src.crowdsource.models import Report, ReportStatus, User, utcnow
from src.crowdsource.validation import parse_coordinate
from src.database.repository import ReportRepository

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION REQUESTS
# =============================================================================

@dataclass(frozen=True)
class Assign:
    """Take a report into work. The assignee defaults to the acting supervisor."""
    assignee_id: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Resolve:
    """Close a report with evidence of the cleanup."""
    image: Optional[str] = None
    latitude: Any = None
    longitude: Any = None
    address: Optional[str] = None
    public_id: Optional[str] = None


@dataclass(frozen=True)
class Reject:
    reason: Optional[str] = None


@dataclass(frozen=True)
class MarkOutOfScope:
    reason: Optional[str] = None


@dataclass(frozen=True)
class PermanentlyResolve:
    """Seal a resolved report against further changes."""


Transition = Union[Assign, Resolve, Reject, MarkOutOfScope, PermanentlyResolve]


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[ReportStatus]
    target: ReportStatus


RULES: Dict[type, TransitionRule] = {
    Assign: TransitionRule(
        frozenset({ReportStatus.PENDING, ReportStatus.IN_PROGRESS}),
        ReportStatus.IN_PROGRESS,
    ),
    Resolve: TransitionRule(
        frozenset({ReportStatus.IN_PROGRESS}),
        ReportStatus.RESOLVED,
    ),
    Reject: TransitionRule(
        frozenset({ReportStatus.IN_PROGRESS}),
        ReportStatus.REJECTED,
    ),
    # Resolved reports can only be sealed, never pushed out of scope
    MarkOutOfScope: TransitionRule(
        frozenset({ReportStatus.PENDING, ReportStatus.IN_PROGRESS}),
        ReportStatus.OUT_OF_SCOPE,
    ),
    PermanentlyResolve: TransitionRule(
        frozenset({ReportStatus.RESOLVED}),
        ReportStatus.PERMANENT_RESOLVED,
    ),
}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _missing(*fields) -> SubmissionValidationError:
    names = list(fields)
    return SubmissionValidationError(
        ErrorCode.MISSING_FIELDS,
        f"Missing required fields: {', '.join(names)}",
        details={"missing_fields": names},
    )


def transition_for_status(
    status: Union[ReportStatus, str],
    assignee_id: Optional[str] = None,
    message: Optional[str] = None,
    reason: Optional[str] = None
) -> Transition:
    """
    Map a requested target status onto its transition request.

    Raises:
        SubmissionValidationError: INVALID_STATUS for unknown or evidence-bearing targets
        InvalidTransition: For a return to pending
    """
    try:
        target = ReportStatus(status)
    except ValueError:
        raise SubmissionValidationError(
            ErrorCode.INVALID_STATUS,
            f"Unknown status: {status}",
            details={"valid_statuses": [s.value for s in ReportStatus]},
        )

    if target == ReportStatus.IN_PROGRESS:
        return Assign(assignee_id=assignee_id, message=message)
    if target == ReportStatus.REJECTED:
        return Reject(reason=reason)
    if target == ReportStatus.OUT_OF_SCOPE:
        return MarkOutOfScope(reason=reason)
    if target == ReportStatus.PERMANENT_RESOLVED:
        return PermanentlyResolve()
    if target == ReportStatus.RESOLVED:
        raise SubmissionValidationError(
            ErrorCode.INVALID_STATUS,
            "Use the resolve operation to resolve reports",
        )

    raise InvalidTransition(ErrorCode.INVALID_TRANSITION, "Reports never return to pending")


# =============================================================================
# STATE MACHINE
# =============================================================================

class ReportLifecycle:
    """
    Applies transition requests to stored reports.

    A failed transition never mutates the report. Two supervisors racing
    on the same report cannot both win: the update matches on the status
    that was checked, and the loser gets STALE_STATE.
    """

    def __init__(
        self,
        reports: ReportRepository,
        clock: Callable[[], datetime] = utcnow
    ):
        self.reports = reports
        self._clock = clock

    def apply(self, report_id: str, actor: User, request: Transition) -> Report:
        """
        Apply a transition.

        Args:
            report_id: Report to transition
            actor: Acting user, must be a supervisor
            request: Transition request

        Returns:
            Updated report

        Raises:
            PermissionDenied, NotFoundError, InvalidTransition,
            SubmissionValidationError, StaleStateError
        """
        report = self.reports.get(report_id)
        if report is None:
            raise NotFoundError(ErrorCode.NOT_FOUND, f"Report {report_id} not found")

        self.check(report, actor, request)

        changes = self._changes(report, actor, request, self._clock())
        updated = self.reports.compare_and_set(report_id, report.status, changes)

        if updated is None:
            current = self.reports.get(report_id)
            if current is None:
                raise NotFoundError(ErrorCode.NOT_FOUND, f"Report {report_id} not found")
            logger.warning(
                f"Report {report_id} moved to {current.status.value} "
                f"while applying {type(request).__name__}"
            )
            raise StaleStateError(
                ErrorCode.STALE_STATE,
                "Report was modified concurrently",
                details={
                    "expected_status": report.status.value,
                    "current_status": current.status.value,
                },
            )

        logger.info(
            f"Report {report_id} status: {report.status.value} -> "
            f"{updated.status.value} by {actor.id}"
        )
        return updated

    def check(self, report: Report, actor: User, request: Transition) -> None:
        """Raise if the request may not be applied to the report as it is now."""
        if not actor.is_supervisor:
            raise PermissionDenied(ErrorCode.FORBIDDEN, "Supervisor role required")

        rule = RULES.get(type(request))
        if rule is None:
            raise InvalidTransition(
                ErrorCode.INVALID_TRANSITION, f"Unknown transition {type(request).__name__}"
            )

        self._check_state(report, actor, request, rule)
        self._check_evidence(request)

    def _check_state(
        self,
        report: Report,
        actor: User,
        request: Transition,
        rule: TransitionRule
    ) -> None:
        if isinstance(request, Assign) and report.status == ReportStatus.IN_PROGRESS:
            if report.assigned_to == (request.assignee_id or actor.id):
                raise InvalidTransition(
                    ErrorCode.ALREADY_IN_STATE,
                    "Report is already assigned to this supervisor",
                    details={"status": report.status.value, "assigned_to": report.assigned_to},
                )
            return

        if report.status in rule.sources:
            return

        if report.status == rule.target:
            raise InvalidTransition(
                ErrorCode.ALREADY_IN_STATE,
                f"Report is already {report.status.value}",
                details={"status": report.status.value},
            )

        raise InvalidTransition(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot move report from {report.status.value} to {rule.target.value}",
            details={
                "status": report.status.value,
                "target": rule.target.value,
                "allowed_from": sorted(s.value for s in rule.sources),
            },
        )

    def _check_evidence(self, request: Transition) -> None:
        if isinstance(request, Resolve):
            missing: List[str] = []
            if _blank(request.image):
                missing.append("image")
            if _blank(request.latitude) or _blank(request.longitude):
                missing.append("location")
            if _blank(request.address):
                missing.append("address")
            if missing:
                raise _missing(*missing)
            self._resolution_point(request)

        elif isinstance(request, (Reject, MarkOutOfScope)):
            if _blank(request.reason):
                raise _missing("reason")

    def _resolution_point(self, request: Resolve) -> Point:
        lat = parse_coordinate(request.latitude)
        lon = parse_coordinate(request.longitude)
        if lat is None or lon is None:
            raise SubmissionValidationError(ErrorCode.INVALID_COORDINATES, "Invalid coordinates")

        point = Point(latitude=lat, longitude=lon)
        if not point.is_valid:
            raise SubmissionValidationError(
                ErrorCode.INVALID_COORDINATES_RANGE,
                "Coordinates out of valid range",
                details={"received": {"latitude": lat, "longitude": lon}},
            )
        return point

    def _changes(
        self,
        report: Report,
        actor: User,
        request: Transition,
        now: datetime
    ) -> Dict[str, Any]:
        rule = RULES[type(request)]
        changes: Dict[str, Any] = {"status": rule.target, "updated_at": now}

        if isinstance(request, Assign):
            changes.update(
                assigned_to=request.assignee_id or actor.id,
                assigned_at=now,
                assigned_msg=request.message.strip() if request.message else None,
            )

        elif isinstance(request, Resolve):
            point = self._resolution_point(request)
            changes.update(
                resolved_image=request.image,
                resolved_public_id=request.public_id,
                resolved_latitude=point.latitude,
                resolved_longitude=point.longitude,
                resolved_address=request.address.strip(),
                resolved_by=actor.id,
                resolved_at=now,
                distance_to_reported=round(distance_between(report.location, point), 2),
            )

        elif isinstance(request, Reject):
            changes.update(
                rejection_reason=request.reason.strip(),
                rejected_by=actor.id,
                rejected_at=now,
            )

        elif isinstance(request, MarkOutOfScope):
            changes.update(
                out_of_scope_reason=request.reason.strip(),
                out_of_scope_by=actor.id,
                out_of_scope_at=now,
            )

        elif isinstance(request, PermanentlyResolve):
            changes.update(
                permanently_resolved_by=actor.id,
                permanently_resolved_at=now,
            )

        return changes
