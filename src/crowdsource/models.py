"""
Domain entities for crowdsourced waste reports
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from src.core.constants import POINTS_BY_CATEGORY, DEFAULT_POINTS
from src.core.geo_utils import Point


class ReportStatus(str, Enum):
    """Lifecycle state of a report."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    PERMANENT_RESOLVED = "permanent-resolved"
    OUT_OF_SCOPE = "out-of-scope"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ReportStatus.REJECTED,
    ReportStatus.OUT_OF_SCOPE,
    ReportStatus.PERMANENT_RESOLVED,
})

# States in which the owner may still withdraw a report
DELETABLE_STATUSES = frozenset({
    ReportStatus.PENDING,
    ReportStatus.IN_PROGRESS,
})


class ReportCategory(str, Enum):
    """Kind of waste reported."""
    STANDARD = "standard"
    HAZARDOUS = "hazardous"
    LARGE = "large"


class UserRole(str, Enum):
    USER = "user"
    SUPERVISOR = "supervisor"


def points_for(category: Any) -> int:
    """
    Points granted for a report of the given category.

    The same value is awarded on creation and reversed on deletion;
    unknown categories fall back to the default.
    """
    key = category.value if isinstance(category, Enum) else category
    return POINTS_BY_CATEGORY.get(key, DEFAULT_POINTS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class User:
    """Account referenced by reports. Owned by the auth collaborator."""
    id: str
    username: str
    role: UserRole = UserRole.USER
    report_count: int = 0
    points: int = 0

    @property
    def is_supervisor(self) -> bool:
        return self.role == UserRole.SUPERVISOR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "report_count": self.report_count,
            "points": self.points,
        }


@dataclass
class Report:
    """
    Waste sighting submitted by a citizen.

    Created in `pending` by admission and mutated afterwards only through
    lifecycle transitions. Actor fields are always set together with their
    timestamp counterpart.
    """
    id: str
    user_id: str

    # Content
    title: str
    details: str
    address: str
    latitude: float
    longitude: float
    image_url: str
    public_id: str
    photo_timestamp: datetime
    category: ReportCategory = ReportCategory.STANDARD

    # Snapshot of the verdict at creation; None when classification was bypassed
    ai_verification: Optional[Dict[str, Any]] = None

    status: ReportStatus = ReportStatus.PENDING

    # Assignment
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_msg: Optional[str] = None

    # Resolution
    resolved_image: Optional[str] = None
    resolved_public_id: Optional[str] = None
    resolved_latitude: Optional[float] = None
    resolved_longitude: Optional[float] = None
    resolved_address: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    distance_to_reported: Optional[float] = None

    # Rejection
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None

    # Out of scope
    out_of_scope_reason: Optional[str] = None
    out_of_scope_by: Optional[str] = None
    out_of_scope_at: Optional[datetime] = None

    # Permanent resolution
    permanently_resolved_by: Optional[str] = None
    permanently_resolved_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def location(self) -> Point:
        return Point(latitude=self.latitude, longitude=self.longitude)

    @property
    def resolved_location(self) -> Optional[Point]:
        if self.resolved_latitude is None or self.resolved_longitude is None:
            return None
        return Point(latitude=self.resolved_latitude, longitude=self.resolved_longitude)

    @property
    def points(self) -> int:
        return points_for(self.category)

    def schema_errors(self) -> Dict[str, str]:
        """Schema constraint violations, keyed by field name."""
        errors = {}

        for name in ("id", "user_id", "title", "details", "address", "image_url", "public_id"):
            if not getattr(self, name):
                errors[name] = "required"

        if not isinstance(self.status, ReportStatus):
            errors["status"] = f"must be one of {[s.value for s in ReportStatus]}"
        if not isinstance(self.category, ReportCategory):
            errors["category"] = f"must be one of {[c.value for c in ReportCategory]}"

        if not self.location.is_valid:
            errors["location"] = "must be a valid longitude/latitude point"

        resolved = self.resolved_location
        if resolved is not None and not resolved.is_valid:
            errors["resolved_location"] = "must be a valid longitude/latitude point"

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        data["category"] = self.category.value
        data["location"] = self.location.to_geojson()
        resolved = self.resolved_location
        data["resolved_location"] = resolved.to_geojson() if resolved else None
        for name, value in data.items():
            if isinstance(value, datetime):
                data[name] = value.isoformat()
        return data
