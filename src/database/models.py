"""
SQLAlchemy models for WasteWatch
Uses GeoAlchemy2 for PostGIS spatial types
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, Float, String, Text, DateTime, ForeignKey, Index,
    Enum as SQLEnum
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
from geoalchemy2 import Geometry
from geoalchemy2.shape import from_shape
from shapely.geometry import Point as ShapelyPoint

from src.crowdsource.models import (
    Report,
    ReportCategory,
    ReportStatus,
    User,
    UserRole,
)

Base = declarative_base()


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _point(latitude, longitude):
    if latitude is None or longitude is None:
        return None
    return from_shape(ShapelyPoint(longitude, latitude), srid=4326)


def _utcnow():
    return datetime.now(timezone.utc)


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRecord(Base):
    """
    User account row.

    Only the counters are written by this service.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(100), nullable=False)
    role = Column(
        SQLEnum(UserRole, values_callable=_enum_values, name="user_role"),
        nullable=False,
        default=UserRole.USER,
    )
    report_count = Column(Integer, nullable=False, default=0)
    points = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<UserRecord({self.id}, role={self.role.value}, points={self.points})>"

    @classmethod
    def from_entity(cls, user: User) -> "UserRecord":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            report_count=user.report_count,
            points=user.points,
        )

    def to_entity(self) -> User:
        return User(
            id=self.id,
            username=self.username,
            role=self.role,
            report_count=self.report_count or 0,
            points=self.points or 0,
        )


class ReportRecord(Base):
    """
    Waste report row.

    Latitude/longitude are kept next to the PostGIS point so rows map back
    to entities without geometry decoding.
    """
    __tablename__ = "reports"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    # Content
    title = Column(String(200), nullable=False)
    details = Column(Text, nullable=False)
    address = Column(String(500), nullable=False)
    image_url = Column(String(500), nullable=False)
    public_id = Column(String(255), nullable=False)
    photo_timestamp = Column(DateTime(timezone=True), nullable=False)
    category = Column(
        SQLEnum(ReportCategory, values_callable=_enum_values, name="report_category"),
        nullable=False,
        default=ReportCategory.STANDARD,
    )

    # Location (PostGIS point)
    location = Column(Geometry("POINT", srid=4326), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    ai_verification = Column(JSONB, nullable=True)

    status = Column(
        SQLEnum(ReportStatus, values_callable=_enum_values, name="report_status"),
        nullable=False,
        default=ReportStatus.PENDING,
    )

    # Assignment
    assigned_to = Column(String(64), ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime(timezone=True))
    assigned_msg = Column(Text)

    # Resolution
    resolved_image = Column(String(500))
    resolved_public_id = Column(String(255))
    resolved_location = Column(Geometry("POINT", srid=4326), nullable=True)
    resolved_latitude = Column(Float)
    resolved_longitude = Column(Float)
    resolved_address = Column(String(500))
    resolved_by = Column(String(64), ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True))
    distance_to_reported = Column(Float)

    # Rejection
    rejection_reason = Column(Text)
    rejected_by = Column(String(64), ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True))

    # Out of scope
    out_of_scope_reason = Column(Text)
    out_of_scope_by = Column(String(64), ForeignKey("users.id"), nullable=True)
    out_of_scope_at = Column(DateTime(timezone=True))

    # Permanent resolution
    permanently_resolved_by = Column(String(64), ForeignKey("users.id"), nullable=True)
    permanently_resolved_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_report_location", location, postgresql_using="gist"),
        Index("idx_report_status", status),
        Index("idx_report_created_at", created_at),
        Index("idx_report_assigned_to", assigned_to),
        Index("idx_report_resolved_by", resolved_by),
    )

    # Columns copied one-to-one between row and entity
    PLAIN_FIELDS = (
        "id", "user_id", "title", "details", "address", "image_url", "public_id",
        "photo_timestamp", "category", "latitude", "longitude", "ai_verification",
        "status", "assigned_to", "assigned_at", "assigned_msg", "resolved_image",
        "resolved_public_id", "resolved_latitude", "resolved_longitude",
        "resolved_address", "resolved_by", "resolved_at", "distance_to_reported",
        "rejection_reason", "rejected_by", "rejected_at", "out_of_scope_reason",
        "out_of_scope_by", "out_of_scope_at", "permanently_resolved_by",
        "permanently_resolved_at", "created_at", "updated_at",
    )

    def __repr__(self):
        return f"<ReportRecord({self.id}, status={self.status.value}, lat={self.latitude})>"

    @classmethod
    def from_entity(cls, report: Report) -> "ReportRecord":
        """Create row from a report entity."""
        record = cls(**{name: getattr(report, name) for name in cls.PLAIN_FIELDS})
        record.location = _point(report.latitude, report.longitude)
        record.resolved_location = _point(report.resolved_latitude, report.resolved_longitude)
        return record

    @classmethod
    def column_changes(cls, changes: dict) -> dict:
        """Translate entity field changes into column values for an UPDATE."""
        values = dict(changes)
        if "resolved_latitude" in changes or "resolved_longitude" in changes:
            values["resolved_location"] = _point(
                changes.get("resolved_latitude"), changes.get("resolved_longitude")
            )
        return values

    def to_entity(self) -> Report:
        """Convert row to a report entity."""
        values = {name: getattr(self, name) for name in self.PLAIN_FIELDS}
        for name, value in values.items():
            if isinstance(value, datetime):
                values[name] = _aware(value)
        return Report(**values)
