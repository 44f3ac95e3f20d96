"""
SQL report and user repositories

PostgreSQL/PostGIS adapters for the repository ports. Lifecycle writes are
single conditional UPDATE statements keyed on the expected status.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import DataError, IntegrityError

from src.core.errors import ErrorCode, PersistenceValidationError
from src.crowdsource.models import Report, ReportStatus, User
from src.database.connection import DatabaseConnection
from src.database.models import ReportRecord, UserRecord
from src.database.repository import (
    SORT_FIELDS,
    ReportQuery,
    ReportRepository,
    UserRepository,
    ensure_valid,
)

logger = logging.getLogger(__name__)


def _filters(query: Optional[ReportQuery]) -> list:
    query = query or ReportQuery()
    clauses = []
    if query.status is not None:
        clauses.append(ReportRecord.status == query.status)
    if query.user_id is not None:
        clauses.append(ReportRecord.user_id == query.user_id)
    if query.assigned_to is not None:
        clauses.append(ReportRecord.assigned_to == query.assigned_to)
    if query.resolved_by is not None:
        clauses.append(ReportRecord.resolved_by == query.resolved_by)
    return clauses


class SqlReportRepository(ReportRepository):
    """Report store backed by PostgreSQL + PostGIS."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def create(self, report: Report) -> Report:
        ensure_valid(report)
        try:
            with self.db.get_session() as session:
                session.add(ReportRecord.from_entity(report))
        except (IntegrityError, DataError) as e:
            logger.warning(f"Rejected report {report.id}: {e.orig}")
            raise PersistenceValidationError(
                ErrorCode.VALIDATION_ERROR, "Report failed validation", details={"error": str(e.orig)}
            )
        logger.info(f"Saved report {report.id} [{report.status.value}]")
        return report

    def get(self, report_id: str) -> Optional[Report]:
        with self.db.get_session() as session:
            record = session.get(ReportRecord, report_id)
            return record.to_entity() if record else None

    def find(
        self,
        query: Optional[ReportQuery] = None,
        sort_by: str = "created_at",
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Report]:
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {sort_by}")

        stmt = (
            select(ReportRecord)
            .where(*_filters(query))
            .order_by(desc(getattr(ReportRecord, sort_by)).nulls_last())
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.db.get_session() as session:
            return [record.to_entity() for record in session.scalars(stmt)]

    def count(self, query: Optional[ReportQuery] = None) -> int:
        stmt = select(func.count()).select_from(ReportRecord).where(*_filters(query))
        with self.db.get_session() as session:
            return session.scalar(stmt) or 0

    def find_nearby(
        self,
        latitude: float,
        longitude: float,
        max_distance_m: Optional[float] = None,
        limit: int = 10
    ) -> List[Report]:
        origin = func.ST_SetSRID(func.ST_MakePoint(longitude, latitude), 4326)
        distance = func.ST_DistanceSphere(ReportRecord.location, origin)

        stmt = select(ReportRecord).order_by(distance).limit(limit)
        if max_distance_m is not None:
            stmt = stmt.where(distance <= max_distance_m)

        with self.db.get_session() as session:
            return [record.to_entity() for record in session.scalars(stmt)]

    def compare_and_set(
        self,
        report_id: str,
        expected_status: ReportStatus,
        changes: Dict[str, Any]
    ) -> Optional[Report]:
        current = self.get(report_id)
        if current is None or current.status != expected_status:
            return None
        ensure_valid(replace(current, **changes))

        stmt = (
            update(ReportRecord)
            .where(ReportRecord.id == report_id, ReportRecord.status == expected_status)
            .values(**ReportRecord.column_changes(changes))
            .returning(ReportRecord)
            .execution_options(synchronize_session=False)
        )

        try:
            with self.db.get_session() as session:
                record = session.scalars(stmt).first()
                return record.to_entity() if record else None
        except (IntegrityError, DataError) as e:
            raise PersistenceValidationError(
                ErrorCode.VALIDATION_ERROR, "Report update failed validation", details={"error": str(e.orig)}
            )

    def delete(self, report_id: str, allowed_statuses: Iterable[ReportStatus]) -> bool:
        stmt = delete(ReportRecord).where(
            ReportRecord.id == report_id,
            ReportRecord.status.in_(list(allowed_statuses)),
        )
        with self.db.get_session() as session:
            deleted = session.execute(stmt).rowcount > 0
        if deleted:
            logger.info(f"Deleted report {report_id}")
        return deleted


class SqlUserRepository(UserRepository):
    """User counters backed by PostgreSQL."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        with self.db.get_session() as session:
            record = session.get(UserRecord, user_id)
            return record.to_entity() if record else None

    def add(self, user: User) -> User:
        with self.db.get_session() as session:
            session.merge(UserRecord.from_entity(user))
        return user

    def adjust_counters(
        self,
        user_id: str,
        report_delta: int,
        points_delta: int
    ) -> Optional[User]:
        stmt = (
            update(UserRecord)
            .where(UserRecord.id == user_id)
            .values(
                report_count=UserRecord.report_count + report_delta,
                points=UserRecord.points + points_delta,
            )
            .returning(UserRecord)
            .execution_options(synchronize_session=False)
        )
        with self.db.get_session() as session:
            record = session.scalars(stmt).first()
            return record.to_entity() if record else None
