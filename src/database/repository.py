"""
Report and user repositories

Ports for the document store plus the in-memory adapters used for
development and tests. SQL adapters live in sql_repository.py.
"""

import copy
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional

from src.core.errors import ErrorCode, PersistenceValidationError
from src.core.geo_utils import haversine_distance
from src.crowdsource.models import Report, ReportStatus, User

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "updated_at", "resolved_at")


@dataclass
class ReportQuery:
    """Equality filters over report documents. None means unconstrained."""
    status: Optional[ReportStatus] = None
    user_id: Optional[str] = None
    assigned_to: Optional[str] = None
    resolved_by: Optional[str] = None

    def matches(self, report: Report) -> bool:
        return (
            (self.status is None or report.status == self.status)
            and (self.user_id is None or report.user_id == self.user_id)
            and (self.assigned_to is None or report.assigned_to == self.assigned_to)
            and (self.resolved_by is None or report.resolved_by == self.resolved_by)
        )


@dataclass
class Page:
    """One page of a paginated listing."""
    items: List[Report]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reports": [r.to_dict() for r in self.items],
            "current_page": self.page,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def ensure_valid(report: Report) -> None:
    """Raise PersistenceValidationError when the document breaks the schema."""
    errors = report.schema_errors()
    if errors:
        raise PersistenceValidationError(
            ErrorCode.VALIDATION_ERROR,
            "Report failed validation: " + ", ".join(sorted(errors)),
            details={"errors": errors},
        )


class ReportRepository(ABC):
    """
    Port: report document store.

    Lifecycle writes go through `compare_and_set`, which applies the change
    only if the stored status still equals the expected one.
    """

    @abstractmethod
    def create(self, report: Report) -> Report:
        ...

    @abstractmethod
    def get(self, report_id: str) -> Optional[Report]:
        ...

    @abstractmethod
    def find(
        self,
        query: Optional[ReportQuery] = None,
        sort_by: str = "created_at",
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Report]:
        """Matching reports, newest first by `sort_by`."""
        ...

    @abstractmethod
    def count(self, query: Optional[ReportQuery] = None) -> int:
        ...

    @abstractmethod
    def find_nearby(
        self,
        latitude: float,
        longitude: float,
        max_distance_m: Optional[float] = None,
        limit: int = 10
    ) -> List[Report]:
        """Reports ordered by distance from the point, nearest first."""
        ...

    @abstractmethod
    def compare_and_set(
        self,
        report_id: str,
        expected_status: ReportStatus,
        changes: Dict[str, Any]
    ) -> Optional[Report]:
        """
        Apply changes if the report exists and is still in expected_status.

        Returns:
            The updated report, or None if nothing matched
        """
        ...

    @abstractmethod
    def delete(self, report_id: str, allowed_statuses: Iterable[ReportStatus]) -> bool:
        """Delete the report only while its status is one of allowed_statuses."""
        ...


class UserRepository(ABC):
    """Port: user accounts owned by the auth collaborator."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def add(self, user: User) -> User:
        ...

    @abstractmethod
    def adjust_counters(
        self,
        user_id: str,
        report_delta: int,
        points_delta: int
    ) -> Optional[User]:
        """Atomically increment report count and points."""
        ...


def _sort_key(sort_by: str):
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Unsupported sort field: {sort_by}")

    def key(report: Report):
        value = getattr(report, sort_by)
        # Missing timestamps sort after every present one
        return (value is not None, value.timestamp() if value else 0.0)

    return key


class InMemoryReportRepository(ReportRepository):
    """Report store kept in process memory. Stored objects are never shared."""

    def __init__(self):
        self._reports: Dict[str, Report] = {}
        self._lock = threading.Lock()

    def create(self, report: Report) -> Report:
        ensure_valid(report)
        with self._lock:
            if report.id in self._reports:
                raise PersistenceValidationError(
                    ErrorCode.VALIDATION_ERROR, f"Duplicate report id {report.id}"
                )
            self._reports[report.id] = copy.deepcopy(report)
        logger.info(f"Stored report {report.id} [{report.status.value}]")
        return copy.deepcopy(report)

    def get(self, report_id: str) -> Optional[Report]:
        with self._lock:
            report = self._reports.get(report_id)
            return copy.deepcopy(report) if report else None

    def find(
        self,
        query: Optional[ReportQuery] = None,
        sort_by: str = "created_at",
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Report]:
        query = query or ReportQuery()
        with self._lock:
            matches = [r for r in self._reports.values() if query.matches(r)]
            matches.sort(key=_sort_key(sort_by), reverse=True)
            end = None if limit is None else skip + limit
            return [copy.deepcopy(r) for r in matches[skip:end]]

    def count(self, query: Optional[ReportQuery] = None) -> int:
        query = query or ReportQuery()
        with self._lock:
            return sum(1 for r in self._reports.values() if query.matches(r))

    def find_nearby(
        self,
        latitude: float,
        longitude: float,
        max_distance_m: Optional[float] = None,
        limit: int = 10
    ) -> List[Report]:
        with self._lock:
            ranked = []
            for report in self._reports.values():
                distance_m = haversine_distance(
                    latitude, longitude, report.latitude, report.longitude
                ) * 1000
                if max_distance_m is None or distance_m <= max_distance_m:
                    ranked.append((distance_m, report))

            ranked.sort(key=lambda pair: pair[0])
            return [copy.deepcopy(r) for _, r in ranked[:limit]]

    def compare_and_set(
        self,
        report_id: str,
        expected_status: ReportStatus,
        changes: Dict[str, Any]
    ) -> Optional[Report]:
        with self._lock:
            current = self._reports.get(report_id)
            if current is None or current.status != expected_status:
                return None

            updated = replace(current, **changes)
            ensure_valid(updated)
            self._reports[report_id] = updated
            return copy.deepcopy(updated)

    def delete(self, report_id: str, allowed_statuses: Iterable[ReportStatus]) -> bool:
        allowed = set(allowed_statuses)
        with self._lock:
            current = self._reports.get(report_id)
            if current is None or current.status not in allowed:
                return False
            del self._reports[report_id]
        logger.info(f"Deleted report {report_id}")
        return True


class InMemoryUserRepository(UserRepository):
    """User store kept in process memory."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def add(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = copy.copy(user)
        return copy.copy(user)

    def adjust_counters(
        self,
        user_id: str,
        report_delta: int,
        points_delta: int
    ) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.report_count += report_delta
            user.points += points_delta
            return copy.copy(user)
