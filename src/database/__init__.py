"""
Database module for WasteWatch
Repository ports, in-memory adapters, and PostgreSQL + PostGIS persistence
"""

from .repository import (
    Page,
    ReportQuery,
    ReportRepository,
    UserRepository,
    InMemoryReportRepository,
    InMemoryUserRepository,
)
from .connection import DatabaseConnection, get_db, init_db
from .models import Base, ReportRecord, UserRecord
from .sql_repository import SqlReportRepository, SqlUserRepository

__all__ = [
    "Page",
    "ReportQuery",
    "ReportRepository",
    "UserRepository",
    "InMemoryReportRepository",
    "InMemoryUserRepository",
    "DatabaseConnection",
    "get_db",
    "init_db",
    "Base",
    "ReportRecord",
    "UserRecord",
    "SqlReportRepository",
    "SqlUserRepository",
]
