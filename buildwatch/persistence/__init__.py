"""
buildwatch Persistence - SQLite storage for completed builds.
"""

from buildwatch.persistence.database import (
    Database,
    DatabaseError,
    IntegrityError,
)
from buildwatch.persistence.repository import BuildRecordRepository

__all__ = [
    "BuildRecordRepository",
    "Database",
    "DatabaseError",
    "IntegrityError",
]
