"""Data models for the migration engine."""

from .record import (
    SourceRecord,
    TargetRecord,
    BlobReference,
    content_type_for,
)
from .migration import (
    MigrationJob,
    MigrationStats,
    MigrationRun,
    MigrationStatus,
)
from .report import (
    EntityReport,
    MigrationReport,
)

__all__ = [
    "SourceRecord",
    "TargetRecord",
    "BlobReference",
    "content_type_for",
    "MigrationJob",
    "MigrationStats",
    "MigrationRun",
    "MigrationStatus",
    "EntityReport",
    "MigrationReport",
]
