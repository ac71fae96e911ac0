"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import datetime, timezone
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_item(item: Any) -> str:
    """Items are (key, payload) tuples or blob paths; keep only the key."""
    if isinstance(item, (tuple, list)) and item:
        return str(item[0])
    return str(item)


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    CONFIGURED = "configured"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    BLOB_MIGRATING = "blob_migrating"
    WRITING = "writing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed transitions. Entity types are processed one after another, so the
# machine loops back to EXTRACTING once an entity type has been written.
TRANSITIONS: Dict[MigrationStatus, Tuple[MigrationStatus, ...]] = {
    MigrationStatus.CONFIGURED: (
        MigrationStatus.EXTRACTING,
        MigrationStatus.BLOB_MIGRATING,
        MigrationStatus.COMPLETED,
        MigrationStatus.FAILED,
    ),
    MigrationStatus.EXTRACTING: (
        MigrationStatus.TRANSFORMING,
        MigrationStatus.EXTRACTING,
        MigrationStatus.COMPLETED,
    ),
    MigrationStatus.TRANSFORMING: (
        MigrationStatus.BLOB_MIGRATING,
        MigrationStatus.WRITING,
    ),
    MigrationStatus.BLOB_MIGRATING: (
        MigrationStatus.WRITING,
        MigrationStatus.EXTRACTING,
        MigrationStatus.COMPLETED,
    ),
    MigrationStatus.WRITING: (
        MigrationStatus.EXTRACTING,
        MigrationStatus.COMPLETED,
    ),
    MigrationStatus.COMPLETED: (),
    MigrationStatus.FAILED: (),
}


DEFAULT_STORAGE_PREFIXES = ("vehicles", "users", "images")


@dataclass
class MigrationJob:
    """One invocation of the migration: what to process and how."""
    entities: List[str] = field(default_factory=list)  # empty means all registered
    dry_run: bool = False
    quick_mode: bool = False
    storage_only: bool = False
    skip_storage: bool = False
    include_storage: bool = False  # forces blob migration under dry_run (implied by storage_only)
    quick_limit: int = 10
    concurrency: Optional[int] = None  # overrides per-entity defaults
    storage_concurrency: int = 20
    item_timeout: float = 120.0
    storage_prefixes: Tuple[str, ...] = DEFAULT_STORAGE_PREFIXES
    storage_bucket: str = "files"
    report_dir: Optional[str] = None

    @property
    def migrate_blobs(self) -> bool:
        """Whether blobs are copied during this job."""
        if self.skip_storage:
            return False
        if self.dry_run:
            return self.include_storage or self.storage_only
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entities": self.entities,
            "dry_run": self.dry_run,
            "quick_mode": self.quick_mode,
            "storage_only": self.storage_only,
            "skip_storage": self.skip_storage,
            "include_storage": self.include_storage,
            "quick_limit": self.quick_limit,
            "concurrency": self.concurrency,
            "storage_concurrency": self.storage_concurrency,
            "item_timeout": self.item_timeout,
            "storage_prefixes": list(self.storage_prefixes),
            "storage_bucket": self.storage_bucket,
        }


@dataclass
class MigrationStats:
    """Counters for one entity type (or the storage phase)."""
    entity: str
    migrated: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_error(self, item: Any, error: Any) -> None:
        self.errors.append({"item": item, "error": str(error)})

    def merge(self, other: "MigrationStats") -> None:
        """Fold another stats object's counters into this one."""
        self.migrated += other.migrated
        self.skipped += other.skipped
        self.total += other.total
        self.errors.extend(other.errors)


@dataclass
class MigrationRun:
    """A complete migration run."""
    job: MigrationJob
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.CONFIGURED
    history: List[MigrationStatus] = field(default_factory=lambda: [MigrationStatus.CONFIGURED])

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    results: Dict[str, MigrationStats] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def advance(self, status: MigrationStatus) -> None:
        """Move the state machine forward, rejecting illegal transitions."""
        if status == self.status:
            return
        if status not in TRANSITIONS[self.status]:
            raise ValueError(f"Illegal transition {self.status.value} -> {status.value}")
        self.status = status
        self.history.append(status)

    def add_result(self, stats: MigrationStats) -> None:
        if stats.entity in self.results:
            self.results[stats.entity].merge(stats)
        else:
            self.results[stats.entity] = stats

    @property
    def total_migrated(self) -> int:
        return sum(s.migrated for s in self.results.values())

    @property
    def total_skipped(self) -> int:
        return sum(s.skipped for s in self.results.values())

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def throughput(self) -> float:
        """Migrated items per second over the whole run."""
        duration = self.duration_seconds
        if not duration:
            return 0.0
        return self.total_migrated / duration
