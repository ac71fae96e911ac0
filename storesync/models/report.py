"""Pydantic models for the JSON run report."""

from typing import Any, Dict, List, Optional
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from .migration import MigrationRun, MigrationStats, describe_item


class ItemError(BaseModel):
    item: str
    error: str


class EntityReport(BaseModel):
    entity: str
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    duration_seconds: Optional[float] = None
    errors: List[ItemError] = Field(default_factory=list)

    @classmethod
    def from_stats(cls, stats: MigrationStats) -> "EntityReport":
        return cls(
            entity=stats.entity,
            total=stats.total,
            migrated=stats.migrated,
            skipped=stats.skipped,
            duration_seconds=stats.duration_seconds,
            errors=[
                ItemError(item=describe_item(e.get("item")), error=str(e.get("error")))
                for e in stats.errors
            ],
        )


class MigrationReport(BaseModel):
    run_id: str
    status: str
    history: List[str]
    job: Dict[str, Any]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    total_migrated: int = 0
    total_skipped: int = 0
    throughput: float = 0.0
    entities: List[EntityReport] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_run(cls, run: MigrationRun) -> "MigrationReport":
        return cls(
            run_id=run.id,
            status=run.status.value,
            history=[s.value for s in run.history],
            job=run.job.to_dict(),
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            total_migrated=run.total_migrated,
            total_skipped=run.total_skipped,
            throughput=round(run.throughput, 2),
            entities=[EntityReport.from_stats(s) for s in run.results.values()],
            errors=run.errors,
        )

    def save(self, directory: str) -> Path:
        """Write the report as JSON and return its path."""
        base = Path(directory)
        base.mkdir(parents=True, exist_ok=True)
        stamp = (self.completed_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
        filepath = base / f"migration_report_{stamp}_{self.run_id[:8]}.json"
        filepath.write_text(self.model_dump_json(indent=2))
        return filepath
