import asyncio
import json
from datetime import timedelta

import pytest

from storesync.errors import ConnectivityError, StoreError
from storesync.models.migration import (
    MigrationJob,
    MigrationRun,
    MigrationStats,
    MigrationStatus,
    utcnow,
)
from storesync.models.record import content_type_for
from storesync.models.report import MigrationReport
from storesync.services.retry import RetryPolicy, with_retry


@pytest.mark.parametrize("job, expected", [
    (MigrationJob(), True),
    (MigrationJob(skip_storage=True), False),
    (MigrationJob(dry_run=True), False),
    (MigrationJob(dry_run=True, include_storage=True), True),
    (MigrationJob(dry_run=True, include_storage=True, skip_storage=True), False),
    (MigrationJob(dry_run=True, storage_only=True), True),
    (MigrationJob(storage_only=True, skip_storage=True), False),
])
def test_migrate_blobs(job, expected):
    assert job.migrate_blobs is expected


def test_illegal_transition_is_rejected():
    run = MigrationRun(job=MigrationJob())
    run.advance(MigrationStatus.EXTRACTING)

    with pytest.raises(ValueError):
        run.advance(MigrationStatus.FAILED)
    with pytest.raises(ValueError):
        run.advance(MigrationStatus.WRITING)


def test_same_status_is_not_recorded_twice():
    run = MigrationRun(job=MigrationJob())
    run.advance(MigrationStatus.EXTRACTING)
    run.advance(MigrationStatus.EXTRACTING)
    assert run.history == [MigrationStatus.CONFIGURED, MigrationStatus.EXTRACTING]


def test_run_totals_and_throughput():
    run = MigrationRun(job=MigrationJob())
    run.started_at = utcnow()
    run.completed_at = run.started_at + timedelta(seconds=4)
    run.add_result(MigrationStats(entity="users", migrated=6, skipped=1, total=7))
    run.add_result(MigrationStats(entity="vehicles", migrated=2, skipped=3, total=5))
    run.add_result(MigrationStats(entity="users", migrated=2, total=2))

    assert run.results["users"].migrated == 8
    assert run.total_migrated == 10
    assert run.total_skipped == 4
    assert run.throughput == 2.5


def test_report_serializes_run(tmp_path):
    run = MigrationRun(job=MigrationJob(entities=["users"]))
    run.started_at = utcnow()
    stats = MigrationStats(entity="users", migrated=1, skipped=1, total=2)
    stats.add_error(("u2", {"email": "x"}), ValueError("bad"))
    run.add_result(stats)
    run.advance(MigrationStatus.COMPLETED)
    run.completed_at = utcnow()

    path = MigrationReport.from_run(run).save(str(tmp_path / "logs"))

    data = json.loads(path.read_text())
    assert path.name.startswith("migration_report_")
    assert data["history"] == ["configured", "completed"]
    assert data["job"]["entities"] == ["users"]
    assert data["entities"][0]["errors"] == [{"item": "u2", "error": "bad"}]


def test_content_types():
    assert content_type_for("a/b/photo.JPEG") == "image/jpeg"
    assert content_type_for("doc.pdf") == "application/pdf"
    assert content_type_for("noext") == "application/octet-stream"
    assert content_type_for("dir.v2/noext") == "application/octet-stream"


def test_retry_bounded_and_selective():
    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        raise ConnectivityError("down")

    policy = RetryPolicy(attempts=4, base=0.0, cap=0.0)
    with pytest.raises(ConnectivityError):
        asyncio.run(with_retry(flaky, policy))
    assert calls["n"] == 4

    calls["n"] = 0

    async def broken():
        calls["n"] += 1
        raise StoreError("bad request")

    with pytest.raises(StoreError):
        asyncio.run(with_retry(broken, policy))
    assert calls["n"] == 1


def test_retry_delay_is_capped():
    policy = RetryPolicy(base=1.0, cap=2.0)
    assert 1.0 <= policy.delay(0) <= 1.25
    assert 2.0 <= policy.delay(5) <= 2.5
