"""Migration orchestrator - coordinates the complete migration process."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError, StoreError
from .extractors.base import BaseSource
from .loaders.base import BaseTarget
from .models.migration import (
    MigrationJob,
    MigrationRun,
    MigrationStats,
    MigrationStatus,
    utcnow,
)
from .models.report import MigrationReport
from .services.blob_migrator import BlobCache, BlobMigrator
from .services.entities import ENTITY_REGISTRY, EntityStrategy, migration_order
from .services.retry import RetryPolicy
from .services.scheduler import BatchScheduler
from .services.transformer import NaturalKeyIndex, RecordTransformer
from .services.upsert_writer import UpsertWriter

logger = logging.getLogger(__name__)

STORAGE_LABEL = "storage"

Item = Tuple[str, Dict[str, Any]]


class MigrationOrchestrator:
    """
    Orchestrates the complete migration process.

    Handles:
    - Connection checks before any extraction
    - Bulk blob copy under the configured storage prefixes
    - Entity types in reference order, one after another
    - Per-item transform, blob migration and idempotent upsert
    - Summary and JSON report
    """

    def __init__(
        self,
        job: MigrationJob,
        source: BaseSource,
        target: Optional[BaseTarget] = None,
        registry: Optional[Dict[str, EntityStrategy]] = None,
        scheduler: Optional[BatchScheduler] = None,
        blob_cache: Optional[BlobCache] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            job: What to migrate and how
            source: Source store
            target: Target store; may be None for dry runs
            registry: Entity strategies (defaults to ENTITY_REGISTRY)
            scheduler: Batch scheduler (defaults to one built from the job)
            blob_cache: Per-job blob cache (a fresh one by default)
            retry_policy: Backoff for connectivity errors
        """
        self.job = job
        self.source = source
        self.target = target
        self.registry = registry if registry is not None else ENTITY_REGISTRY
        self.scheduler = scheduler or BatchScheduler(
            item_timeout=job.item_timeout,
            dry_run=job.dry_run,
        )
        self.cache = blob_cache if blob_cache is not None else BlobCache()
        self.transformer = RecordTransformer(self.registry)
        self.key_index = NaturalKeyIndex()
        self.blobs = BlobMigrator(
            source,
            target,
            self.cache,
            dry_run=job.dry_run,
            bucket=job.storage_bucket,
            retry_policy=retry_policy,
        )
        self.writer = UpsertWriter(target, dry_run=job.dry_run, retry_policy=retry_policy)

        self.current_run: Optional[MigrationRun] = None

    async def run(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with per-entity stats

        Raises:
            ConfigurationError: if a store is unreachable or misconfigured
        """
        self.current_run = MigrationRun(job=self.job)
        self.current_run.started_at = utcnow()

        entities = self._entities_to_migrate()
        await self._preflight()

        self._log_mode()

        if self.job.migrate_blobs and self.source.supports_blobs:
            logger.info("=== PHASE 1: STORAGE ===")
            self.current_run.advance(MigrationStatus.BLOB_MIGRATING)
            self.current_run.add_result(await self._migrate_storage())
        elif self.job.storage_only:
            logger.warning("Nothing to do: storage is skipped or the source has no blob store")

        if not self.job.storage_only:
            logger.info("=== PHASE 2: RECORDS ===")
            for entity in entities:
                self.current_run.advance(MigrationStatus.EXTRACTING)
                self.current_run.add_result(await self._migrate_entity(self.registry[entity]))

        self.current_run.advance(MigrationStatus.COMPLETED)
        self.current_run.completed_at = utcnow()

        if self.job.report_dir:
            self._save_report()

        return self.current_run

    def _entities_to_migrate(self) -> List[str]:
        try:
            return migration_order(self.job.entities or None, self.registry)
        except (KeyError, ValueError) as e:
            self.current_run.advance(MigrationStatus.FAILED)
            raise ConfigurationError(str(e).strip("'\"")) from e

    async def _preflight(self) -> None:
        """Probe the stores before extracting anything."""
        problems = []

        try:
            if not await self.source.validate_connection_async():
                problems.append("source store is unreachable")
        except StoreError as e:
            problems.append(f"source store check failed: {e}")

        if not self.job.dry_run:
            if self.target is None:
                problems.append("no target store configured")
            else:
                try:
                    if not await self.target.validate_connection_async():
                        problems.append("target store is unreachable")
                except StoreError as e:
                    problems.append(f"target store check failed: {e}")

        if problems:
            self.current_run.advance(MigrationStatus.FAILED)
            self.current_run.errors.append({
                "phase": "preflight",
                "error": "; ".join(problems),
                "timestamp": utcnow().isoformat(),
            })
            raise ConfigurationError("Connection check failed: " + "; ".join(problems))

    def _log_mode(self) -> None:
        if self.job.dry_run:
            logger.info("DRY RUN MODE - no data will be written")
            if not self.job.migrate_blobs:
                logger.info("Storage migration skipped in dry run (use --include-storage to simulate it)")
        if self.job.quick_mode:
            logger.info(f"QUICK MODE - at most {self.job.quick_limit} items per collection")
        if self.job.skip_storage:
            logger.info("Storage migration disabled; blob references are kept as-is")

    def _concurrency_for(self, strategy: Optional[EntityStrategy]) -> int:
        if self.job.concurrency:
            return self.job.concurrency
        if strategy is None:
            return self.job.storage_concurrency
        return strategy.concurrency

    def _sample(self, items: List[Any], label: str) -> List[Any]:
        if not self.job.quick_mode or len(items) <= self.job.quick_limit:
            return items
        logger.info(f"Quick mode: processing {self.job.quick_limit} of {len(items)} {label}")
        return items[:self.job.quick_limit]

    # =========================================================================
    # Storage phase
    # =========================================================================

    async def _migrate_storage(self) -> MigrationStats:
        """Copy every blob under the storage prefixes."""
        paths: List[str] = []
        failures: List[Dict[str, Any]] = []

        for prefix in self.job.storage_prefixes:
            try:
                found = await self.source.list_blobs_async(prefix)
            except StoreError as e:
                logger.error(f"Error listing files in {prefix}/: {e}")
                failures.append({"item": f"{prefix}/", "error": str(e)})
                continue
            logger.info(f"Found {len(found)} files in {prefix}/")
            paths.extend(found)

        # Same object listed under overlapping prefixes
        paths = list(dict.fromkeys(paths))
        paths = self._sample(paths, "files")

        async def process(path: str) -> bool:
            return await self.blobs.migrate(path) is not None

        stats = await self.scheduler.run(
            paths, process, self._concurrency_for(None), label=STORAGE_LABEL
        )
        stats.errors.extend(failures)
        return stats

    # =========================================================================
    # Record phase
    # =========================================================================

    async def _migrate_entity(self, strategy: EntityStrategy) -> MigrationStats:
        """Extract, transform and write one entity type."""
        logger.info(f"Migrating {strategy.name} ({strategy.collection} -> {strategy.table})")

        try:
            payload = await self.source.read_collection_async(strategy.collection)
        except StoreError as e:
            logger.error(f"Error reading {strategy.collection}: {e}")
            stats = MigrationStats(entity=strategy.name)
            stats.add_error(strategy.collection, e)
            return stats

        records = self.source.to_records(strategy.collection, payload)
        if not records:
            logger.info(f"No {strategy.name} found")
            return MigrationStats(entity=strategy.name)

        logger.info(f"Found {len(records)} {strategy.name}")
        items: List[Item] = [(r.key, r.data) for r in records]
        items = self._sample(items, strategy.name)

        self.current_run.advance(MigrationStatus.TRANSFORMING)
        if self.job.migrate_blobs and strategy.blob_columns:
            self.current_run.advance(MigrationStatus.BLOB_MIGRATING)
        self.current_run.advance(MigrationStatus.WRITING)

        async def process(item: Item) -> bool:
            return await self._process_item(strategy, item)

        return await self.scheduler.run(
            items, process, self._concurrency_for(strategy), label=strategy.name
        )

    async def _process_item(self, strategy: EntityStrategy, item: Item) -> bool:
        """Per-item pipeline: transform, claim key, migrate blobs, write."""
        key, payload = item

        record = self.transformer.transform(strategy.name, key, payload)
        if record is None:
            return False

        # Must stay free of awaits up to here
        self.key_index.claim(strategy.name, record.natural_key, key)

        if self.job.migrate_blobs:
            for column in strategy.blob_columns:
                if column not in record.data:
                    continue
                migrated = await self.blobs.migrate_value(record.data[column])
                record.data[column] = migrated
                if record.fallback_data is not None and column in record.fallback_data:
                    record.fallback_data[column] = migrated

        if self.job.dry_run:
            logger.info(f"[DRY-RUN] Would migrate {strategy.name}: {strategy.describe(record.data)}")
            logger.debug(f"[DRY-RUN] Row: {record.to_dict()}")

        result = await self.writer.write(
            strategy.table,
            record.data,
            fallback_record=record.fallback_data,
            on_conflict=strategy.on_conflict,
        )
        return result.success

    # =========================================================================
    # Reporting
    # =========================================================================

    def _save_report(self) -> None:
        """Save the migration report."""
        filepath = MigrationReport.from_run(self.current_run).save(self.job.report_dir)
        logger.info(f"Saved migration report to {filepath}")

    def format_summary(self) -> str:
        """Per-entity table, totals and closing hints."""
        run = self.current_run
        lines = [
            "",
            "=" * 60,
            "MIGRATION SUMMARY" + (" (DRY RUN)" if self.job.dry_run else ""),
            "=" * 60,
            f"{'Entity':<20}{'Migrated':>12}{'Skipped':>12}",
            "-" * 44,
        ]
        for stats in run.results.values():
            lines.append(f"{stats.entity:<20}{stats.migrated:>12}{stats.skipped:>12}")
        lines.append("-" * 44)
        lines.append(f"{'TOTAL':<20}{run.total_migrated:>12}{run.total_skipped:>12}")
        lines.append("")

        if run.duration_seconds is not None:
            lines.append(f"Duration: {run.duration_seconds:.2f} seconds")
            lines.append(f"Throughput: {run.throughput:.1f} items/sec")
        if self.blobs.copies or len(self.cache):
            lines.append(f"Files migrated: {len(self.cache)}")
        if self.writer.fallback_writes:
            lines.append(
                f"Records written without optional columns: {self.writer.fallback_writes}"
            )

        if self.job.dry_run:
            lines.append("")
            lines.append("This was a dry run. Run again without --dry-run to migrate the data.")
        elif run.total_skipped and not run.total_migrated:
            lines.append("")
            lines.append("All items were skipped. Check that the target tables exist with the")
            lines.append("expected columns and that row level security allows the service key to write.")

        return "\n".join(lines)

    def print_summary(self) -> None:
        print(self.format_summary())
