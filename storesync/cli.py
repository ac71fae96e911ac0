"""Command-line entry point for the Firebase to Supabase migration."""

import argparse
import asyncio
import logging
from typing import List, Optional

from . import __version__
from .errors import ConfigurationError
from .extractors.base import BaseSource
from .extractors.export_extractor import ExportFileSource
from .extractors.firebase_extractor import FirebaseSource, service_account_credential
from .loaders.base import BaseTarget
from .loaders.supabase_loader import SupabaseTarget
from .models.migration import MigrationJob
from .orchestrator import MigrationOrchestrator
from .services.entities import ENTITY_REGISTRY
from .settings import MigrationSettings, load_env_files

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storesync",
        description="Migrate Firebase Realtime Database and Storage data to Supabase",
    )

    mode = parser.add_argument_group("modes")
    mode.add_argument("--dry-run", action="store_true", help="Simulate without writing anything")
    mode.add_argument("--quick", action="store_true", help="Only process the first items of each collection")
    mode.add_argument("--storage-only", action="store_true", help="Only migrate storage files")
    mode.add_argument("--skip-storage", action="store_true", help="Do not migrate storage files")
    mode.add_argument(
        "--include-storage", action="store_true",
        help="Simulate storage migration too when combined with --dry-run",
    )

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument(
        "--entities", nargs="+", metavar="ENTITY",
        help=f"Entity types to migrate (default: all). Known: {', '.join(ENTITY_REGISTRY)}",
    )
    tuning.add_argument("--concurrency", type=int, help="Items in flight per wave (overrides defaults)")
    tuning.add_argument("--quick-limit", type=int, default=10, help="Items per collection in quick mode")
    tuning.add_argument("--item-timeout", type=float, default=120.0, help="Seconds allowed per item")

    io = parser.add_argument_group("input/output")
    io.add_argument("--export-file", help="Read records from an RTDB JSON export instead of the live database")
    io.add_argument("--blob-dir", help="Local directory holding storage files (with --export-file)")
    io.add_argument("--report-dir", help="Write a JSON run report to this directory")
    io.add_argument("--env-file", help="Environment file to load (default: .env.local, then .env)")

    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_job(args: argparse.Namespace) -> MigrationJob:
    if args.storage_only and args.skip_storage:
        raise ConfigurationError("--storage-only and --skip-storage are mutually exclusive")
    if args.concurrency is not None and args.concurrency < 1:
        raise ConfigurationError("--concurrency must be at least 1")
    if args.quick_limit < 1:
        raise ConfigurationError("--quick-limit must be at least 1")

    return MigrationJob(
        entities=args.entities or [],
        dry_run=args.dry_run,
        quick_mode=args.quick,
        storage_only=args.storage_only,
        skip_storage=args.skip_storage,
        include_storage=args.include_storage,
        quick_limit=args.quick_limit,
        concurrency=args.concurrency,
        item_timeout=args.item_timeout,
        report_dir=args.report_dir,
    )


def build_source(args: argparse.Namespace, settings: MigrationSettings) -> BaseSource:
    if args.export_file:
        return ExportFileSource(args.export_file, blob_dir=args.blob_dir)
    credential = None
    info = settings.service_account_info()
    if info:
        credential = service_account_credential(info)
        logger.info(f"Authenticating to Firebase as {info['client_email']}")
    elif not settings.firebase_auth_token:
        logger.warning(
            "FIREBASE_SERVICE_ACCOUNT_KEY is not set; reading without credentials "
            "(database rules may deny access)"
        )

    return FirebaseSource(
        settings.firebase_database_url,
        storage_bucket=settings.firebase_storage_bucket,
        auth_token=settings.firebase_auth_token,
        timeout=settings.request_timeout,
        credential=credential,
    )


def build_target(settings: MigrationSettings) -> Optional[BaseTarget]:
    if not (settings.supabase_url and settings.supabase_service_key):
        return None
    return SupabaseTarget(
        settings.supabase_url,
        settings.supabase_service_key,
        bucket=settings.supabase_storage_bucket,
        timeout=settings.request_timeout,
    )


def run_migration(args: argparse.Namespace) -> int:
    """Run a migration from parsed arguments."""
    load_env_files(args.env_file)
    settings = MigrationSettings.from_env()
    settings.validate(
        require_source=not args.export_file,
        require_target=not args.dry_run,
    )
    logger.debug(f"Settings: {settings.describe()}")

    job = build_job(args)
    job.storage_bucket = settings.supabase_storage_bucket

    source = build_source(args, settings)
    target = build_target(settings)
    try:
        orchestrator = MigrationOrchestrator(job, source, target)
        asyncio.run(orchestrator.run())
        orchestrator.print_summary()
    finally:
        source.close()
        if target is not None:
            target.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        return run_migration(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
