"""Blob migration between source and target blob stores."""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..errors import StoreError
from ..extractors.base import BaseSource
from ..loaders.base import BaseTarget
from ..models.record import BlobReference
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class BlobCache:
    """
    Per-job map of source path -> migrated URL.

    Each path gets its own lock, so two tasks racing on the same path within
    a wave perform a single copy: the first one in holds the lock and fills
    the cache, the second waits and reads the cached URL. Failed paths are
    remembered too and not attempted again within the job.
    """

    def __init__(self):
        self._urls: Dict[str, str] = {}
        self._failures: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, path: str) -> Optional[str]:
        return self._urls.get(path)

    def set(self, path: str, url: str) -> str:
        """Insert if absent (first writer wins) and return the stored URL."""
        return self._urls.setdefault(path, url)

    def fail(self, path: str, error: str) -> None:
        self._failures.setdefault(path, error)

    def failure(self, path: str) -> Optional[str]:
        return self._failures.get(path)

    def lock_for(self, path: str) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        return lock

    def __contains__(self, path: str) -> bool:
        return path in self._urls

    def __len__(self) -> int:
        return len(self._urls)


class BlobMigrator:
    """
    Copies individual blobs from the source to the target blob store.

    ``migrate`` never raises: any failure is logged and reported as None so
    the owning record can keep its original reference.
    """

    def __init__(
        self,
        source: BaseSource,
        target: Optional[BaseTarget],
        cache: BlobCache,
        dry_run: bool = False,
        bucket: str = "files",
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the blob migrator.

        Args:
            source: Source store (download side)
            target: Target store (upload side); may be None in dry-run
            cache: Per-job cache shared by all tasks of the job
            dry_run: Log intended copies instead of performing them
            bucket: Target bucket name, used for dry-run placeholders
            retry_policy: Backoff for connectivity errors on download/upload
        """
        self.source = source
        self.target = target
        self.cache = cache
        self.dry_run = dry_run
        self.bucket = bucket
        self.retry_policy = retry_policy or RetryPolicy()
        self.copies = 0

    async def migrate(self, source_path: str) -> Optional[str]:
        """
        Copy one blob and return its target URL.

        Args:
            source_path: Object path in the source blob store

        Returns:
            Public URL in the target store, or None on failure
        """
        cached = self.cache.get(source_path)
        if cached:
            return cached

        async with self.cache.lock_for(source_path):
            cached = self.cache.get(source_path)
            if cached:
                return cached

            failure = self.cache.failure(source_path)
            if failure:
                logger.debug(f"Skipping {source_path}, failed earlier in this job: {failure}")
                return None

            try:
                url = await self._copy(source_path)
            except (StoreError, OSError, ValueError) as e:
                logger.error(f"Error migrating file {source_path}: {e}")
                self.cache.fail(source_path, str(e) or type(e).__name__)
                return None

            return self.cache.set(source_path, url)

    async def _copy(self, source_path: str) -> str:
        ref = BlobReference.for_path(source_path)

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would migrate: {source_path}")
            return f"supabase://{self.bucket}/{source_path}"

        if self.target is None:
            raise StoreError("No target store configured for blob upload")

        download_url = await with_retry(
            lambda: self.source.get_download_url_async(source_path),
            self.retry_policy,
            f"locating {source_path}",
        )
        data = await with_retry(
            lambda: self.source.download_async(download_url),
            self.retry_policy,
            f"downloading {source_path}",
        )
        await with_retry(
            lambda: self.target.upload_async(source_path, data, ref.content_type),
            self.retry_policy,
            f"uploading {source_path}",
        )
        self.copies += 1

        url = await self.target.public_url_async(source_path)
        logger.debug(f"Migrated {source_path} ({len(data)} bytes, {ref.content_type})")
        return url

    async def migrate_value(self, value: Any) -> Any:
        """
        Migrate the blob(s) a field value points to.

        Strings pointing into the source blob store are replaced by the
        migrated URL; lists are handled element-wise. Values that are not
        blob references, or whose migration fails, are returned unchanged.
        """
        if isinstance(value, list):
            return [await self.migrate_value(v) for v in value]

        ref = BlobReference.from_url(value)
        if ref is None:
            return value

        migrated = await self.migrate(ref.source_path)
        return migrated if migrated else value
