"""Idempotent writer with a single schema-drift fallback."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import SchemaError, StoreError
from ..loaders.base import BaseTarget
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Result of a write attempt."""
    success: bool
    used_fallback: bool = False
    dry_run: bool = False
    dropped_fields: List[str] = field(default_factory=list)


class UpsertWriter:
    """
    Writes one record with upsert-by-natural-key semantics.

    - SchemaError: retried exactly once with the caller's fallback projection
    - ConnectivityError: retried with bounded backoff (independent of the above)
    - anything else, or a failing fallback: raised to the caller
    """

    def __init__(
        self,
        target: Optional[BaseTarget],
        dry_run: bool = False,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.target = target
        self.dry_run = dry_run
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback_writes = 0

    async def _upsert(self, table: str, record: Dict[str, Any], on_conflict: str) -> None:
        await with_retry(
            lambda: self.target.upsert_async(table, [record], on_conflict),
            self.retry_policy,
            f"upsert into {table}",
        )

    async def write(
        self,
        table: str,
        record: Dict[str, Any],
        fallback_record: Optional[Dict[str, Any]] = None,
        on_conflict: str = "id"
    ) -> WriteResult:
        """
        Persist a record, falling back to a reduced projection on schema drift.

        Args:
            table: Target table
            record: Full record
            fallback_record: Reduced projection without the droppable fields
            on_conflict: Natural key column

        Returns:
            WriteResult describing how the record was stored

        Raises:
            StoreError: if the write (and fallback, when attempted) fails
        """
        if self.dry_run:
            logger.debug(f"[DRY-RUN] Would upsert into {table} on {on_conflict}={record.get(on_conflict)}")
            return WriteResult(success=True, dry_run=True)

        if self.target is None:
            raise StoreError("No target store configured")

        try:
            await self._upsert(table, record, on_conflict)
            return WriteResult(success=True)
        except SchemaError as e:
            if fallback_record is None:
                raise
            dropped = sorted(set(record) - set(fallback_record))
            logger.warning(
                f"Schema mismatch on {table} ({e.column or e.table or e.code}), "
                f"retrying without {', '.join(dropped) or 'optional fields'}"
            )

        await self._upsert(table, fallback_record, on_conflict)
        self.fallback_writes += 1
        return WriteResult(success=True, used_fallback=True, dropped_fields=dropped)
