"""Base target store interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
import asyncio
import logging

logger = logging.getLogger(__name__)


class BaseTarget(ABC):
    """
    Base class for target stores.

    Targets persist normalized rows with insert-or-update semantics keyed by
    a declared conflict column, and store blobs at a path with overwrite
    allowed. Failures are raised as the typed errors in ``storesync.errors``
    (SchemaError, ConnectivityError, ConstraintViolation, StoreError) so that
    callers can dispatch on the kind of failure.
    """

    name = "target"

    @abstractmethod
    def upsert(
        self,
        table: str,
        records: List[Dict[str, Any]],
        on_conflict: str
    ) -> None:
        """
        Insert or update rows.

        Args:
            table: Target table
            records: Rows to write
            on_conflict: Column used to detect existing rows
        """
        pass

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Upload bytes to a blob path, overwriting any existing object."""
        pass

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Get a stable public URL for a blob path."""
        pass

    def validate_connection(self) -> bool:
        """Validate the connection to the target store."""
        return True

    def close(self) -> None:
        """Release any held resources."""

    # Async wrappers

    async def upsert_async(
        self,
        table: str,
        records: List[Dict[str, Any]],
        on_conflict: str
    ) -> None:
        await asyncio.to_thread(self.upsert, table, records, on_conflict)

    async def upload_async(self, path: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self.upload, path, data, content_type)

    async def public_url_async(self, path: str) -> str:
        return await asyncio.to_thread(self.public_url, path)

    async def validate_connection_async(self) -> bool:
        return await asyncio.to_thread(self.validate_connection)
