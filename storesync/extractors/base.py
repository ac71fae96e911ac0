"""Base source store interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import asyncio
import logging

from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class BaseSource(ABC):
    """
    Base class for source stores.

    A source is read-only from the engine's point of view. It exposes whole
    collections as ``{key: payload}`` mappings and a blob sub-interface for
    listing and downloading binary objects. Implementations are synchronous;
    the ``*_async`` wrappers run them in a worker thread so a slow call only
    suspends the calling task.
    """

    name = "source"

    @abstractmethod
    def read_collection(self, collection: str) -> Optional[Dict[str, Any]]:
        """
        Read an entire collection.

        Args:
            collection: Collection (top-level node) name

        Returns:
            Mapping of key -> nested payload, or None if the collection is absent
        """
        pass

    @abstractmethod
    def list_blobs(self, prefix: str) -> List[str]:
        """List the full paths of all blobs under a prefix."""
        pass

    @abstractmethod
    def get_download_url(self, path: str) -> str:
        """Get a temporary locator that can be used to download a blob."""
        pass

    @abstractmethod
    def download(self, url: str) -> bytes:
        """Download the bytes behind a locator returned by get_download_url."""
        pass

    def validate_connection(self) -> bool:
        """Validate the connection to the source store."""
        return True

    @property
    def supports_blobs(self) -> bool:
        return True

    def close(self) -> None:
        """Release any held resources."""

    # Async wrappers

    async def read_collection_async(self, collection: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.read_collection, collection)

    async def list_blobs_async(self, prefix: str) -> List[str]:
        return await asyncio.to_thread(self.list_blobs, prefix)

    async def get_download_url_async(self, path: str) -> str:
        return await asyncio.to_thread(self.get_download_url, path)

    async def download_async(self, url: str) -> bytes:
        return await asyncio.to_thread(self.download, url)

    async def validate_connection_async(self) -> bool:
        return await asyncio.to_thread(self.validate_connection)

    def to_records(self, collection: str, payload: Optional[Dict[str, Any]]) -> List[SourceRecord]:
        """
        Convert a collection payload to SourceRecords.

        RTDB returns arrays for collections whose keys are dense integers, so
        lists are accepted too and keyed by index. Non-dict entries are skipped.
        """
        if not payload:
            return []

        if isinstance(payload, list):
            items = [(str(i), v) for i, v in enumerate(payload)]
        elif isinstance(payload, dict):
            items = [(str(k), v) for k, v in payload.items()]
        else:
            logger.warning(f"Ignoring non-collection value at {collection}")
            return []

        records = []
        for key, value in items:
            if not isinstance(value, dict):
                if value is not None:
                    logger.warning(f"Ignoring non-object entry {collection}/{key}")
                continue
            records.append(SourceRecord(collection=collection, key=key, data=value))
        return records
