"""Shared fixtures: in-memory source and target stores."""

import copy
from typing import Any, Dict, List, Optional, Set

import pytest

from storesync.errors import (
    ConnectivityError,
    ConstraintViolation,
    SchemaError,
    StoreError,
)
from storesync.extractors.base import BaseSource
from storesync.loaders.base import BaseTarget
from storesync.services.retry import RetryPolicy


class FakeSource(BaseSource):
    """Source backed by dicts; counts downloads per path."""

    name = "fake"

    def __init__(
        self,
        collections: Optional[Dict[str, Any]] = None,
        blobs: Optional[Dict[str, bytes]] = None,
        reachable: bool = True
    ):
        self.collections = collections or {}
        self.blobs = blobs or {}
        self.reachable = reachable
        self.broken_collections: Set[str] = set()
        self.broken_blobs: Set[str] = set()
        self.downloads: Dict[str, int] = {}
        self.closed = False

    def read_collection(self, collection: str) -> Optional[Dict[str, Any]]:
        if collection in self.broken_collections:
            raise ConnectivityError(f"cannot read {collection}")
        return copy.deepcopy(self.collections.get(collection))

    def list_blobs(self, prefix: str) -> List[str]:
        return sorted(p for p in self.blobs if p.startswith(prefix.rstrip("/") + "/"))

    def get_download_url(self, path: str) -> str:
        if path not in self.blobs:
            raise StoreError(f"Object not found: {path}", status=404)
        return f"mem://{path}"

    def download(self, url: str) -> bytes:
        path = url[len("mem://"):]
        self.downloads[path] = self.downloads.get(path, 0) + 1
        if path in self.broken_blobs:
            raise StoreError(f"Failed to download {path}", status=403)
        return self.blobs[path]

    def validate_connection(self) -> bool:
        return self.reachable

    def close(self) -> None:
        self.closed = True


class FakeTarget(BaseTarget):
    """
    Target that keeps rows keyed by their conflict column.

    Schema drift is simulated by ``missing_columns``: any row carrying one of
    those columns for the table is rejected with a SchemaError.
    """

    name = "fake"

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.missing_columns: Dict[str, Set[str]] = {}
        self.rejected_keys: Set[str] = set()
        self.connectivity_failures = 0
        self.upsert_calls = 0
        self.uploads: Dict[str, int] = {}

    def upsert(self, table: str, records: List[Dict[str, Any]], on_conflict: str) -> None:
        self.upsert_calls += 1
        if self.connectivity_failures > 0:
            self.connectivity_failures -= 1
            raise ConnectivityError("connection reset", status=503)

        for record in records:
            missing = self.missing_columns.get(table, set()) & set(record)
            if missing:
                column = sorted(missing)[0]
                raise SchemaError(
                    f"Could not find the '{column}' column of '{table}' in the schema cache",
                    column=column,
                    table=table,
                    code="PGRST204",
                    status=400,
                )
            key = str(record[on_conflict])
            if key in self.rejected_keys:
                raise ConstraintViolation(f"violates check constraint for {key}", code="23514", status=409)

        rows = self.tables.setdefault(table, {})
        for record in records:
            key = str(record[on_conflict])
            rows[key] = {**rows.get(key, {}), **copy.deepcopy(record)}

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.uploads[path] = self.uploads.get(path, 0) + 1
        self.objects[path] = data
        self.content_types[path] = content_type

    def public_url(self, path: str) -> str:
        return f"https://target.test/storage/v1/object/public/files/{path}"

    def validate_connection(self) -> bool:
        return self.reachable

    def rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.get(table, {})


def storage_url(path: str, bucket: str = "demo.appspot.com") -> str:
    """Firebase Storage download URL for a path."""
    from urllib.parse import quote

    return (
        f"https://firebasestorage.googleapis.com/v0/b/{bucket}/o/"
        f"{quote(path, safe='')}?alt=media&token=abc"
    )


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def target():
    return FakeTarget()


@pytest.fixture
def fast_retry():
    """Retry policy without real backoff delays."""
    return RetryPolicy(attempts=3, base=0.0, cap=0.0)
