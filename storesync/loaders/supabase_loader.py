"""Supabase target: PostgREST tables and Storage buckets."""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .base import BaseTarget
from ..errors import (
    ConnectivityError,
    ConstraintViolation,
    SchemaError,
    StoreError,
)
from ..http import create_session, error_body, send, RETRY_STATUSES

logger = logging.getLogger(__name__)

# PostgREST / PostgreSQL codes meaning "the shape does not exist at the target"
SCHEMA_ERROR_CODES = {
    "PGRST204",  # column not found in schema cache
    "PGRST205",  # table not found in schema cache
    "42703",     # undefined_column
    "42P01",     # undefined_table
}

_COLUMN_PATTERNS = [
    re.compile(r"Could not find the '(?P<name>\w+)' column"),
    re.compile(r'column "?(?P<name>[\w.]+)"? (?:of relation "?[\w.]+"? )?does not exist'),
]
_TABLE_PATTERNS = [
    re.compile(r"Could not find the table '(?P<name>[\w.]+)'"),
    re.compile(r'relation "?(?P<name>[\w.]+)"? does not exist'),
]


def _search(patterns, message: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(message)
        if match:
            return match.group("name")
    return None


def classify_error(status: int, body: Dict[str, Any], context: str) -> StoreError:
    """
    Translate a PostgREST error response into the typed taxonomy.

    Dispatch is on the error code; the message is only parsed afterwards to
    name the missing column/table for logging.
    """
    code = str(body.get("code") or "")
    message = str(body.get("message") or body.get("error") or f"HTTP {status}")
    full_message = f"{context}: {message}"

    if code in SCHEMA_ERROR_CODES:
        return SchemaError(
            full_message,
            column=_search(_COLUMN_PATTERNS, message),
            table=_search(_TABLE_PATTERNS, message),
            code=code,
            status=status,
            details=body,
        )

    if code.startswith("23"):
        return ConstraintViolation(full_message, code=code, status=status, details=body)

    if status in RETRY_STATUSES:
        return ConnectivityError(full_message, code=code or None, status=status, details=body)

    return StoreError(full_message, code=code or None, status=status, details=body)


class SupabaseTarget(BaseTarget):
    """
    Target for a Supabase project, using the service-role key.

    Handles:
    - Upserts through PostgREST with ``on_conflict`` and merge-duplicates
    - Blob uploads with ``x-upsert`` (overwrite on conflict)
    - Public URLs for uploaded blobs
    """

    name = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str = "files",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Supabase target.

        Args:
            url: Project URL (https://<ref>.supabase.co)
            service_key: Service-role API key
            bucket: Storage bucket for migrated blobs
            timeout: Per-request timeout in seconds
            session: Custom requests session
        """
        self.url = url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self._session = session or create_session(headers={
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        })

    def upsert(
        self,
        table: str,
        records: List[Dict[str, Any]],
        on_conflict: str
    ) -> None:
        """Upsert rows into a table."""
        response = send(
            self._session, "POST", f"{self.url}/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=records,
            headers={
                "Content-Type": "application/json",
                "Prefer": "resolution=merge-duplicates,return=minimal",
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise classify_error(
                response.status_code, error_body(response), f"Upsert into '{table}'"
            )

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Upload a blob, overwriting any existing object at the path."""
        response = send(
            self._session, "POST",
            f"{self.url}/storage/v1/object/{self.bucket}/{quote(path)}",
            data=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true",
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            body = error_body(response)
            status = response.status_code
            message = f"Upload of '{path}': {body.get('message') or body.get('error') or status}"
            if status in RETRY_STATUSES:
                raise ConnectivityError(message, status=status, details=body)
            raise StoreError(message, status=status, details=body)

    def public_url(self, path: str) -> str:
        """Public URL of an object in a public bucket (no request needed)."""
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    def validate_connection(self) -> bool:
        """Validate connection against the PostgREST root."""
        try:
            response = send(
                self._session, "GET", f"{self.url}/rest/v1/",
                timeout=self.timeout,
            )
            if response.status_code in (401, 403) or response.status_code >= 500:
                logger.error(
                    f"Supabase connection check failed: HTTP {response.status_code}"
                )
                return False
            return True
        except StoreError as e:
            logger.error(f"Supabase connection check failed: {e}")
            return False

    def close(self) -> None:
        self._session.close()
