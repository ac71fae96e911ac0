"""Error taxonomy for source/target store operations."""

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for failures reported by a source or target store."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class SchemaError(StoreError):
    """The target rejected a write because a column or table does not exist."""

    def __init__(
        self,
        message: str,
        column: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.column = column
        self.table = table


class ConnectivityError(StoreError):
    """Network failure, timeout, rate limiting or a 5xx from the store."""


class ConstraintViolation(StoreError):
    """The target rejected a write because of a unique/not-null/foreign key constraint."""


class ConfigurationError(Exception):
    """Fatal configuration problem detected before any extraction."""


class NaturalKeyConflict(Exception):
    """Two different source records normalize to the same natural key."""

    def __init__(self, entity: str, natural_key: str, source_key: str, claimed_by: str):
        super().__init__(
            f"{entity}: natural key '{natural_key}' from '{source_key}' "
            f"already claimed by '{claimed_by}'"
        )
        self.entity = entity
        self.natural_key = natural_key
        self.source_key = source_key
        self.claimed_by = claimed_by


class ItemTimeout(Exception):
    """An item's pipeline did not finish within the per-item timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"Item timed out after {timeout:.1f}s")
        self.timeout = timeout
