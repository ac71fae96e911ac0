"""Service layer for the migration engine."""

from .entities import ENTITY_REGISTRY, EntityStrategy, get_strategy, migration_order
from .transformer import NaturalKeyIndex, RecordTransformer
from .scheduler import BatchScheduler
from .blob_migrator import BlobCache, BlobMigrator
from .upsert_writer import UpsertWriter, WriteResult
from .retry import RetryPolicy, with_retry

__all__ = [
    "ENTITY_REGISTRY",
    "EntityStrategy",
    "get_strategy",
    "migration_order",
    "NaturalKeyIndex",
    "RecordTransformer",
    "BatchScheduler",
    "BlobCache",
    "BlobMigrator",
    "UpsertWriter",
    "WriteResult",
    "RetryPolicy",
    "with_retry",
]
