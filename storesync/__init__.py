"""
Store Sync

A one-shot migration engine that copies a marketplace dataset from a
Firebase Realtime Database (plus Firebase Storage) into Supabase.

Supports:
- Per-entity mapping strategies with lossless metadata bucketing
- Bounded-concurrency batch processing with progress and ETA
- Idempotent upserts keyed by natural keys
- Schema-drift fallback with declared reduced projections
- Blob migration with per-job deduplication
- Dry-run, quick and storage-only modes
"""

__version__ = "0.1.0"
