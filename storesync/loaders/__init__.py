"""Target stores the migration writes to."""

from .base import BaseTarget
from .supabase_loader import SupabaseTarget, classify_error

__all__ = [
    "BaseTarget",
    "SupabaseTarget",
    "classify_error",
]
