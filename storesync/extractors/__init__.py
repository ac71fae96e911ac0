"""Source stores the migration reads from."""

from .base import BaseSource
from .firebase_extractor import FirebaseSource
from .export_extractor import ExportFileSource

__all__ = [
    "BaseSource",
    "FirebaseSource",
    "ExportFileSource",
]
