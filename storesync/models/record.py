"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse
import re


CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "json": "application/json",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# https://firebasestorage.googleapis.com/v0/b/<bucket>/o/<encoded path>?alt=media&token=...
_STORAGE_URL_PATH = re.compile(r"^/v0/b/(?P<bucket>[^/]+)/o/(?P<path>[^?]+)$")


def content_type_for(path: str) -> str:
    """Infer a content type from the file extension of a path."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_CONTENT_TYPE
    ext = name.rsplit(".", 1)[-1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


@dataclass
class SourceRecord:
    """A record read from the source store."""
    collection: str
    key: str
    data: Dict[str, Any]


@dataclass
class TargetRecord:
    """A normalized row ready to be upserted into a target table."""
    entity: str
    table: str
    natural_key: str
    source_key: str
    data: Dict[str, Any]
    fallback_data: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity,
            "table": self.table,
            "natural_key": self.natural_key,
            "source_key": self.source_key,
            "data": self.data,
            "has_fallback": self.fallback_data is not None,
            "warnings": self.warnings,
        }


@dataclass
class BlobReference:
    """A binary object in the source blob store."""
    source_path: str
    content_type: str = DEFAULT_CONTENT_TYPE

    @classmethod
    def for_path(cls, source_path: str) -> "BlobReference":
        return cls(source_path=source_path, content_type=content_type_for(source_path))

    @classmethod
    def from_url(cls, value: Any) -> Optional["BlobReference"]:
        """
        Parse a Firebase Storage download URL or gs:// URI.

        Returns None for anything that does not point into Firebase Storage,
        so callers can keep such values untouched.
        """
        if not isinstance(value, str) or not value:
            return None

        if value.startswith("gs://"):
            _, _, rest = value[len("gs://"):].partition("/")
            return cls.for_path(rest) if rest else None

        if "firebasestorage" not in value:
            return None

        parsed = urlparse(value)
        match = _STORAGE_URL_PATH.match(parsed.path)
        if not match:
            return None

        path = unquote(match.group("path"))
        return cls.for_path(path) if path else None
