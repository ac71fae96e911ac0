"""Transformation of source documents into normalized target rows."""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from dateutil import parser as date_parser

from ..errors import NaturalKeyConflict
from ..models.record import TargetRecord
from .entities import ENTITY_REGISTRY, NOW, EntityStrategy

logger = logging.getLogger(__name__)

# Fields added by earlier tooling (Mongo-style ids, document versions).
INTERNAL_FIELDS = frozenset({"_id", "__v"})

# Epoch values above this are milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 100_000_000_000

_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize(value: Any, top_level: bool = True) -> Any:
    """
    Drop None values recursively and convert dates to ISO strings.

    Store-internal fields (``_id``, ``__v``) are removed from the document
    itself; nested objects keep them.
    """
    if isinstance(value, dict):
        cleaned = {}
        for k, v in value.items():
            if v is None or (top_level and k in INTERNAL_FIELDS):
                continue
            cleaned[k] = sanitize(v, top_level=False)
        return cleaned
    if isinstance(value, list):
        return [sanitize(v, top_level=False) for v in value if v is not None]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class NaturalKeyIndex:
    """
    Per-job registry of natural keys already claimed by a source key.

    ``claim`` does not await, so concurrent tasks on one event loop cannot
    interleave inside it.
    """

    def __init__(self):
        self._claims: Dict[Tuple[str, str], str] = {}

    def claim(self, entity: str, natural_key: str, source_key: str) -> None:
        """
        Record that ``source_key`` owns ``natural_key`` for ``entity``.

        Raises:
            NaturalKeyConflict: if a different source key claimed it first
        """
        owner = self._claims.setdefault((entity, natural_key), source_key)
        if owner != source_key:
            raise NaturalKeyConflict(entity, natural_key, source_key, owner)

    def owner(self, entity: str, natural_key: str) -> Optional[str]:
        return self._claims.get((entity, natural_key))

    def __len__(self) -> int:
        return len(self._claims)


class RecordTransformer:
    """
    Maps raw source documents onto per-entity target rows.

    Supports:
    - Alternate source field names per column (first present wins)
    - Named value transforms, extensible via ``register_transform``
    - Unmapped source fields preserved under ``metadata``
    - Declared defaults, including "now" for timestamps
    """

    def __init__(
        self,
        registry: Optional[Dict[str, EntityStrategy]] = None,
        now: Callable[[], str] = utc_now_iso
    ):
        self.registry = registry if registry is not None else ENTITY_REGISTRY
        self._now = now
        self._transforms: Dict[str, Callable[[Any], Any]] = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[str, Callable[[Any], Any]]:
        return {
            "direct": self._transform_direct,
            "lowercase_email": self._transform_lowercase_email,
            "timestamp": self._transform_timestamp,
            "string_list": self._transform_string_list,
            "integer": self._transform_integer,
            "number": self._transform_number,
            "boolean": self._transform_boolean,
            "text": self._transform_text,
        }

    def register_transform(self, name: str, func: Callable[[Any], Any]) -> None:
        """Register a custom value transform usable by column declarations."""
        self._transforms[name] = func

    def transform(self, entity: str, key: str, payload: Dict[str, Any]) -> Optional[TargetRecord]:
        """
        Transform one source document.

        Args:
            entity: Entity type name (see ``ENTITY_REGISTRY``)
            key: Collection key of the document
            payload: Raw document

        Returns:
            TargetRecord, or None if no natural key can be derived
        """
        strategy = self.registry[entity]
        doc = sanitize(payload or {})
        warnings = []

        row: Dict[str, Any] = {"id": self._source_id(strategy, key, doc)}
        metadata: Dict[str, Any] = {}

        for column in strategy.columns:
            value, source_field = self._first_present(doc, column.sources)
            if value is not None:
                transform = self._transforms.get(column.transform)
                if transform is None:
                    warnings.append(f"Unknown transform: {column.transform}, using direct copy")
                    transformed = value
                else:
                    transformed = transform(value)
                if transformed is None:
                    warnings.append(
                        f"Could not convert {source_field}={value!r} with {column.transform}; kept in metadata"
                    )
                    metadata[source_field] = value
                value = transformed

            if value is None:
                value = self._default(column.default)
            if value is not None:
                row[column.name] = value

        known = strategy.known_fields
        existing = doc.get("metadata")
        if isinstance(existing, dict):
            metadata = {**existing, **metadata}
        elif existing is not None:
            warnings.append("Source metadata is not an object; kept under metadata.metadata")
            metadata["metadata"] = existing
        for field_name, value in doc.items():
            if field_name in known or field_name == "metadata":
                continue
            metadata[field_name] = value
        row["metadata"] = metadata

        natural_key = row.get(strategy.on_conflict)
        if natural_key in (None, ""):
            logger.warning(f"Skipping {entity} {key}: no {strategy.on_conflict}")
            return None

        for warning in warnings:
            logger.debug(f"{entity} {key}: {warning}")

        return TargetRecord(
            entity=entity,
            table=strategy.table,
            natural_key=str(natural_key),
            source_key=key,
            data=row,
            fallback_data=strategy.fallback_projection(row),
            warnings=warnings,
        )

    @staticmethod
    def _source_id(strategy: EntityStrategy, key: str, doc: Dict[str, Any]) -> str:
        for field_name in strategy.id_fields:
            value = doc.get(field_name)
            if value not in (None, ""):
                return str(value)
        return str(key)

    @staticmethod
    def _first_present(doc: Dict[str, Any], sources: Tuple[str, ...]) -> Tuple[Any, Optional[str]]:
        for source in sources:
            value = doc.get(source)
            if value is not None and value != "":
                return value, source
        return None, None

    def _default(self, default: Any) -> Any:
        if default is NOW:
            return self._now()
        if isinstance(default, tuple):
            return list(default)
        return default

    # =========================================================================
    # Built-in Transform Functions
    # =========================================================================

    def _transform_direct(self, value: Any) -> Any:
        return value

    def _transform_lowercase_email(self, value: Any) -> Any:
        """Trim and lowercase an email address."""
        email = str(value).strip().lower()
        return email or None

    def _transform_timestamp(self, value: Any) -> Any:
        """Normalize epoch seconds/milliseconds or a date string to ISO 8601 (UTC)."""
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            text = value.strip()
            try:
                value = float(text)
            except ValueError:
                try:
                    dt = date_parser.parse(text)
                except (ValueError, OverflowError):
                    return None
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=timezone.utc)
                return dt.isoformat()

        if isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
            try:
                return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
            except (OverflowError, OSError, ValueError):
                return None
        return None

    def _transform_string_list(self, value: Any) -> Any:
        """
        Coerce to a list of strings.

        The realtime database stores sparse arrays as objects keyed by index,
        so dicts are read back in key order.
        """
        if isinstance(value, dict):
            items = [v for _, v in sorted(value.items(), key=lambda kv: _index_key(kv[0]))]
        elif isinstance(value, (list, tuple)):
            items = list(value)
        else:
            items = [value]
        return [v if isinstance(v, str) else json.dumps(v) if isinstance(v, (dict, list)) else str(v)
                for v in items]

    def _transform_integer(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        try:
            return int(round(float(str(value).replace(",", "").strip())))
        except (ValueError, OverflowError):
            return None

    def _transform_number(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return value
        try:
            number = float(str(value).replace(",", "").strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else number

    def _transform_boolean(self, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        return None

    def _transform_text(self, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, sort_keys=True)
        return str(value)


def _index_key(key: Any) -> Tuple[int, Any]:
    text = str(key)
    return (0, int(text)) if text.isdigit() else (1, text)
