"""Source backed by a Realtime Database JSON export and a local blob directory."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import unquote, urlparse

from .base import BaseSource
from ..errors import ConfigurationError, StoreError

logger = logging.getLogger(__name__)


class ExportFileSource(BaseSource):
    """
    Source for an offline RTDB export.

    The export file is the JSON downloaded from the Firebase console
    ("Export JSON"): top-level keys are collections. Blobs are served from
    ``blob_dir`` using the same relative paths as in Firebase Storage.
    """

    name = "export"

    def __init__(
        self,
        file_path: Union[str, Path],
        blob_dir: Optional[Union[str, Path]] = None,
        encoding: str = "utf-8"
    ):
        self.file_path = Path(file_path)
        self.blob_dir = Path(blob_dir) if blob_dir else None
        self.encoding = encoding
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            if not self.file_path.is_file():
                raise ConfigurationError(f"Export file not found: {self.file_path}")
            with open(self.file_path, encoding=self.encoding) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ConfigurationError(f"Export file {self.file_path} is not a JSON object")
            self._data = data
            logger.info(f"Loaded export {self.file_path} ({len(data)} top-level nodes)")
        return self._data

    @property
    def supports_blobs(self) -> bool:
        return self.blob_dir is not None

    def read_collection(self, collection: str) -> Optional[Dict[str, Any]]:
        node: Any = self._load()
        for part in collection.strip("/").split("/"):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node

    def list_blobs(self, prefix: str) -> List[str]:
        if not self.blob_dir:
            raise StoreError("No blob directory configured for the export source")

        folder = self.blob_dir / prefix.strip("/")
        if not folder.is_dir():
            return []

        return sorted(
            p.relative_to(self.blob_dir).as_posix()
            for p in folder.rglob("*")
            if p.is_file()
        )

    def get_download_url(self, path: str) -> str:
        if not self.blob_dir:
            raise StoreError("No blob directory configured for the export source")
        blob_path = (self.blob_dir / path).resolve()
        if not blob_path.is_file():
            raise StoreError(f"Blob not found: {path}")
        return blob_path.as_uri()

    def download(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise StoreError(f"Unsupported locator: {url}")
        return Path(unquote(parsed.path)).read_bytes()

    def validate_connection(self) -> bool:
        try:
            self._load()
            return True
        except (ConfigurationError, ValueError) as e:
            logger.error(f"Export file check failed: {e}")
            return False
