"""Firebase Realtime Database + Storage source, over the REST APIs."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from firebase_admin import credentials
from google.auth import exceptions as google_auth_exceptions

from .base import BaseSource
from ..errors import ConfigurationError, ConnectivityError, StoreError
from ..http import create_session, raise_for_status, send

logger = logging.getLogger(__name__)

# Refresh OAuth tokens this long before they expire.
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


def service_account_credential(info: Dict[str, Any]) -> credentials.Certificate:
    """
    Build Admin credentials from a parsed service account key.

    Raises:
        ConfigurationError: if the key is not a usable service account
    """
    try:
        return credentials.Certificate(info)
    except ValueError as e:
        raise ConfigurationError(f"Invalid Firebase service account key: {e}") from e


class FirebaseSource(BaseSource):
    """
    Source for a Firebase project.

    Supports:
    - Whole-collection reads from the Realtime Database (``<db>/<path>.json``)
    - Blob listing with pagination from Firebase Storage
    - Download locators using the object's download token when present
    - Service account credentials (OAuth access tokens, refreshed before
      expiry) or a pre-minted token / legacy database secret
    """

    name = "firebase"

    STORAGE_BASE_URL = "https://firebasestorage.googleapis.com/v0/b"

    def __init__(
        self,
        database_url: str,
        storage_bucket: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        credential: Optional[credentials.Certificate] = None
    ):
        """
        Initialize the Firebase source.

        Args:
            database_url: Realtime Database URL (https://<project>.firebaseio.com)
            storage_bucket: Storage bucket name (<project>.appspot.com)
            auth_token: Database secret or OAuth access token
            timeout: Per-request timeout in seconds
            session: Custom requests session
            credential: Service account credentials; takes precedence over auth_token
        """
        self.database_url = database_url.rstrip("/")
        self.storage_bucket = storage_bucket
        self.auth_token = auth_token
        self.timeout = timeout
        self._session = session or create_session()
        self.credential = credential
        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        self._token_lock = threading.Lock()

    @property
    def supports_blobs(self) -> bool:
        return bool(self.storage_bucket)

    def _token_is_fresh(self) -> bool:
        if self._access_token is None:
            return False
        if self._token_expiry is None:
            return True
        expiry = self._token_expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry - TOKEN_REFRESH_MARGIN > datetime.now(timezone.utc)

    def _oauth_token(self) -> str:
        """Current access token for the service account, minted on demand."""
        with self._token_lock:
            if not self._token_is_fresh():
                try:
                    token = self.credential.get_access_token()
                except google_auth_exceptions.TransportError as e:
                    raise ConnectivityError(f"Could not reach the token endpoint: {e}") from e
                except google_auth_exceptions.GoogleAuthError as e:
                    raise StoreError(f"Could not obtain a Firebase access token: {e}") from e
                self._access_token = token.access_token
                self._token_expiry = token.expiry
                logger.debug(f"Minted Firebase access token (expires {token.expiry})")
            return self._access_token

    def _db_params(self, **extra) -> Dict[str, Any]:
        params = dict(extra)
        if self.credential is not None:
            params["access_token"] = self._oauth_token()
        elif self.auth_token:
            params["auth"] = self.auth_token
        return params

    def _storage_headers(self) -> Dict[str, str]:
        if self.credential is not None:
            return {"Authorization": f"Bearer {self._oauth_token()}"}
        if self.auth_token:
            return {"Authorization": f"Bearer {self.auth_token}"}
        return {}

    def _object_url(self, path: str) -> str:
        return f"{self.STORAGE_BASE_URL}/{self.storage_bucket}/o/{quote(path, safe='')}"

    def read_collection(self, collection: str) -> Optional[Dict[str, Any]]:
        """Read a whole collection from the Realtime Database."""
        url = f"{self.database_url}/{collection.strip('/')}.json"
        response = send(
            self._session, "GET", url,
            params=self._db_params(),
            timeout=self.timeout,
        )
        raise_for_status(response, f"Reading '{collection}'")
        return response.json()

    def list_blobs(self, prefix: str) -> List[str]:
        """List every object under a prefix, following page tokens."""
        if not self.storage_bucket:
            raise StoreError("Firebase Storage bucket is not configured")

        url = f"{self.STORAGE_BASE_URL}/{self.storage_bucket}/o"
        folder = prefix.rstrip("/") + "/"
        paths: List[str] = []
        page_token = None

        while True:
            params = {"prefix": folder}
            if page_token:
                params["pageToken"] = page_token

            response = send(
                self._session, "GET", url,
                params=params,
                headers=self._storage_headers(),
                timeout=self.timeout,
            )
            raise_for_status(response, f"Listing '{folder}'")
            data = response.json()

            paths.extend(item["name"] for item in data.get("items", []) if item.get("name"))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return paths

    def get_download_url(self, path: str) -> str:
        """Resolve a download URL for an object, using its download token if any."""
        if not self.storage_bucket:
            raise StoreError("Firebase Storage bucket is not configured")

        object_url = self._object_url(path)
        response = send(
            self._session, "GET", object_url,
            headers=self._storage_headers(),
            timeout=self.timeout,
        )
        raise_for_status(response, f"Resolving '{path}'")

        tokens = response.json().get("downloadTokens")
        if tokens:
            token = tokens.split(",")[0]
            return f"{object_url}?alt=media&token={token}"
        return f"{object_url}?alt=media"

    def download(self, url: str) -> bytes:
        """Download the bytes of an object."""
        response = send(
            self._session, "GET", url,
            headers=self._storage_headers(),
            timeout=self.timeout,
        )
        raise_for_status(response, "Failed to download")
        return response.content

    def validate_connection(self) -> bool:
        """Validate connection with a shallow read of the database root."""
        try:
            response = send(
                self._session, "GET", f"{self.database_url}/.json",
                params=self._db_params(shallow="true"),
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                logger.error(
                    f"Firebase connection check failed: HTTP {response.status_code}"
                )
                return False
            return True
        except StoreError as e:
            logger.error(f"Firebase connection check failed: {e}")
            return False

    def close(self) -> None:
        self._session.close()
