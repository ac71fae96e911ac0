"""Shared HTTP session setup and error translation for the REST stores."""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConnectivityError, StoreError

logger = logging.getLogger(__name__)

RETRY_STATUSES = [429, 500, 502, 503, 504]


def create_session(
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    pool_size: int = 50,
    headers: Optional[Dict[str, str]] = None
) -> requests.Session:
    """
    Create a requests session with retry logic.

    urllib3 only retries idempotent methods by default, so reads get
    transport-level retries while writes are left to the caller.
    """
    session = requests.Session()

    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        raise_on_status=False,
    )

    adapter = HTTPAdapter(
        max_retries=retries,
        pool_connections=pool_size,
        pool_maxsize=pool_size,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    if headers:
        session.headers.update(headers)

    return session


def send(session: requests.Session, method: str, url: str, **kwargs) -> requests.Response:
    """Issue a request, translating transport failures into ConnectivityError."""
    try:
        return session.request(method, url, **kwargs)
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise ConnectivityError(f"{method} {url} failed: {e}") from e
    except requests.exceptions.RetryError as e:
        raise ConnectivityError(f"{method} {url} exhausted retries: {e}") from e


def error_body(response: requests.Response) -> Dict[str, Any]:
    """Best-effort JSON error payload."""
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text or response.reason or ""}
    if isinstance(data, dict):
        return data
    return {"message": str(data)}


def raise_for_status(response: requests.Response, context: str) -> None:
    """Raise a typed StoreError for non-2xx responses."""
    if response.status_code < 400:
        return

    body = error_body(response)
    message = (
        body.get("message")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )
    if not isinstance(message, str):
        message = str(message)

    if response.status_code in RETRY_STATUSES:
        raise ConnectivityError(
            f"{context}: {message}",
            status=response.status_code,
            details=body,
        )

    raise StoreError(
        f"{context}: {message}",
        code=str(body.get("code")) if body.get("code") else None,
        status=response.status_code,
        details=body,
    )
