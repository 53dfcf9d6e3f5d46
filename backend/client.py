# backend/client.py
import os
from typing import Any, Dict, Optional

import requests
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from storefront.logger import get_logger

logger = get_logger(__name__)

API_URL = os.getenv("WP_API_URL", "http://flores.local/wp-json").rstrip("/")
WC_CONSUMER_KEY = os.getenv("WC_CONSUMER_KEY", "").strip()
WC_CONSUMER_SECRET = os.getenv("WC_CONSUMER_SECRET", "").strip()
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))
BACKEND_MAX_ATTEMPTS = int(os.getenv("BACKEND_MAX_ATTEMPTS", "3"))
USER_AGENT = os.getenv("BACKEND_USER_AGENT", "storefront-catalog/0.1")


class BackendError(Exception):
    """The backend rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BackendUnavailable(BackendError):
    """Network failure or server-side error; the operation may be retried."""


class BackendNotFound(BackendError):
    """The requested resource does not exist."""


def _build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    if WC_CONSUMER_KEY and WC_CONSUMER_SECRET:
        session.auth = (WC_CONSUMER_KEY, WC_CONSUMER_SECRET)
    return session


def _readable_error(resp: requests.Response) -> str:
    """Prefer the server's own message, else "Error <status>: <reason>"."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Error {resp.status_code}: {resp.reason}"


class BackendClient:
    def __init__(
        self,
        base_url: str = API_URL,
        session: Optional[requests.Session] = None,
        timeout: float = API_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or _build_session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _decode(self, resp: requests.Response, method: str, url: str) -> Any:
        status = resp.status_code
        if status == 404:
            raise BackendNotFound(_readable_error(resp), status)
        if status >= 500:
            logger.warning("Backend returned %s for %s %s.", status, method, url)
            raise BackendUnavailable(_readable_error(resp), status)
        if status >= 400:
            raise BackendError(_readable_error(resp), status)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {method} {url}: {e}", status) from e

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(BACKEND_MAX_ATTEMPTS),
    )
    def _get_with_retry(self, url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
        return self.session.request("GET", url, params=params, timeout=self.timeout)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self._url(path)
        logger.debug("GET %s", url)
        try:
            resp = self._get_with_retry(url, params)
        except RetryError as e:
            logger.error("GET %s failed after retries: %s", url, e)
            raise BackendUnavailable("No response from server") from e
        except requests.RequestException as e:
            logger.error("GET %s failed: %s", url, e)
            raise BackendUnavailable(str(e)) from e
        return self._decode(resp, "GET", url)

    def send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Write request (POST/PUT/DELETE). Never retried, so a create is not
        submitted twice.
        """
        url = self._url(path)
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise BackendUnavailable("No response from server") from e
        return self._decode(resp, method, url)
