import requests
from typing import Any, Dict, Optional
import logging

from exceptions import StoreUnavailableError

logger = logging.getLogger("workflow_engine")


class BaseClient:
    """
    Thin requests wrapper for the backend API. 404 maps to None; every other
    failure raises StoreUnavailableError so callers can skip and retry.
    """

    def __init__(self, base_url: str, api_key: str = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if api_key:
            self.session.headers.update({"X-API-Key": api_key})

    def _request(self, method: str, endpoint: str, params: Dict = None, json: Any = None) -> Optional[Any]:
        try:
            resp = self.session.request(method, f"{self.base_url}{endpoint}", params=params, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{method} {endpoint} failed: {e}")
            raise StoreUnavailableError(f"{method} {endpoint} failed: {e}")

        if resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            logger.error(f"{method} {endpoint} failed: {e}")
            if resp.text:
                logger.error(f"Response: {resp.text}")
            raise StoreUnavailableError(f"{method} {endpoint} failed: {e}", status_code=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    def _get(self, endpoint: str, params: Dict = None) -> Optional[Any]:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, json: Any = None) -> Optional[Any]:
        return self._request("POST", endpoint, json=json)

    def _put(self, endpoint: str, json: Any = None) -> Optional[Any]:
        return self._request("PUT", endpoint, json=json)

    def _patch(self, endpoint: str, json: Any = None) -> Optional[Any]:
        return self._request("PATCH", endpoint, json=json)

    def _delete(self, endpoint: str) -> Optional[Any]:
        return self._request("DELETE", endpoint)
