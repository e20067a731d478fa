import asyncio
import requests
import logging
from typing import Any, Dict

from exceptions import ConnectorError
from .base_connector import RecordConnector

logger = logging.getLogger("workflow_engine")


class HttpRecordConnector(RecordConnector):
    """
    Base for REST-backed CRM / e-commerce connectors. Subclasses map object
    types to collection paths and shape request bodies.
    """

    name = "http"
    OBJECT_PATHS: Dict[str, str] = {}
    PATH_SUFFIX = ""
    UPDATE_METHOD = "PATCH"

    def __init__(self, base_url: str, access_token: str, rate_limit_per_minute: int = 0, timeout: float = 30):
        super().__init__(rate_limit_per_minute)
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        })

    def _path(self, object_type: str, record_id: str = None) -> str:
        collection = self.OBJECT_PATHS.get(object_type)
        if not collection:
            raise ConnectorError(f"{self.name} does not support object type '{object_type}'")
        if record_id is None:
            return f"{collection}{self.PATH_SUFFIX}"
        return f"{collection}/{record_id}{self.PATH_SUFFIX}"

    def _wrap(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return properties

    def _unwrap(self, object_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return body

    def _request(self, method: str, path: str, json: Dict = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, json=json, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"{self.name} {method} {path} failed: {e}")
            raise ConnectorError(f"{self.name} {method} {path} failed: {e}", status_code=status)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text}

    async def _call(self, method: str, path: str, json: Dict = None) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        return await asyncio.to_thread(self._request, method, path, json)

    async def create_record(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._call("POST", self._path(object_type), self._wrap(object_type, properties))
        return self._unwrap(object_type, body)

    async def update_record(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        if not record_id:
            raise ConnectorError(f"Updating {object_type} requires a record id")
        path = self._path(object_type, str(record_id))
        body = await self._call(self.UPDATE_METHOD, path, self._wrap(object_type, properties))
        # Salesforce answers updates with 204 and no body
        return self._unwrap(object_type, body) or {"id": record_id}
