import asyncio
import requests
import logging
from typing import Dict, Any

from exceptions import ConnectorError
from .base_connector import NotificationConnector

logger = logging.getLogger("workflow_engine")


class SlackConnector(NotificationConnector):
    """Posts to a Slack incoming webhook."""

    name = "slack"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config.get("rate_limit_per_minute", 0))
        self.webhook_url = config.get("webhook_url")
        self.timeout = config.get("timeout", 10)

    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        return await asyncio.to_thread(self._send_sync, config)

    def _send_sync(self, config: Dict[str, Any]) -> Dict[str, Any]:
        url = config.get("webhook_url") or self.webhook_url
        if not url:
            raise ConnectorError("Slack webhook URL is not configured")

        payload = {"text": config.get("message", "")}
        if config.get("channel"):
            payload["channel"] = config["channel"]

        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"Slack notification failed: {e}")
            raise ConnectorError(f"Slack notification failed: {e}", status_code=status)

        return {"channel": config.get("channel"), "message": payload["text"]}
