import asyncio
import requests
import logging
from typing import Dict, Any

from exceptions import ConnectorError
from .base_connector import NotificationConnector
from .smtp_connector import _recipients

logger = logging.getLogger("workflow_engine")


class SendGridConnector(NotificationConnector):
    name = "sendgrid"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config.get("rate_limit_per_minute", 0))
        self.api_key = config.get("api_key")
        self.from_email = config.get("from_email")
        self.url = "https://api.sendgrid.com/v3/mail/send"
        self.timeout = config.get("timeout", 30)

    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        return await asyncio.to_thread(self._send_sync, config)

    def _send_sync(self, config: Dict[str, Any]) -> Dict[str, Any]:
        to_emails = _recipients(config.get("to"))
        if not to_emails:
            raise ConnectorError("Email requires a 'to' address")

        content = []
        if config.get("text"):
            content.append({"type": "text/plain", "value": config["text"]})
        html_body = config.get("html") or config.get("template")
        if html_body:
            content.append({"type": "text/html", "value": html_body})

        payload = {
            "personalizations": [{
                "to": [{"email": email} for email in to_emails],
                "headers": config.get("headers") or {},
            }],
            "from": {"email": config.get("from_email") or self.from_email},
            "subject": config.get("subject", ""),
            "content": content or [{"type": "text/plain", "value": ""}],
        }
        if config.get("reply_to"):
            payload["reply_to"] = {"email": config["reply_to"]}

        auth_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            response = requests.post(self.url, json=payload, headers=auth_headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"SendGrid send failed: {e}")
            raise ConnectorError(f"SendGrid send failed: {e}", status_code=status)

        return {"to": to_emails, "subject": payload["subject"], "message_id": response.headers.get("X-Message-Id")}
