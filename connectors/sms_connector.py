import asyncio
import requests
import logging
from typing import Dict, Any

from exceptions import ConnectorError
from .base_connector import NotificationConnector

logger = logging.getLogger("workflow_engine")


class TwilioSMSConnector(NotificationConnector):
    name = "twilio"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config.get("rate_limit_per_minute", 0))
        self.account_sid = config.get("account_sid")
        self.auth_token = config.get("auth_token")
        self.from_number = config.get("from_number")
        self.url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        self.timeout = config.get("timeout", 30)

    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        return await asyncio.to_thread(self._send_sync, config)

    def _send_sync(self, config: Dict[str, Any]) -> Dict[str, Any]:
        to_number = str(config.get("to") or "").strip()
        if not to_number:
            raise ConnectorError("SMS requires a 'to' number")

        data = {
            "From": config.get("from") or self.from_number,
            "To": to_number,
            "Body": config.get("message", ""),
        }
        try:
            response = requests.post(self.url, data=data, auth=(self.account_sid, self.auth_token), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"Twilio SMS send failed to {to_number}: {e}")
            raise ConnectorError(f"SMS send failed: {e}", status_code=status)

        body = response.json()
        return {"to": to_number, "message": data["Body"], "sid": body.get("sid")}
