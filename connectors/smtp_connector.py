import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Any, List
import logging
import asyncio

from exceptions import ConnectorError
from .base_connector import NotificationConnector

logger = logging.getLogger("workflow_engine")


def _recipients(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


class SMTPConnector(NotificationConnector):
    name = "smtp"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config.get("rate_limit_per_minute", 0))
        self.host = config.get("host")
        self.port = config.get("port", 587)
        self.username = config.get("username")
        self.password = config.get("password")
        self.use_tls = config.get("use_tls", True)
        self.from_email = config.get("from_email")
        self.timeout = config.get("timeout", 30)

    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        # Wrap synchronous SMTP in a thread to keep the event loop responsive
        return await asyncio.to_thread(self._send_sync, config)

    def _send_sync(self, config: Dict[str, Any]) -> Dict[str, Any]:
        to_emails = _recipients(config.get("to"))
        if not to_emails:
            raise ConnectorError("Email requires a 'to' address")

        # A trailing space in an address can make some providers silently drop the message
        from_email = str(config.get("from_email") or self.from_email or "").strip()
        html_body = config.get("html") or config.get("template") or ""
        text_body = config.get("text")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = config.get("subject", "")
        from_name = config.get("from_name")
        msg["From"] = f"{from_name.strip()} <{from_email}>" if from_name else from_email
        msg["To"] = ", ".join(to_emails)
        if config.get("reply_to"):
            msg["Reply-To"] = config["reply_to"]
        for key, value in (config.get("headers") or {}).items():
            msg.add_header(key, str(value))

        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(from_email, to_emails, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed to {to_emails}: {e}")
            raise ConnectorError(f"SMTP send failed: {e}")

        return {"to": to_emails, "subject": msg["Subject"]}
