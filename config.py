import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from models.workflow import TriggerType

# Load environment variables from .env file
load_dotenv()

DEFAULT_EVENT_TYPES = [
    t.value for t in TriggerType if t not in (TriggerType.MANUAL, TriggerType.TIME_BASED)
]


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    # Scheduler
    tick_seconds: float = 60
    event_types: List[str] = Field(default_factory=lambda: list(DEFAULT_EVENT_TYPES))

    # Action timeouts
    script_timeout_seconds: float = 5.0
    webhook_timeout_seconds: float = 30.0

    # Workflow store
    store_url: Optional[str] = None
    store_api_key: Optional[str] = None
    definitions_file: Optional[str] = None

    # Connectors
    connector_mode: str = "mock"
    connector_rate_limit_per_minute: int = 0
    email_provider: str = "smtp"
    email_from: str = "noreply@example.com"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    hubspot_access_token: Optional[str] = None
    salesforce_instance_url: Optional[str] = None
    salesforce_access_token: Optional[str] = None
    shopify_shop_domain: Optional[str] = None
    shopify_access_token: Optional[str] = None

    # Service
    log_level: str = "INFO"
    log_file: str = "engine.log"
    api_host: str = "0.0.0.0"
    api_port: int = 8050

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds settings from the process environment (and .env)."""
        return cls(
            tick_seconds=float(os.getenv("ENGINE_TICK_SECONDS", "60")),
            event_types=_env_list("ENGINE_EVENT_TYPES", DEFAULT_EVENT_TYPES),
            script_timeout_seconds=float(os.getenv("SCRIPT_TIMEOUT_SECONDS", "5")),
            webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30")),
            store_url=os.getenv("WORKFLOW_STORE_URL") or None,
            store_api_key=os.getenv("WORKFLOW_STORE_API_KEY") or None,
            definitions_file=os.getenv("WORKFLOW_DEFINITIONS_FILE") or None,
            connector_mode=os.getenv("CONNECTOR_MODE", "mock").lower(),
            connector_rate_limit_per_minute=int(os.getenv("CONNECTOR_RATE_LIMIT_PER_MINUTE", "0")),
            email_provider=os.getenv("EMAIL_PROVIDER", "smtp").lower(),
            email_from=os.getenv("EMAIL_FROM", "noreply@example.com"),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_username=os.getenv("SMTP_USERNAME") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID") or None,
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER") or None,
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            hubspot_access_token=os.getenv("HUBSPOT_ACCESS_TOKEN") or None,
            salesforce_instance_url=os.getenv("SALESFORCE_INSTANCE_URL") or None,
            salesforce_access_token=os.getenv("SALESFORCE_ACCESS_TOKEN") or None,
            shopify_shop_domain=os.getenv("SHOPIFY_SHOP_DOMAIN") or None,
            shopify_access_token=os.getenv("SHOPIFY_ACCESS_TOKEN") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE", "engine.log"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8050")),
        )
