from typing import Dict, Any, Iterator
import logging

from exceptions import ConnectorError
from .base_connector import BaseConnector, NotificationConnector, RecordConnector
from .smtp_connector import SMTPConnector
from .sendgrid_connector import SendGridConnector
from .sms_connector import TwilioSMSConnector
from .slack_connector import SlackConnector
from .crm_connectors import HubSpotConnector, SalesforceConnector
from .shopify_connector import ShopifyConnector
from .mock_connectors import MockNotificationConnector, MockRecordConnector

logger = logging.getLogger("workflow_engine")

NOTIFICATION_CHANNELS = ("email", "sms", "slack")
RECORD_SYSTEMS = ("hubspot", "salesforce", "shopify")


class ConnectorRegistry:
    """Connectors by logical name: email, sms, slack, hubspot, salesforce, shopify."""

    def __init__(self, connectors: Dict[str, BaseConnector] = None):
        self._connectors: Dict[str, BaseConnector] = dict(connectors or {})

    def register(self, name: str, connector: BaseConnector):
        self._connectors[name] = connector

    def get(self, name: str) -> BaseConnector:
        connector = self._connectors.get(name)
        if connector is None:
            raise ConnectorError(f"No connector configured for '{name}'")
        return connector

    def notification(self, name: str) -> NotificationConnector:
        connector = self.get(name)
        if not isinstance(connector, NotificationConnector):
            raise ConnectorError(f"Connector '{name}' cannot send notifications")
        return connector

    def records(self, name: str) -> RecordConnector:
        connector = self.get(name)
        if not isinstance(connector, RecordConnector):
            raise ConnectorError(f"Connector '{name}' cannot write records")
        return connector

    def __contains__(self, name: str) -> bool:
        return name in self._connectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._connectors)


class ConnectorBuilder:

    REQUIRED_FIELDS = {
        "smtp": ["host"],
        "sendgrid": ["api_key"],
        "twilio": ["account_sid", "auth_token", "from_number"],
        "slack": ["webhook_url"],
        "hubspot": ["access_token"],
        "salesforce": ["instance_url", "access_token"],
        "shopify": ["shop_domain", "access_token"],
    }

    BUILDERS = {
        "smtp": SMTPConnector,
        "sendgrid": SendGridConnector,
        "twilio": TwilioSMSConnector,
        "slack": SlackConnector,
        "hubspot": HubSpotConnector,
        "salesforce": SalesforceConnector,
        "shopify": ShopifyConnector,
    }

    @staticmethod
    def validate_config(provider: str, config: Dict[str, Any]):
        """Validates connector configuration. Raises ValueError if invalid."""
        if provider not in ConnectorBuilder.BUILDERS:
            raise ValueError(f"Unsupported connector provider: {provider}")
        missing = [f for f in ConnectorBuilder.REQUIRED_FIELDS[provider] if not config.get(f)]
        if missing:
            raise ValueError(f"{provider} requires: {missing}")

    @staticmethod
    def build(provider: str, config: Dict[str, Any]) -> BaseConnector:
        provider = provider.lower()
        ConnectorBuilder.validate_config(provider, config)
        return ConnectorBuilder.BUILDERS[provider](config)

    @staticmethod
    def build_mock_registry() -> ConnectorRegistry:
        registry = ConnectorRegistry()
        for channel in NOTIFICATION_CHANNELS:
            registry.register(channel, MockNotificationConnector(f"mock_{channel}"))
        for system in RECORD_SYSTEMS:
            registry.register(system, MockRecordConnector(f"mock_{system}"))
        return registry

    @staticmethod
    def from_settings(settings) -> ConnectorRegistry:
        """
        Builds the registry for the configured mode. In live mode only
        connectors with complete credentials are registered; steps that
        need a missing one fail with a connector error.
        """
        if settings.connector_mode != "live":
            logger.info("Connector mode: mock")
            return ConnectorBuilder.build_mock_registry()

        rate = settings.connector_rate_limit_per_minute
        candidates = {
            "email": (settings.email_provider, {
                "host": settings.smtp_host,
                "port": settings.smtp_port,
                "username": settings.smtp_username,
                "password": settings.smtp_password,
                "api_key": settings.sendgrid_api_key,
                "from_email": settings.email_from,
            }),
            "sms": ("twilio", {
                "account_sid": settings.twilio_account_sid,
                "auth_token": settings.twilio_auth_token,
                "from_number": settings.twilio_from_number,
            }),
            "slack": ("slack", {"webhook_url": settings.slack_webhook_url}),
            "hubspot": ("hubspot", {"access_token": settings.hubspot_access_token}),
            "salesforce": ("salesforce", {
                "instance_url": settings.salesforce_instance_url,
                "access_token": settings.salesforce_access_token,
            }),
            "shopify": ("shopify", {
                "shop_domain": settings.shopify_shop_domain,
                "access_token": settings.shopify_access_token,
            }),
        }

        registry = ConnectorRegistry()
        for name, (provider, config) in candidates.items():
            config["rate_limit_per_minute"] = rate
            try:
                registry.register(name, ConnectorBuilder.build(provider, config))
                logger.info(f"Connector '{name}' configured via {provider}")
            except ValueError as e:
                logger.warning(f"Connector '{name}' not configured: {e}")
        return registry
