from typing import Any, Dict

from .http_connector import HttpRecordConnector


class HubSpotConnector(HttpRecordConnector):
    name = "hubspot"
    OBJECT_PATHS = {
        "contact": "/crm/v3/objects/contacts",
        "deal": "/crm/v3/objects/deals",
        "ticket": "/crm/v3/objects/tickets",
    }

    def __init__(self, config: Dict[str, Any]):
        super().__init__(
            base_url=config.get("base_url", "https://api.hubapi.com"),
            access_token=config.get("access_token"),
            rate_limit_per_minute=config.get("rate_limit_per_minute", 0),
        )

    def _wrap(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return {"properties": properties}


class SalesforceConnector(HttpRecordConnector):
    name = "salesforce"
    API_VERSION = "v59.0"
    OBJECT_PATHS = {
        "contact": f"/services/data/{API_VERSION}/sobjects/Contact",
        "opportunity": f"/services/data/{API_VERSION}/sobjects/Opportunity",
        "task": f"/services/data/{API_VERSION}/sobjects/Task",
        "case": f"/services/data/{API_VERSION}/sobjects/Case",
    }

    def __init__(self, config: Dict[str, Any]):
        super().__init__(
            base_url=config.get("instance_url"),
            access_token=config.get("access_token"),
            rate_limit_per_minute=config.get("rate_limit_per_minute", 0),
        )
