from typing import Any, Dict

from .http_connector import HttpRecordConnector


class ShopifyConnector(HttpRecordConnector):
    name = "shopify"
    API_VERSION = "2024-01"
    OBJECT_PATHS = {
        "customer": f"/admin/api/{API_VERSION}/customers",
        "order": f"/admin/api/{API_VERSION}/orders",
        "discount": f"/admin/api/{API_VERSION}/price_rules",
    }
    PATH_SUFFIX = ".json"
    UPDATE_METHOD = "PUT"
    # Shopify wraps bodies in the singular resource name
    ROOT_KEYS = {"customer": "customer", "order": "order", "discount": "price_rule"}

    def __init__(self, config: Dict[str, Any]):
        super().__init__(
            base_url=f"https://{config.get('shop_domain')}",
            access_token=config.get("access_token"),
            rate_limit_per_minute=config.get("rate_limit_per_minute", 0),
        )
        # Shopify authenticates with its own header instead of a bearer token
        self.session.headers.pop("Authorization", None)
        self.session.headers["X-Shopify-Access-Token"] = config.get("access_token") or ""

    def _wrap(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return {self.ROOT_KEYS[object_type]: properties}

    def _unwrap(self, object_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return body.get(self.ROOT_KEYS[object_type], body)
