from abc import ABC, abstractmethod
from typing import Dict, Any

from utils.rate_limiter import TokenBucketRateLimiter


class BaseConnector(ABC):
    """An adapter for one external system."""

    name: str = "connector"

    def __init__(self, rate_limit_per_minute: int = 0):
        self.rate_limiter = TokenBucketRateLimiter(rate_limit_per_minute=rate_limit_per_minute)


class NotificationConnector(BaseConnector):
    """Email / SMS / chat delivery. Raises ConnectorError on failure."""

    @abstractmethod
    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        pass


class RecordConnector(BaseConnector):
    """CRM and e-commerce object writes. Raises ConnectorError on failure."""

    @abstractmethod
    async def create_record(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_record(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        pass
