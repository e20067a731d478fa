from .base_connector import NotificationConnector, RecordConnector
from typing import Dict, Any, List
from uuid import uuid4
import asyncio
import logging

logger = logging.getLogger("workflow_engine")


class MockNotificationConnector(NotificationConnector):
    """Logs notifications instead of delivering them. Used for local runs and tests."""

    def __init__(self, provider_name: str, latency: float = 0.0):
        super().__init__()
        self.name = provider_name
        self.latency = latency
        self.sent: List[Dict[str, Any]] = []

    async def send_notification(self, channel: str, config: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"[{self.name}] Sending {channel} notification...")
        logger.info(f"   To: {config.get('to') or config.get('channel')}")
        if config.get("subject"):
            logger.info(f"   Subject: {config.get('subject')}")
        if self.latency:
            # Simulate network latency
            await asyncio.sleep(self.latency)
        record = {"channel": channel, **config}
        self.sent.append(record)
        return {"delivered": True, "provider": self.name, "channel": channel}


class MockRecordConnector(RecordConnector):
    """Keeps created/updated objects in memory."""

    def __init__(self, provider_name: str):
        super().__init__()
        self.name = provider_name
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def create_record(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        record_id = uuid4().hex[:12]
        record = {"id": record_id, **properties}
        self.records.setdefault(object_type, {})[record_id] = record
        logger.info(f"[{self.name}] Created {object_type} {record_id}")
        return record

    async def update_record(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        bucket = self.records.setdefault(object_type, {})
        record = bucket.setdefault(str(record_id), {"id": str(record_id)})
        record.update(properties)
        logger.info(f"[{self.name}] Updated {object_type} {record_id}")
        return dict(record)
