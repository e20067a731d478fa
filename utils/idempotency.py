import asyncio
import hashlib
import json
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Optional, Set

from models.trigger_event import TriggerEvent
from utils.time_utils import ensure_utc, to_millis

logger = logging.getLogger("workflow_engine")


class IdempotencyKey:
    @staticmethod
    def compute_hash(*parts) -> str:
        """
        Computes a deterministic hash for deduplication.
        """
        raw = ":".join(str(p) for p in parts)
        return hashlib.sha256(raw.encode()).hexdigest()

    @staticmethod
    def event_key(event: TriggerEvent) -> str:
        """
        Stable key for an event. A re-delivered event produces the same key,
        either from its source id or from a hash of its content.
        """
        if event.id:
            return str(event.id)
        payload = json.dumps(event.payload, sort_keys=True, default=str)
        digest = IdempotencyKey.compute_hash(event.type, event.source, event.timestamp.isoformat(), payload)
        return f"{to_millis(event.timestamp)}-{digest[:12]}"

    @staticmethod
    def execution_id(workflow_id: str, event: TriggerEvent) -> str:
        return f"{workflow_id}_{IdempotencyKey.event_key(event)}"


class ExecutionRegistry:
    """
    Shared scheduler state: in-flight execution ids and the per-workflow
    last_triggered cache. All access goes through one asyncio.Lock.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._in_flight: Dict[str, str] = {}
        self._per_workflow: Counter = Counter()
        self._last_triggered: Dict[str, datetime] = {}

    async def try_acquire(self, execution_id: str, workflow_id: str) -> bool:
        """Marks an execution as in flight. False if it already is."""
        async with self._lock:
            if execution_id in self._in_flight:
                logger.info(f"Idempotency check: execution {execution_id} already in flight.")
                return False
            self._in_flight[execution_id] = workflow_id
            self._per_workflow[workflow_id] += 1
            return True

    async def release(self, execution_id: str):
        async with self._lock:
            workflow_id = self._in_flight.pop(execution_id, None)
            if workflow_id is None:
                return
            self._per_workflow[workflow_id] -= 1
            if self._per_workflow[workflow_id] <= 0:
                del self._per_workflow[workflow_id]

    async def running_for(self, workflow_id: str) -> int:
        async with self._lock:
            return self._per_workflow.get(workflow_id, 0)

    async def in_flight(self) -> Set[str]:
        async with self._lock:
            return set(self._in_flight)

    async def last_triggered(self, workflow_id: str, stored: Optional[datetime]) -> Optional[datetime]:
        """Latest of the cached and stored last_triggered values."""
        async with self._lock:
            cached = self._last_triggered.get(workflow_id)
        if stored is not None:
            stored = ensure_utc(stored)
        if cached is None:
            return stored
        if stored is None:
            return cached
        return max(cached, stored)

    async def mark_triggered(self, workflow_id: str, when: datetime):
        async with self._lock:
            when = ensure_utc(when)
            current = self._last_triggered.get(workflow_id)
            if current is None or when > current:
                self._last_triggered[workflow_id] = when

    async def forget(self, workflow_id: str):
        """Drops the cached last_triggered of a deleted workflow."""
        async with self._lock:
            self._last_triggered.pop(workflow_id, None)
