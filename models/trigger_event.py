from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime

from utils.time_utils import utcnow

TIME_TRIGGER_EVENT = "time_trigger"


class TriggerEvent(BaseModel):
    id: Optional[str] = None
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    source: str = "api"
    metadata: Dict[str, Any] = Field(default_factory=dict)
