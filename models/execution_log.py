from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from enum import Enum
from datetime import datetime

from models.trigger_event import TriggerEvent
from utils.time_utils import utcnow


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActionResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Any = None


class ExecutionLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    step_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class WorkflowExecution(BaseModel):
    id: str
    workflow_id: str
    trigger_event: TriggerEvent
    status: ExecutionStatus = ExecutionStatus.PENDING
    context: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list)
    result: Optional[ActionResult] = None
    error_message: Optional[str] = None

    def log(self, message: str, level: LogLevel = LogLevel.INFO, step_id: str = None, data: Dict[str, Any] = None):
        self.execution_log.append(ExecutionLogEntry(message=message, level=level, step_id=step_id, data=data))


class WorkflowAnalytics(BaseModel):
    workflow_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total: int = 0
    successful: int = 0
    failed: int = 0
    running: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    average_duration_seconds: Optional[float] = None
