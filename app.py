from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional
import logging
import traceback

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import Settings
from engine import WorkflowEngine, build_engine
from exceptions import (
    DefinitionError,
    DuplicateExecutionError,
    StoreUnavailableError,
    UnsupportedEventTypeError,
    WorkflowBusyError,
    WorkflowEngineError,
    WorkflowInactiveError,
    WorkflowNotFoundError,
)
from models.trigger_event import TriggerEvent
from models.workflow import TriggerType

settings = Settings.from_env()

# Configure logging to file and console
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
    handlers=[
        logging.FileHandler(settings.log_file),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger("workflow_engine")

engine = build_engine(settings)


def get_engine() -> WorkflowEngine:
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 80)
    logger.info("WORKFLOW ENGINE STARTING")
    logger.info("=" * 80)
    await engine.start()
    yield
    await engine.stop()
    logger.info("WORKFLOW ENGINE STOPPED")


app = FastAPI(title="Workflow Automation Engine", lifespan=lifespan)


class ExecuteRequest(BaseModel):
    event_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventRequest(BaseModel):
    id: Optional[str] = None
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    source: str = "api"
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _http_error(e: WorkflowEngineError) -> HTTPException:
    if isinstance(e, WorkflowNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (WorkflowInactiveError, DuplicateExecutionError, WorkflowBusyError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StoreUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, UnsupportedEventTypeError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, DefinitionError):
        return HTTPException(status_code=502, detail=str(e))
    logger.error(f"Unhandled engine error: {e}")
    logger.error(traceback.format_exc())
    return HTTPException(status_code=500, detail=str(e))


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/v1/workflows/{workflow_id}/execute")
async def execute_workflow(workflow_id: str, request: Optional[ExecuteRequest] = None, engine: WorkflowEngine = Depends(get_engine)):
    request = request or ExecuteRequest()
    logger.info(f"RECEIVED EXECUTE REQUEST for workflow {workflow_id}")
    event = TriggerEvent(
        id=request.event_id,
        type=TriggerType.MANUAL.value,
        payload=request.payload,
        source="api",
        metadata=request.metadata,
    )
    try:
        execution = await engine.execute_workflow(workflow_id, event)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return execution.model_dump(mode="json")


@app.post("/api/v1/workflows/{workflow_id}/pause")
async def pause_workflow(workflow_id: str, engine: WorkflowEngine = Depends(get_engine)):
    try:
        await engine.pause(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"workflow_id": workflow_id, "active": False}


@app.post("/api/v1/workflows/{workflow_id}/resume")
async def resume_workflow(workflow_id: str, engine: WorkflowEngine = Depends(get_engine)):
    try:
        await engine.resume(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"workflow_id": workflow_id, "active": True}


@app.delete("/api/v1/workflows/{workflow_id}")
async def delete_workflow(workflow_id: str, engine: WorkflowEngine = Depends(get_engine)):
    try:
        await engine.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"workflow_id": workflow_id, "deleted": True}


@app.get("/api/v1/workflows/{workflow_id}/analytics")
async def workflow_analytics(
    workflow_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        analytics = await engine.get_analytics(workflow_id, start, end)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return analytics.model_dump(mode="json")


@app.get("/api/v1/executions/{execution_id}")
async def get_execution(execution_id: str, engine: WorkflowEngine = Depends(get_engine)):
    try:
        execution = await engine.get_execution(execution_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return execution.model_dump(mode="json")


@app.post("/api/v1/events", status_code=202)
async def publish_event(request: EventRequest, engine: WorkflowEngine = Depends(get_engine)):
    event = TriggerEvent(
        id=request.id,
        type=request.type,
        payload=request.payload,
        source=request.source,
        metadata=request.metadata,
    )
    try:
        await engine.publish_event(event)
    except WorkflowEngineError as e:
        raise _http_error(e)
    logger.info(f"Accepted {event.type} event {event.id or '(no id)'}")
    return {"status": "accepted", "event_type": event.type, "event_id": event.id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
