"""
Workflow engine exceptions
"""


class WorkflowEngineError(Exception):
    """Base exception for all engine errors"""
    pass


class DefinitionError(WorkflowEngineError):
    """Raised when a workflow, step or condition definition is malformed"""
    pass


class WorkflowNotFoundError(WorkflowEngineError):
    """Raised when a workflow definition does not exist"""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class WorkflowInactiveError(WorkflowEngineError):
    """Raised when a paused workflow is asked to run"""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} is not active")
        self.workflow_id = workflow_id


class WorkflowBusyError(WorkflowEngineError):
    """Raised when a workflow cannot be deleted because executions are in flight"""

    def __init__(self, workflow_id: str, running: int):
        super().__init__(f"Workflow {workflow_id} has {running} execution(s) in flight")
        self.workflow_id = workflow_id
        self.running = running


class DuplicateExecutionError(WorkflowEngineError):
    """Raised when an execution id has already been submitted"""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} already submitted")
        self.execution_id = execution_id


class StoreUnavailableError(WorkflowEngineError):
    """Raised when the workflow store cannot be reached"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectorError(WorkflowEngineError):
    """Raised by connectors when an external system call fails"""

    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class ScriptTimeoutError(WorkflowEngineError):
    """Raised when a custom script exceeds its deadline"""
    pass


class UnsupportedEventTypeError(WorkflowEngineError):
    """Raised when an event is published for a type no subscription consumes"""

    def __init__(self, event_type: str):
        super().__init__(f"No subscription for event type '{event_type}'")
        self.event_type = event_type
