import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv
load_dotenv()

from api_clients.memory_store import InMemoryWorkflowStore
from config import Settings
from engine import WorkflowEngine
from exceptions import WorkflowEngineError
from models.trigger_event import TriggerEvent
from models.workflow import TriggerType

logger = logging.getLogger("workflow_engine")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Execute one workflow from a definitions file and print the execution record.")
    parser.add_argument("definitions", help="JSON file with a list of workflow definitions")
    parser.add_argument("workflow_id", help="Workflow to execute")
    parser.add_argument("--payload", default="{}", help="Trigger payload as a JSON object")
    parser.add_argument("--event-type", default=TriggerType.MANUAL.value, help="Trigger event type (default: manual)")
    parser.add_argument("--event-id", default=None, help="Event id used for the idempotency key")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        print(f"Invalid --payload: {e}", file=sys.stderr)
        return 2

    print("Starting One-Off Execution...")
    settings = Settings.from_env()
    engine = WorkflowEngine(InMemoryWorkflowStore.from_file(args.definitions), settings=settings)
    event = TriggerEvent(id=args.event_id, type=args.event_type, payload=payload, source="cli")

    try:
        execution = await engine.execute_workflow(args.workflow_id, event)
    except WorkflowEngineError as e:
        print(f"Execution rejected: {e}", file=sys.stderr)
        return 1

    print(json.dumps(execution.model_dump(mode="json"), indent=2))
    print(f"Finished One-Off Execution: {execution.status.value}")
    return 0 if execution.status.value == "completed" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
