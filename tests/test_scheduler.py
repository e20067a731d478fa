import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from exceptions import (
    DefinitionError,
    DuplicateExecutionError,
    StoreUnavailableError,
    UnsupportedEventTypeError,
    WorkflowBusyError,
    WorkflowInactiveError,
    WorkflowNotFoundError,
)
from models.execution_log import ExecutionStatus
from models.trigger_event import TriggerEvent
from models.workflow import ScheduleConfig
from scheduler.event_source import QueueEventSource
from scheduler.schedule_rules import cron_expression_for, is_due, schedule_for
from utils.idempotency import IdempotencyKey

NOW = datetime(2024, 3, 13, 10, 30, tzinfo=timezone.utc)  # a Wednesday


def _interval_definition(make_definition, minutes=5, **kwargs):
    return make_definition(
        id=kwargs.pop("id", "wf_tick"),
        trigger_type="time_based",
        trigger_conditions={"schedule": {"schedule_type": "interval", "schedule_value": minutes}},
        steps=[{"id": "ping", "action_type": "send_slack", "config": {"message": "tick"}}],
        **kwargs,
    )


# --- Schedule Rules ---
def test_interval_schedule():
    schedule = ScheduleConfig(schedule_type="interval", schedule_value=15)
    assert is_due(schedule, None, NOW)
    assert not is_due(schedule, NOW - timedelta(minutes=10), NOW)
    assert is_due(schedule, NOW - timedelta(minutes=15), NOW)


def test_daily_anchor():
    schedule = ScheduleConfig(schedule_type="daily", schedule_time="09:00")
    assert cron_expression_for(schedule) == "0 9 * * *"
    assert is_due(schedule, NOW - timedelta(days=1), NOW)
    assert not is_due(schedule, NOW.replace(hour=9, minute=5), NOW)


def test_daily_anchor_respects_timezone():
    # 09:00 in New York is 13:00 UTC in March after DST starts
    schedule = ScheduleConfig(schedule_type="daily", schedule_time="09:00", timezone="America/New_York")
    assert not is_due(schedule, NOW - timedelta(hours=1), NOW)


def test_weekly_and_monthly_anchors():
    weekly = ScheduleConfig(schedule_type="weekly", schedule_day="Monday", schedule_time="08:00")
    assert cron_expression_for(weekly) == "0 8 * * 1"
    assert is_due(weekly, datetime(2024, 3, 10, tzinfo=timezone.utc), NOW)
    assert not is_due(weekly, datetime(2024, 3, 11, 8, 1, tzinfo=timezone.utc), NOW)

    monthly = ScheduleConfig(schedule_type="monthly", schedule_value=1, schedule_time="00:00")
    assert cron_expression_for(monthly) == "0 0 1 * *"
    assert not is_due(monthly, datetime(2024, 3, 2, tzinfo=timezone.utc), NOW)


def test_cron_schedule_and_invalid_definitions():
    schedule = ScheduleConfig(schedule_type="cron", cron_expression="*/10 * * * *")
    now = NOW + timedelta(minutes=5)
    assert is_due(schedule, now - timedelta(minutes=11), now)
    assert not is_due(schedule, now - timedelta(seconds=30), now)

    with pytest.raises(DefinitionError):
        is_due(ScheduleConfig(schedule_type="cron", cron_expression="not a cron"), None, NOW)
    with pytest.raises(DefinitionError):
        is_due(ScheduleConfig(schedule_type="weekly", schedule_day="Caturday"), None, NOW)


def test_schedule_from_trigger_settings(make_definition):
    definition = make_definition(
        trigger_type="time_based",
        trigger_conditions={"settings": {"schedule_type": "interval", "schedule_value": 30}},
    )
    schedule = schedule_for(definition)
    assert schedule.schedule_type.value == "interval"
    assert schedule.schedule_value == 30
    assert schedule_for(make_definition()) is None


# --- Idempotency ---
def test_execution_id_is_stable_for_redelivered_events():
    event = TriggerEvent(type="webhook", payload={"a": 1}, timestamp=NOW)
    again = TriggerEvent(type="webhook", payload={"a": 1}, timestamp=NOW)
    assert IdempotencyKey.execution_id("wf", event) == IdempotencyKey.execution_id("wf", again)
    assert IdempotencyKey.execution_id("wf", TriggerEvent(id="abc", type="webhook")) == "wf_abc"


@pytest.mark.asyncio
async def test_duplicate_submission_rejected(engine, store, make_definition):
    definition = make_definition(steps=[{"id": "ping", "action_type": "send_slack", "config": {"message": "hi"}}])
    await store.add_definition(definition)
    event = TriggerEvent(id="evt-42", type="manual")

    first = await engine.runner.submit(definition, event)
    assert first.status == ExecutionStatus.COMPLETED

    with pytest.raises(DuplicateExecutionError):
        await engine.runner.submit(definition, event)


@pytest.mark.asyncio
async def test_concurrent_duplicate_runs_once(engine, store, connectors, make_definition):
    definition = make_definition(steps=[{"id": "wait", "action_type": "delay", "config": {"duration": 50}}])
    await store.add_definition(definition)
    event = TriggerEvent(id="evt-dup", type="manual")

    results = await asyncio.gather(
        engine.runner.submit(definition, event),
        engine.runner.submit(definition, event),
        return_exceptions=True,
    )

    assert sum(isinstance(r, DuplicateExecutionError) for r in results) == 1
    assert await engine.registry.in_flight() == set()


# --- Scheduler Loop ---
@pytest.mark.asyncio
async def test_interval_tick_fires_once_and_updates_last_triggered(engine, store, connectors, make_definition):
    await store.add_definition(_interval_definition(make_definition))

    launched = await engine.scheduler._tick()
    await engine.scheduler.drain()
    assert len(launched) == 1

    stored = await store.get_definition("wf_tick")
    assert stored.last_triggered is not None

    # still inside the 5 minute window
    assert await engine.scheduler._tick() == []
    assert len(connectors.get("slack").sent) == 1

    executions = await store.list_executions("wf_tick")
    assert len(executions) == 1
    assert executions[0].trigger_event.type == "time_trigger"
    assert executions[0].status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_tick_store_outage_keeps_workflow_due(engine, store, connectors, make_definition):
    await store.add_definition(_interval_definition(make_definition, minutes=60))
    save_execution = store.save_execution
    store.save_execution = AsyncMock(side_effect=StoreUnavailableError("store down", status_code=503))

    assert await engine.scheduler._tick() == []
    await engine.scheduler.drain()
    assert (await store.get_definition("wf_tick")).last_triggered is None
    assert await engine.registry.last_triggered("wf_tick", None) is None
    assert await engine.registry.in_flight() == set()

    # store is back: the missed run fires on the next tick
    store.save_execution = save_execution
    launched = await engine.scheduler._tick()
    await engine.scheduler.drain()

    assert len(launched) == 1
    assert len(await store.list_executions("wf_tick")) == 1
    assert (await store.get_definition("wf_tick")).last_triggered is not None
    assert len(connectors.get("slack").sent) == 1


@pytest.mark.asyncio
async def test_delete_forgets_cached_last_triggered(engine, store, make_definition):
    await store.add_definition(_interval_definition(make_definition))
    await engine.scheduler._tick()
    await engine.scheduler.drain()
    assert await engine.registry.last_triggered("wf_tick", None) is not None

    await engine.delete_workflow("wf_tick")
    assert await engine.registry.last_triggered("wf_tick", None) is None


@pytest.mark.asyncio
async def test_tick_skips_paused_and_malformed_schedules(engine, store, make_definition):
    await store.add_definition(_interval_definition(make_definition, id="paused", active=False))
    await store.add_definition(_interval_definition(make_definition, id="broken", minutes=0))

    assert await engine.scheduler._tick() == []


@pytest.mark.asyncio
async def test_store_outage_does_not_crash_event_handling(engine, store):
    store.list_active_definitions = AsyncMock(side_effect=StoreUnavailableError("store down", status_code=503))
    tasks = await engine.scheduler.handle_event(TriggerEvent(id="e1", type="chat_message"))
    assert tasks == []


@pytest.mark.asyncio
async def test_chat_message_escalation_end_to_end(engine, store, connectors, escalation_definition):
    await store.add_definition(escalation_definition)
    event = TriggerEvent(
        id="chat-1",
        type="chat_message",
        payload={
            "message": "This is the worst service ever",
            "sentiment_score": -0.9,
            "customer": {"name": "Ada", "tier": "premium"},
        },
    )

    tasks = await engine.scheduler.handle_event(event)
    await engine.scheduler.drain()
    assert len(tasks) == 1

    execution = await store.get_execution("wf_escalate_chat-1")
    assert execution.status == ExecutionStatus.COMPLETED
    assert len(execution.execution_log) == 2
    assert [entry.step_id for entry in execution.execution_log] == ["escalate", "notify"]

    assert store.escalations[0]["priority"] == "high"
    assert store.escalations[0]["message"] == "Unhappy customer: This is the worst service ever"
    assert connectors.get("slack").sent[0]["message"] == "Escalated chat from Ada"


@pytest.mark.asyncio
async def test_chat_message_below_threshold_is_ignored(engine, store, escalation_definition):
    await store.add_definition(escalation_definition)
    event = TriggerEvent(id="chat-2", type="chat_message", payload={"sentiment_score": 0.4, "customer": {"tier": "premium"}})

    assert await engine.scheduler.handle_event(event) == []
    assert await store.get_execution("wf_escalate_chat-2") is None


@pytest.mark.asyncio
async def test_published_events_run_through_subscription(engine, store, escalation_definition):
    await store.add_definition(escalation_definition)
    await engine.start()
    try:
        await engine.publish_event(TriggerEvent(
            id="chat-3",
            type="chat_message",
            payload={"sentiment_score": -0.95, "customer": {"name": "Bo", "tier": "premium"}},
        ))
        execution = None
        for _ in range(100):
            execution = await store.get_execution("wf_escalate_chat-3")
            if execution and execution.status == ExecutionStatus.COMPLETED:
                break
            await asyncio.sleep(0.02)
    finally:
        await engine.stop()

    assert execution is not None
    assert execution.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_publish_rejects_unsubscribed_event_types(engine):
    for event_type in ("manual", "time_based", "carrier_pigeon"):
        with pytest.raises(UnsupportedEventTypeError):
            await engine.publish_event(TriggerEvent(id="e1", type=event_type))
        assert engine.event_source.pending(event_type) == 0
    assert engine.event_source._queues == {}


@pytest.mark.asyncio
async def test_queue_event_source_preserves_order():
    source = QueueEventSource()
    for i in range(3):
        await source.publish(TriggerEvent(id=str(i), type="webhook"))
    assert source.pending("webhook") == 3

    received = []
    async for event in source.subscribe("webhook"):
        received.append(event.id)
        if len(received) == 3:
            break
    assert received == ["0", "1", "2"]


# --- Engine Lifecycle ---
@pytest.mark.asyncio
async def test_execute_workflow_lifecycle(engine, store, make_definition):
    await store.add_definition(make_definition())

    execution = await engine.execute_workflow("wf_1")
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.execution_log == []

    await engine.pause("wf_1")
    with pytest.raises(WorkflowInactiveError):
        await engine.execute_workflow("wf_1")

    await engine.resume("wf_1")
    assert (await engine.execute_workflow("wf_1")).status == ExecutionStatus.COMPLETED

    with pytest.raises(WorkflowNotFoundError):
        await engine.execute_workflow("missing")
    with pytest.raises(WorkflowNotFoundError):
        await engine.pause("missing")


@pytest.mark.asyncio
async def test_pause_lets_in_flight_execution_finish(engine, store, connectors, make_definition):
    await store.add_definition(make_definition(steps=[
        {"id": "wait", "action_type": "delay", "config": {"duration": 100}},
        {"id": "ping", "action_type": "send_slack", "config": {"message": "done"}},
    ]))
    task = asyncio.create_task(engine.execute_workflow("wf_1", TriggerEvent(id="slow", type="manual")))
    await asyncio.sleep(0.02)
    await engine.pause("wf_1")
    assert not task.done()

    execution = await task
    assert execution.status == ExecutionStatus.COMPLETED
    assert [entry.step_id for entry in execution.execution_log] == ["wait", "ping"]
    assert connectors.get("slack").sent[0]["message"] == "done"
    assert (await store.get_definition("wf_1")).active is False


@pytest.mark.asyncio
async def test_delete_rejected_while_running(engine, store, make_definition):
    await store.add_definition(make_definition())
    await engine.registry.try_acquire("wf_1_evt", "wf_1")

    with pytest.raises(WorkflowBusyError):
        await engine.delete_workflow("wf_1")

    await engine.registry.release("wf_1_evt")
    await engine.delete_workflow("wf_1")
    assert await store.get_definition("wf_1") is None


@pytest.mark.asyncio
async def test_analytics(engine, store, make_definition):
    await store.add_definition(make_definition())
    await store.add_definition(make_definition(id="wf_fail", steps=[
        {"id": "bad", "action_type": "delay", "config": {"duration": -1}},
    ]))
    for i in range(3):
        await engine.execute_workflow("wf_1", TriggerEvent(id=f"ok-{i}", type="manual"))
    await engine.execute_workflow("wf_fail", TriggerEvent(id="bad-1", type="manual"))

    analytics = await engine.get_analytics("wf_1")
    assert analytics.total == 3
    assert analytics.successful == 3
    assert analytics.success_rate == 100.0
    assert analytics.average_duration_seconds is not None

    failing = await engine.get_analytics("wf_fail")
    assert failing.failed == 1
    assert failing.failure_rate == 100.0

    empty = await engine.get_analytics("wf_1", start=datetime.now(timezone.utc) + timedelta(days=1))
    assert empty.total == 0
    assert empty.success_rate == 0.0
