"""Tests for the FlowService facade."""

import asyncio
import time
from datetime import timedelta

import pytest

from tenantflow.config import EngineConfig, TenantFlowConfig
from tenantflow.errors import (
    EmptyFlowDefinitionError,
    ExecutionNotFoundError,
    ExecutionNotRunningError,
    FlowNotActiveError,
    FlowNotFoundError,
    InvalidFlowDefinitionError,
    StepNotFoundError,
    UnknownStepTypeError,
)
from tenantflow.executor import StepExecutor
from tenantflow.models import ExecutionRecord
from tenantflow.persistence import InMemoryFlowRepository
from tenantflow.service import FlowService
from tenantflow.transports import InMemoryTransport


def _service(executor=None, transport=None, config=None):
    repo = InMemoryFlowRepository()
    return FlowService(repo, repo, executor=executor, transport=transport, config=config)


class FragmentExecutor:
    """Fake executor returning fixed fragments keyed by step id."""

    def __init__(self, fragments):
        self.fragments = fragments
        self.seen = []

    async def execute(self, step, context):
        self.seen.append(dict(context))
        return dict(self.fragments[step.id])


@pytest.mark.asyncio
async def test_linear_flow_runs_actions_in_order():
    order = []
    executor = StepExecutor()
    executor.register_action("record", lambda step, ctx: order.append(step.id) or {"ok": step.id})
    service = _service(executor=executor)

    steps = [
        {"id": f"s{i}", "type": "action", "config": {"actionType": "record"},
         "nextSteps": [f"s{i + 1}"] if i < 3 else []}
        for i in range(1, 4)
    ]
    flow_id = await service.create_flow("t1", "linear", "", steps)

    execution = await service.execute_flow(flow_id, "t1")

    assert order == ["s1", "s2", "s3"]
    assert execution.status == "completed"
    assert execution.completed_at > execution.started_at
    assert execution.completed_steps == ["s1", "s2", "s3"]


@pytest.mark.asyncio
async def test_empty_flow_is_rejected_without_records():
    service = _service()

    with pytest.raises(EmptyFlowDefinitionError):
        await service.create_flow("t1", "empty", "", [])

    assert await service.list_flows("t1") == []
    assert await service.list_executions("t1") == []


@pytest.mark.asyncio
async def test_flow_with_no_stored_steps_cannot_execute():
    service = _service()
    flow_id = await service.flows.create_flow_record("t1", "hollow", "", [])

    with pytest.raises(EmptyFlowDefinitionError):
        await service.execute_flow(flow_id, "t1")
    assert await service.list_executions("t1") == []


@pytest.mark.asyncio
async def test_unknown_flow_and_foreign_tenant_raise_not_found():
    service = _service()
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])

    with pytest.raises(FlowNotFoundError):
        await service.execute_flow("no-such-flow", "t1")
    with pytest.raises(FlowNotFoundError):
        await service.execute_flow(flow_id, "t2")
    assert await service.list_executions("t1") == []
    assert await service.list_executions("t2") == []


@pytest.mark.asyncio
async def test_create_flow_validates_steps():
    service = _service()

    with pytest.raises(UnknownStepTypeError):
        await service.create_flow("t1", "f", "", [{"id": "a", "type": "webhook"}])
    with pytest.raises(InvalidFlowDefinitionError):
        await service.create_flow(
            "t1", "f", "", [{"id": "a", "type": "trigger"}, {"id": "a", "type": "action"}]
        )
    assert await service.list_flows("t1") == []


@pytest.mark.asyncio
async def test_context_accumulates_with_later_fragments_winning():
    executor = FragmentExecutor({"a": {"k": 1}, "b": {"k": 2, "m": 3}})
    service = _service(executor=executor)
    flow_id = await service.create_flow(
        "t1", "f", "",
        [{"id": "a", "type": "action", "nextSteps": ["b"]}, {"id": "b", "type": "action"}],
    )

    execution = await service.execute_flow(flow_id, "t1", {"seed": "x"})

    assert execution.context == {"seed": "x", "k": 2, "m": 3}
    assert executor.seen[1] == {"seed": "x", "k": 1}
    stored = await service.get_execution(execution.id, "t1")
    assert stored.context == {"seed": "x", "k": 2, "m": 3}
    assert stored.input_data == {"seed": "x"}


@pytest.mark.asyncio
async def test_configured_default_context_is_overridden_by_caller():
    config = TenantFlowConfig(engine=EngineConfig(default_context={"env": "prod", "seed": 0}))
    service = _service(executor=FragmentExecutor({"a": {}}), config=config)
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "action"}])

    execution = await service.execute_flow(flow_id, "t1", {"seed": 1})

    assert execution.context == {"env": "prod", "seed": 1}


@pytest.mark.asyncio
async def test_delay_step_blocks_execute_flow():
    service = _service()
    flow_id = await service.create_flow(
        "t1", "f", "",
        [
            {"id": "wait", "type": "delay", "config": {"delayDuration": 200}, "nextSteps": ["done"]},
            {"id": "done", "type": "action"},
        ],
    )

    start = time.monotonic()
    execution = await service.execute_flow(flow_id, "t1")

    assert time.monotonic() - start >= 0.19
    assert execution.completed_at - execution.started_at >= timedelta(milliseconds=190)
    assert execution.execution_time >= 190
    assert execution.context["delayCompleted"] is True
    assert execution.context["actionExecuted"] is True


@pytest.mark.asyncio
async def test_concurrent_executions_are_independent():
    service = _service()
    flow_id = await service.create_flow(
        "t1", "f", "",
        [
            {"id": "wait", "type": "delay", "config": {"delayDuration": 50}, "nextSteps": ["act"]},
            {"id": "act", "type": "action"},
        ],
    )

    first, second = await asyncio.gather(
        service.execute_flow(flow_id, "t1", {"caller": 1}),
        service.execute_flow(flow_id, "t1", {"caller": 2}),
    )

    assert first.id != second.id
    assert first.context["caller"] == 1
    assert second.context["caller"] == 2
    assert first.context is not second.context
    assert {e.id for e in await service.list_executions("t1", flow_id)} == {first.id, second.id}
    flow = await service.get_flow(flow_id, "t1")
    assert flow.total_executions == 2
    assert flow.successful_executions == 2


@pytest.mark.asyncio
async def test_dangling_next_step_is_recorded_as_failure():
    service = _service()
    flow_id = await service.create_flow(
        "t1", "f", "", [{"id": "s1", "type": "trigger", "nextSteps": ["s2"]}]
    )

    with pytest.raises(StepNotFoundError) as exc_info:
        await service.execute_flow(flow_id, "t1")

    (execution,) = await service.list_executions("t1", flow_id)
    assert execution.status == "failed"
    assert execution.failed_step == "s2"
    assert execution.error == str(exc_info.value)
    assert "s2" in execution.error


@pytest.mark.asyncio
async def test_trigger_then_action_scenario():
    service = _service()
    flow_id = await service.create_flow(
        "T1",
        "welcome",
        "",
        [
            {"id": "s1", "type": "trigger", "config": {"triggerType": "webhook"}, "nextSteps": ["s2"]},
            {"id": "s2", "type": "action", "config": {"actionType": "send_email"}},
        ],
    )

    execution = await service.execute_flow(flow_id, "T1", {"user": "u1"})

    assert execution.context["user"] == "u1"
    assert execution.context["triggerExecuted"] is True
    assert execution.context["triggerType"] == "webhook"
    assert execution.context["actionExecuted"] is True
    assert execution.context["actionType"] == "send_email"
    stored = await service.get_execution(execution.id, "T1")
    assert stored.status == "completed"
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_inactive_flow_is_rejected_before_any_record():
    service = _service()
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])
    await service.set_flow_status(flow_id, "t1", "paused")

    with pytest.raises(FlowNotActiveError):
        await service.execute_flow(flow_id, "t1")
    assert await service.list_executions("t1") == []

    await service.set_flow_status(flow_id, "t1", "active")
    assert (await service.execute_flow(flow_id, "t1")).status == "completed"


@pytest.mark.asyncio
async def test_set_flow_status_validates_input():
    service = _service()
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])

    with pytest.raises(InvalidFlowDefinitionError):
        await service.set_flow_status(flow_id, "t1", "archived")
    with pytest.raises(FlowNotFoundError):
        await service.set_flow_status(flow_id, "t2", "disabled")


@pytest.mark.asyncio
async def test_submit_flow_queues_running_execution():
    transport = InMemoryTransport()
    service = _service(transport=transport)
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])

    execution_id = await service.submit_flow(flow_id, "t1", {"x": 1})

    execution = await service.get_execution(execution_id, "t1")
    assert execution.status == "running"
    assert execution.current_step_id == "a"
    assert transport.pending(service.config.engine.execution_topic) == 1


@pytest.mark.asyncio
async def test_submit_flow_requires_transport():
    service = _service()
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])
    with pytest.raises(RuntimeError):
        await service.submit_flow(flow_id, "t1")


class UnreachableTransport(InMemoryTransport):
    async def publish(self, topic, message):
        raise ConnectionError("broker unreachable")


@pytest.mark.asyncio
async def test_submit_flow_records_failure_when_queueing_fails():
    service = _service(transport=UnreachableTransport())
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])

    with pytest.raises(ConnectionError):
        await service.submit_flow(flow_id, "t1")

    [execution] = await service.list_executions("t1", flow_id)
    assert execution.status == "failed"
    assert execution.error == "Could not queue execution: broker unreachable"
    assert execution.completed_at is not None
    flow = await service.get_flow(flow_id, "t1")
    assert flow.failed_executions == 1
    assert flow.last_execution_status == "failed"


@pytest.mark.asyncio
async def test_resume_execution_continues_from_checkpoint():
    executor = FragmentExecutor({"a": {"a": 1}, "b": {"b": 2}})
    service = _service(executor=executor)
    flow_id = await service.create_flow(
        "t1", "f", "",
        [{"id": "a", "type": "action", "nextSteps": ["b"]}, {"id": "b", "type": "action"}],
    )
    # Simulate a crash after step ``a`` was checkpointed.
    execution = ExecutionRecord(flow_id=flow_id, tenant_id="t1", current_step_id="a")
    await service.executions.create_execution_record(execution)
    await service.executions.update_execution_transition(execution.id, "b", {"a": 1}, ["a"])

    resumed = await service.resume_execution(execution.id, "t1")

    assert resumed.status == "completed"
    assert resumed.context == {"a": 1, "b": 2}
    assert resumed.completed_steps == ["a", "b"]
    assert len(executor.seen) == 1

    with pytest.raises(ExecutionNotRunningError):
        await service.resume_execution(execution.id, "t1")
    with pytest.raises(ExecutionNotFoundError):
        await service.resume_execution(execution.id, "t2")


@pytest.mark.asyncio
async def test_get_execution_is_tenant_scoped():
    service = _service()
    flow_id = await service.create_flow("t1", "f", "", [{"id": "a", "type": "trigger"}])
    execution = await service.execute_flow(flow_id, "t1")

    assert (await service.get_execution(execution.id, "t1")).id == execution.id
    with pytest.raises(ExecutionNotFoundError):
        await service.get_execution(execution.id, "t2")
