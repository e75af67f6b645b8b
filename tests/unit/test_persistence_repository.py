import pytest

from tenantflow.errors import PersistenceError
from tenantflow.models import ExecutionLog, ExecutionRecord, parse_steps
from tenantflow.persistence import (
    InMemoryFlowRepository,
    SQLiteFlowRepository,
    get_repository,
)

STEPS = [
    {"id": "s1", "type": "trigger", "nextSteps": ["s2"]},
    {"id": "s2", "type": "action", "config": {"actionType": "email"}},
]


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryFlowRepository()
    return SQLiteFlowRepository(tmp_path / "flows.db")


async def _new_execution(repo, tenant_id="t1"):
    flow_id = await repo.create_flow_record(tenant_id, "onboarding", "desc", parse_steps(STEPS))
    execution = ExecutionRecord(
        flow_id=flow_id, tenant_id=tenant_id, current_step_id="s1", context={"seed": 1}
    )
    await repo.create_execution_record(execution)
    return flow_id, execution


@pytest.mark.asyncio
async def test_flow_crud_is_tenant_scoped(repo):
    flow_id = await repo.create_flow_record(
        "t1", "onboarding", "desc", parse_steps(STEPS), tags=["crm"], created_by="u1"
    )

    flow = await repo.get_flow(flow_id, "t1")
    assert flow is not None
    assert flow.name == "onboarding"
    assert [s.id for s in flow.steps] == ["s1", "s2"]
    assert flow.steps[0].next_steps == ["s2"]
    assert flow.steps[1].config.action_type == "email"
    assert flow.tags == ["crm"]
    assert flow.created_by == "u1"
    assert flow.status == "active"

    assert await repo.get_flow(flow_id, "other-tenant") is None
    assert [f.id for f in await repo.list_flows("t1")] == [flow_id]
    assert await repo.list_flows("other-tenant") == []


@pytest.mark.asyncio
async def test_update_flow_status(repo):
    flow_id = await repo.create_flow_record("t1", "f", "", parse_steps(STEPS))

    flow = await repo.update_flow_status(flow_id, "t1", "paused")
    assert flow.status == "paused"
    assert flow.is_active is False
    assert await repo.update_flow_status(flow_id, "t2", "active") is None


@pytest.mark.asyncio
async def test_execution_transition_and_completion(repo):
    flow_id, execution = await _new_execution(repo)

    await repo.update_execution_transition(
        execution.id, "s2", {"seed": 1, "triggerExecuted": True}, ["s1"]
    )
    await repo.append_execution_log(execution.id, ExecutionLog(message="step s1 done"))

    stored = await repo.get_execution(execution.id, "t1")
    assert stored.current_step_id == "s2"
    assert stored.context == {"seed": 1, "triggerExecuted": True}
    assert stored.completed_steps == ["s1"]
    assert [entry.message for entry in stored.logs] == ["step s1 done"]

    await repo.finalize_execution(
        execution.id,
        "completed",
        context={"seed": 1, "done": True},
        completed_steps=["s1", "s2"],
        execution_time=12,
    )
    stored = await repo.get_execution(execution.id, "t1")
    assert stored.status == "completed"
    assert stored.completed_at is not None
    assert stored.output_data == {"seed": 1, "done": True}
    assert stored.completed_steps == ["s1", "s2"]
    assert stored.execution_time == 12
    assert stored.error is None

    flow = await repo.get_flow(flow_id, "t1")
    assert flow.total_executions == 1
    assert flow.successful_executions == 1
    assert flow.failed_executions == 0
    assert flow.last_execution_status == "completed"
    assert flow.last_executed_at is not None


@pytest.mark.asyncio
async def test_failed_finalize_keeps_context_and_records_step(repo):
    flow_id, execution = await _new_execution(repo)

    await repo.finalize_execution(execution.id, "failed", "Step s9 not found", failed_step="s9")

    stored = await repo.get_execution(execution.id, "t1")
    assert stored.status == "failed"
    assert stored.error == "Step s9 not found"
    assert stored.failed_step == "s9"
    assert stored.context == {"seed": 1}
    assert stored.output_data is None

    flow = await repo.get_flow(flow_id, "t1")
    assert flow.failed_executions == 1
    assert flow.successful_executions == 0


@pytest.mark.asyncio
async def test_executions_are_tenant_scoped_and_filterable(repo):
    flow_id, execution = await _new_execution(repo)
    other_flow, other_execution = await _new_execution(repo)

    assert await repo.get_execution(execution.id, "t2") is None
    assert {e.id for e in await repo.list_executions("t1")} == {
        execution.id,
        other_execution.id,
    }
    assert [e.id for e in await repo.list_executions("t1", flow_id)] == [execution.id]
    assert await repo.list_executions("t2") == []


@pytest.mark.asyncio
async def test_writes_to_missing_execution_fail(repo):
    with pytest.raises(PersistenceError):
        await repo.update_execution_transition("missing", "s2", {})
    with pytest.raises(PersistenceError):
        await repo.finalize_execution("missing", "completed")


@pytest.mark.asyncio
async def test_stored_context_is_isolated_from_caller(repo):
    _, execution = await _new_execution(repo)
    context = {"nested": {"a": 1}}
    await repo.update_execution_transition(execution.id, "s2", context)
    context["nested"]["a"] = 2

    stored = await repo.get_execution(execution.id, "t1")
    assert stored.context == {"nested": {"a": 1}}


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    db_path = tmp_path / "flows.db"
    repo = SQLiteFlowRepository(db_path)
    flow_id, execution = await _new_execution(repo)
    await repo.update_execution_transition(execution.id, "s2", {"seed": 1, "x": 2}, ["s1"])
    repo.close()

    reopened = SQLiteFlowRepository(db_path)
    stored = await reopened.get_execution(execution.id, "t1")
    assert stored.status == "running"
    assert stored.current_step_id == "s2"
    assert stored.context == {"seed": 1, "x": 2}
    assert (await reopened.get_flow(flow_id, "t1")).name == "onboarding"
    reopened.close()


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("TENANTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("TENANTFLOW_CONFIG", str(tmp_path / "missing.yaml"))

    assert isinstance(get_repository(), InMemoryFlowRepository)
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_repo, SQLiteFlowRepository)
    sqlite_repo.close()

    monkeypatch.setenv("TENANTFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    env_repo = get_repository()
    assert isinstance(env_repo, SQLiteFlowRepository)
    env_repo.close()

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
