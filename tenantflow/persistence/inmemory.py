"""In-memory implementation of the flow and execution stores."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from ..errors import PersistenceError
from ..models import ExecutionLog, ExecutionRecord, FlowDefinition, Step, utcnow
from .repository import FlowRepository


class InMemoryFlowRepository(FlowRepository):
    """Store flows and executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._flows: Dict[str, FlowDefinition] = {}
        self._executions: Dict[str, ExecutionRecord] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Flow store
    async def create_flow_record(
        self,
        tenant_id: str,
        name: str,
        description: str,
        steps: Sequence[Step],
        **fields: Any,
    ) -> str:
        flow = FlowDefinition(
            tenant_id=tenant_id,
            name=name,
            description=description,
            steps=list(steps),
            **fields,
        )
        async with self._lock:
            if flow.id in self._flows:
                raise PersistenceError(f"Flow {flow.id} already exists")
            self._flows[flow.id] = flow.model_copy(deep=True)
        return flow.id

    async def get_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition | None:
        flow = self._flows.get(flow_id)
        if flow is None or flow.tenant_id != tenant_id:
            return None
        return flow.model_copy(deep=True)

    async def list_flows(self, tenant_id: str) -> list[FlowDefinition]:
        return [
            flow.model_copy(deep=True)
            for flow in self._flows.values()
            if flow.tenant_id == tenant_id
        ]

    async def update_flow_status(
        self, flow_id: str, tenant_id: str, status: str
    ) -> FlowDefinition | None:
        async with self._lock:
            flow = self._flows.get(flow_id)
            if flow is None or flow.tenant_id != tenant_id:
                return None
            flow.status = status
            flow.is_active = status == "active"
            flow.updated_at = utcnow()
            return flow.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Execution store
    async def create_execution_record(self, execution: ExecutionRecord) -> None:
        async with self._lock:
            if execution.id in self._executions:
                raise PersistenceError(f"Execution {execution.id} already exists")
            self._executions[execution.id] = execution.model_copy(deep=True)

    def _require_execution(self, execution_id: str) -> ExecutionRecord:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise PersistenceError(f"Execution {execution_id} does not exist")
        return execution

    async def update_execution_transition(
        self,
        execution_id: str,
        current_step_id: str,
        context: dict[str, Any],
        completed_steps: list[str] | None = None,
    ) -> None:
        async with self._lock:
            execution = self._require_execution(execution_id)
            update: dict[str, Any] = {
                "current_step_id": current_step_id,
                "context": copy.deepcopy(context),
                "updated_at": utcnow(),
            }
            if completed_steps is not None:
                update["completed_steps"] = list(completed_steps)
            self._executions[execution_id] = execution.model_copy(
                update=update, deep=True
            )

    async def append_execution_log(self, execution_id: str, entry: ExecutionLog) -> None:
        async with self._lock:
            execution = self._require_execution(execution_id)
            execution.logs.append(entry.model_copy(deep=True))

    async def finalize_execution(
        self,
        execution_id: str,
        status: str,
        error: Optional[str] = None,
        *,
        failed_step: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        context: Optional[dict[str, Any]] = None,
        completed_steps: Optional[list[str]] = None,
        execution_time: Optional[int] = None,
    ) -> None:
        completed_at = completed_at or utcnow()
        async with self._lock:
            execution = self._require_execution(execution_id)
            update: dict[str, Any] = {
                "status": status,
                "error": error,
                "failed_step": failed_step,
                "completed_at": completed_at,
                "execution_time": execution_time,
                "updated_at": completed_at,
            }
            if context is not None:
                update["context"] = copy.deepcopy(context)
                if status == "completed":
                    update["output_data"] = copy.deepcopy(context)
            if completed_steps is not None:
                update["completed_steps"] = list(completed_steps)
            self._executions[execution_id] = execution.model_copy(
                update=update, deep=True
            )

            flow = self._flows.get(execution.flow_id)
            if flow is not None:
                flow.total_executions += 1
                if status == "completed":
                    flow.successful_executions += 1
                elif status == "failed":
                    flow.failed_executions += 1
                flow.last_executed_at = completed_at
                flow.last_execution_status = status
                flow.updated_at = completed_at

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> ExecutionRecord | None:
        execution = self._executions.get(execution_id)
        if execution is None or execution.tenant_id != tenant_id:
            return None
        return execution.model_copy(deep=True)

    async def list_executions(
        self, tenant_id: str, flow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        return [
            execution.model_copy(deep=True)
            for execution in self._executions.values()
            if execution.tenant_id == tenant_id
            and (flow_id is None or execution.flow_id == flow_id)
        ]
