"""Store abstractions for flow definitions and execution records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from ..models import ExecutionLog, ExecutionRecord, FlowDefinition, Step


class FlowStore(Protocol):
    """Protocol for flow definition persistence backends.

    Every lookup is scoped by tenant; a backend must never return a flow owned
    by a different tenant.
    """

    async def create_flow_record(
        self,
        tenant_id: str,
        name: str,
        description: str,
        steps: Sequence[Step],
        **fields: Any,
    ) -> str:
        """Persist a new flow definition and return its id."""

    async def get_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition | None:
        """Retrieve a flow owned by ``tenant_id``."""

    async def list_flows(self, tenant_id: str) -> list[FlowDefinition]:
        """Return all flows owned by ``tenant_id``."""

    async def update_flow_status(
        self, flow_id: str, tenant_id: str, status: str
    ) -> FlowDefinition | None:
        """Change a flow's lifecycle status."""


class ExecutionStore(Protocol):
    """Protocol for execution record persistence backends.

    Writes must be durable when the coroutine returns.
    """

    async def create_execution_record(self, execution: ExecutionRecord) -> None:
        """Persist a freshly started execution."""

    async def update_execution_transition(
        self,
        execution_id: str,
        current_step_id: str,
        context: dict[str, Any],
        completed_steps: list[str] | None = None,
    ) -> None:
        """Checkpoint the next step to run and the accumulated context."""

    async def append_execution_log(self, execution_id: str, entry: ExecutionLog) -> None:
        """Append a log entry to the execution."""

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
        """Record the terminal status and update the owning flow's counters."""

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> ExecutionRecord | None:
        """Retrieve an execution owned by ``tenant_id``."""

    async def list_executions(
        self, tenant_id: str, flow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        """Return executions for a tenant, optionally limited to one flow."""


class FlowRepository(FlowStore, ExecutionStore, Protocol):
    """A backend serving both flow and execution records."""
