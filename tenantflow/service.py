"""Public facade for defining and running tenant flows."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, Optional, Sequence, Union

from .config import TenantFlowConfig, load_config
from .contracts import ExecutionRequest
from .errors import (
    EmptyFlowDefinitionError,
    ExecutionNotFoundError,
    ExecutionNotRunningError,
    FlowNotActiveError,
    FlowNotFoundError,
    InvalidFlowDefinitionError,
)
from .executor import StepExecutor, StepRunner
from .models import FLOW_STATUSES, ExecutionRecord, FlowDefinition, Step, parse_steps
from .orchestrator import FlowOrchestrator
from .persistence import ExecutionStore, FlowStore, get_repository
from .transports import BaseTransport, get_transport

logger = logging.getLogger(__name__)


class FlowService:
    """Creates flows and runs executions against injected stores.

    ``execute_flow`` runs a flow to completion in the calling coroutine.
    ``submit_flow`` records the execution and hands it to a worker through the
    transport; the worker continues it with ``resume_execution``.
    """

    def __init__(
        self,
        flows: FlowStore,
        executions: ExecutionStore,
        executor: Optional[StepRunner] = None,
        transport: Optional[BaseTransport] = None,
        config: Optional[TenantFlowConfig] = None,
    ) -> None:
        self.config = config or TenantFlowConfig()
        self.flows = flows
        self.executions = executions
        self.executor = executor or StepExecutor(
            default_delay_ms=self.config.engine.default_delay_ms
        )
        self.transport = transport
        self.orchestrator = FlowOrchestrator(executions, self.executor)

    @classmethod
    def from_config(
        cls,
        config: Optional[TenantFlowConfig] = None,
        executor: Optional[StepRunner] = None,
    ) -> "FlowService":
        """Build a service with the repository and transport named in config."""
        config = config or load_config()
        repository = get_repository(config=config)
        transport = get_transport(config=config)
        return cls(repository, repository, executor, transport, config)

    # ------------------------------------------------------------------
    # Flows
    async def create_flow(
        self,
        tenant_id: str,
        name: str,
        description: str,
        steps: Sequence[Union[Step, Mapping[str, Any]]],
        **fields: Any,
    ) -> str:
        """Validate and persist a new flow, returning its id.

        Raises:
            EmptyFlowDefinitionError: ``steps`` is empty.
            UnknownStepTypeError: A step has a type outside the closed set.
            InvalidFlowDefinitionError: A step is malformed or ids collide.
        """
        if not steps:
            raise EmptyFlowDefinitionError()
        parsed = parse_steps(steps)
        flow_id = await self.flows.create_flow_record(
            tenant_id, name, description, parsed, **fields
        )
        logger.info(
            f"Created flow {flow_id} ({name!r}) with {len(parsed)} steps for tenant {tenant_id}"
        )
        return flow_id

    async def get_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition:
        flow = await self.flows.get_flow(flow_id, tenant_id)
        if flow is None:
            raise FlowNotFoundError(flow_id, tenant_id)
        return flow

    async def list_flows(self, tenant_id: str) -> list[FlowDefinition]:
        return await self.flows.list_flows(tenant_id)

    async def set_flow_status(
        self, flow_id: str, tenant_id: str, status: str
    ) -> FlowDefinition:
        """Move a flow between ``active``, ``paused`` and ``disabled``."""
        if status not in FLOW_STATUSES:
            raise InvalidFlowDefinitionError(
                f"Invalid flow status {status!r}; expected one of {', '.join(FLOW_STATUSES)}"
            )
        flow = await self.flows.update_flow_status(flow_id, tenant_id, status)
        if flow is None:
            raise FlowNotFoundError(flow_id, tenant_id)
        logger.info(f"Flow {flow_id} status set to {status}")
        return flow

    # ------------------------------------------------------------------
    # Executions
    async def _load_runnable_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition:
        flow = await self.get_flow(flow_id, tenant_id)
        if not flow.steps:
            raise EmptyFlowDefinitionError(flow_id)
        if flow.status != "active":
            raise FlowNotActiveError(flow_id, flow.status)
        return flow

    async def _start_execution(
        self,
        flow: FlowDefinition,
        context: Optional[dict[str, Any]],
        triggered_by: Optional[str],
    ) -> ExecutionRecord:
        seed = copy.deepcopy(self.config.engine.default_context)
        seed.update(copy.deepcopy(context or {}))
        execution = ExecutionRecord(
            flow_id=flow.id,
            tenant_id=flow.tenant_id,
            trigger_type=flow.trigger_type or flow.flow_type,
            triggered_by=triggered_by,
            current_step_id=flow.first_step_id,
            context=seed,
            input_data=copy.deepcopy(context or {}),
        )
        await self.executions.create_execution_record(execution)
        logger.info(f"Started execution {execution.id} of flow {flow.id}")
        return execution

    async def execute_flow(
        self,
        flow_id: str,
        tenant_id: str,
        context: Optional[dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
    ) -> ExecutionRecord:
        """Run a flow to completion and return the finalized execution.

        Raises:
            FlowNotFoundError: No such flow for ``tenant_id``.
            EmptyFlowDefinitionError: The flow has no steps.
            FlowNotActiveError: The flow's status is not ``active``.

        Errors raised mid-run propagate unchanged after the execution has been
        recorded as failed.
        """
        flow = await self._load_runnable_flow(flow_id, tenant_id)
        execution = await self._start_execution(flow, context, triggered_by)
        return await self.orchestrator.run(flow, execution)

    async def submit_flow(
        self,
        flow_id: str,
        tenant_id: str,
        context: Optional[dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
    ) -> str:
        """Record a running execution and queue it for a worker.

        Returns:
            The id of the queued execution.

        If publishing fails the execution is recorded as failed and the
        transport error propagates.
        """
        if self.transport is None:
            raise RuntimeError("FlowService has no transport configured")
        flow = await self._load_runnable_flow(flow_id, tenant_id)
        execution = await self._start_execution(flow, context, triggered_by)
        request = ExecutionRequest(
            execution_id=execution.id, flow_id=flow.id, tenant_id=tenant_id
        )
        try:
            await self.transport.publish(self.config.engine.execution_topic, request)
        except Exception as e:
            # No worker will ever see this execution.
            logger.exception(f"Could not queue execution {execution.id}")
            await self.executions.finalize_execution(
                execution.id,
                "failed",
                f"Could not queue execution: {e}",
                failed_step=None,
            )
            raise
        logger.info(
            f"Queued execution {execution.id} on {self.config.engine.execution_topic}"
        )
        return execution.id

    async def resume_execution(
        self, execution_id: str, tenant_id: str
    ) -> ExecutionRecord:
        """Continue a running execution from its last recorded step.

        Raises:
            ExecutionNotFoundError: No such execution for ``tenant_id``.
            ExecutionNotRunningError: The execution already finished.
            FlowNotFoundError: The owning flow is gone; the execution is
                recorded as failed first.
        """
        execution = await self.executions.get_execution(execution_id, tenant_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id, tenant_id)
        if execution.status != "running":
            raise ExecutionNotRunningError(execution_id, execution.status)

        flow = await self.flows.get_flow(execution.flow_id, tenant_id)
        if flow is None:
            error = FlowNotFoundError(execution.flow_id, tenant_id)
            await self.executions.finalize_execution(
                execution_id, "failed", str(error), failed_step=execution.current_step_id or None
            )
            raise error

        logger.info(
            f"Resuming execution {execution_id} at step {execution.current_step_id!r}"
        )
        return await self.orchestrator.run(flow, execution)

    async def get_execution(self, execution_id: str, tenant_id: str) -> ExecutionRecord:
        execution = await self.executions.get_execution(execution_id, tenant_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id, tenant_id)
        return execution

    async def list_executions(
        self, tenant_id: str, flow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        return await self.executions.list_executions(tenant_id, flow_id)
