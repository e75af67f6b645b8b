"""Error taxonomy for tenantflow."""

from __future__ import annotations

from typing import Optional


class TenantFlowError(Exception):
    """Base class for all engine errors."""

    #: Step id associated with the failure, when known.
    step_id: Optional[str] = None


class FlowNotFoundError(TenantFlowError):
    """The flow does not exist or is not owned by the requesting tenant."""

    def __init__(self, flow_id: str, tenant_id: str) -> None:
        super().__init__(f"Flow {flow_id} not found for tenant {tenant_id}")
        self.flow_id = flow_id
        self.tenant_id = tenant_id


class EmptyFlowDefinitionError(TenantFlowError):
    """The flow has no steps."""

    def __init__(self, flow_id: Optional[str] = None) -> None:
        if flow_id:
            message = f"Flow {flow_id} has no steps defined"
        else:
            message = "Flow has no steps defined"
        super().__init__(message)
        self.flow_id = flow_id


class InvalidFlowDefinitionError(TenantFlowError):
    """Steps failed validation when the flow was created."""


class FlowNotActiveError(TenantFlowError):
    def __init__(self, flow_id: str, status: str) -> None:
        super().__init__(f"Flow {flow_id} is not active (status={status})")
        self.flow_id = flow_id
        self.status = status


class StepNotFoundError(TenantFlowError):
    """A ``next_steps`` reference points at a step id absent from the flow."""

    def __init__(self, step_id: str) -> None:
        super().__init__(f"Step {step_id} not found")
        self.step_id = step_id


class UnknownStepTypeError(TenantFlowError):
    def __init__(self, step_id: str, step_type: object) -> None:
        super().__init__(f"Unknown step type {step_type!r} for step {step_id}")
        self.step_id = step_id
        self.step_type = step_type


class StepExecutionError(TenantFlowError):
    """Wraps a failure raised inside a step implementation."""

    def __init__(self, step_id: str, cause: BaseException) -> None:
        super().__init__(f"Step {step_id} failed: {cause}")
        self.step_id = step_id
        self.cause = cause


class PersistenceError(TenantFlowError):
    """A store write or read failed."""


class ExecutionNotFoundError(TenantFlowError):
    def __init__(self, execution_id: str, tenant_id: str) -> None:
        super().__init__(f"Execution {execution_id} not found for tenant {tenant_id}")
        self.execution_id = execution_id
        self.tenant_id = tenant_id


class ExecutionNotRunningError(TenantFlowError):
    def __init__(self, execution_id: str, status: str) -> None:
        super().__init__(f"Execution {execution_id} is not running (status={status})")
        self.execution_id = execution_id
        self.status = status


__all__ = [
    "TenantFlowError",
    "FlowNotFoundError",
    "EmptyFlowDefinitionError",
    "InvalidFlowDefinitionError",
    "FlowNotActiveError",
    "StepNotFoundError",
    "UnknownStepTypeError",
    "StepExecutionError",
    "PersistenceError",
    "ExecutionNotFoundError",
    "ExecutionNotRunningError",
]
