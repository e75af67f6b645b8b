"""Data models for flow definitions and execution records."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Mapping, Optional, Sequence, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import InvalidFlowDefinitionError, UnknownStepTypeError

logger = logging.getLogger(__name__)

StepType = Literal["trigger", "action", "condition", "delay"]
FlowStatus = Literal["active", "paused", "disabled"]
# ``paused`` is reserved; no code path transitions an execution into it.
ExecutionStatus = Literal["running", "completed", "failed", "paused"]

STEP_TYPES: tuple[str, ...] = get_args(StepType)
FLOW_STATUSES: tuple[str, ...] = get_args(FlowStatus)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trigger_type: Optional[str] = Field(default=None, alias="triggerType")
    parameters: Optional[dict[str, Any]] = None


class ActionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_type: Optional[str] = Field(default=None, alias="actionType")
    parameters: Optional[dict[str, Any]] = None


class ConditionConfig(BaseModel):
    condition: Optional[str] = None


class DelayConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delay_duration: Optional[int] = Field(default=None, ge=0, alias="delayDuration")


class _StepBase(BaseModel):
    """Fields shared by every step variant."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = ""
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    # Authoring hint only; traversal follows ``next_steps``.
    order: int = 0

    @property
    def next_step_id(self) -> str:
        """Id of the successor to follow, or ``""`` for a terminal step."""
        return self.next_steps[0] if self.next_steps else ""


class TriggerStep(_StepBase):
    type: Literal["trigger"] = "trigger"
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class ActionStep(_StepBase):
    type: Literal["action"] = "action"
    config: ActionConfig = Field(default_factory=ActionConfig)


class ConditionStep(_StepBase):
    type: Literal["condition"] = "condition"
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class DelayStep(_StepBase):
    type: Literal["delay"] = "delay"
    config: DelayConfig = Field(default_factory=DelayConfig)


Step = Annotated[
    Union[TriggerStep, ActionStep, ConditionStep, DelayStep],
    Field(discriminator="type"),
]

_step_list_adapter: TypeAdapter[list[Step]] = TypeAdapter(list[Step])


def parse_steps(raw_steps: Sequence[Union[_StepBase, Mapping[str, Any]]]) -> list[Step]:
    """Validate raw step documents into the closed set of step variants.

    Raises:
        UnknownStepTypeError: A step declares a type outside the closed set.
        InvalidFlowDefinitionError: A step is malformed or step ids collide.
    """

    for item in raw_steps:
        if isinstance(item, Mapping) and item.get("type") not in STEP_TYPES:
            raise UnknownStepTypeError(str(item.get("id", "")), item.get("type"))

    try:
        steps = _step_list_adapter.validate_python(list(raw_steps))
    except ValidationError as e:
        raise InvalidFlowDefinitionError(f"Invalid flow steps: {e}") from e

    duplicates = [sid for sid, n in Counter(s.id for s in steps).items() if n > 1]
    if duplicates:
        raise InvalidFlowDefinitionError(
            f"Duplicate step ids: {', '.join(sorted(duplicates))}"
        )

    known = {s.id for s in steps}
    for step in steps:
        if len(step.next_steps) > 1:
            logger.warning(
                f"Step {step.id} lists {len(step.next_steps)} successors; "
                f"only {step.next_steps[0]} will be followed"
            )
        for ref in step.next_steps:
            if ref not in known:
                logger.warning(f"Step {step.id} references unknown step {ref}")
    return steps


class FlowDefinition(BaseModel):
    """A named, tenant-owned, ordered graph of steps."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    company_id: Optional[str] = None
    name: str
    description: str = ""
    flow_type: str = "manual"
    trigger_type: Optional[str] = None
    trigger_config: Optional[dict[str, Any]] = None
    steps: list[Step] = Field(default_factory=list)
    conditions: Optional[dict[str, Any]] = None
    is_active: bool = True
    status: FlowStatus = "active"
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_executed_at: Optional[datetime] = None
    last_execution_status: Optional[str] = None

    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def find_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def first_step_id(self) -> str:
        return self.steps[0].id if self.steps else ""


class ExecutionLog(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    message: str
    data: Optional[dict[str, Any]] = None


class ExecutionRecord(BaseModel):
    """One run instance of a flow."""

    id: str = Field(default_factory=new_id)
    flow_id: str
    tenant_id: str
    status: ExecutionStatus = "running"
    trigger_type: Optional[str] = None
    triggered_by: Optional[str] = None

    current_step_id: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[dict[str, Any]] = None
    completed_steps: list[str] = Field(default_factory=list)
    failed_step: Optional[str] = None

    execution_time: Optional[int] = None
    error: Optional[str] = None
    logs: list[ExecutionLog] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    def is_finished(self) -> bool:
        return self.status in ("completed", "failed")


__all__ = [
    "ActionConfig",
    "ActionStep",
    "ConditionConfig",
    "ConditionStep",
    "DelayConfig",
    "DelayStep",
    "ExecutionLog",
    "ExecutionRecord",
    "ExecutionStatus",
    "FLOW_STATUSES",
    "FlowDefinition",
    "FlowStatus",
    "STEP_TYPES",
    "Step",
    "StepType",
    "TriggerConfig",
    "TriggerStep",
    "new_id",
    "parse_steps",
    "utcnow",
]
