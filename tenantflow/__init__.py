"""tenantflow: tenant-scoped automated flow execution."""

from .config import TenantFlowConfig, load_config
from .contracts import ExecutionRequest
from .errors import (
    EmptyFlowDefinitionError,
    ExecutionNotFoundError,
    ExecutionNotRunningError,
    FlowNotActiveError,
    FlowNotFoundError,
    InvalidFlowDefinitionError,
    PersistenceError,
    StepExecutionError,
    StepNotFoundError,
    TenantFlowError,
    UnknownStepTypeError,
)
from .executor import StepExecutor
from .models import (
    ActionStep,
    ConditionStep,
    DelayStep,
    ExecutionLog,
    ExecutionRecord,
    FlowDefinition,
    TriggerStep,
    parse_steps,
)
from .orchestrator import FlowOrchestrator
from .persistence import InMemoryFlowRepository, SQLiteFlowRepository, get_repository
from .service import FlowService
from .transports import get_transport
from .worker import FlowWorker

__version__ = "0.1.0"
__all__ = [
    "ActionStep",
    "ConditionStep",
    "DelayStep",
    "EmptyFlowDefinitionError",
    "ExecutionLog",
    "ExecutionNotFoundError",
    "ExecutionNotRunningError",
    "ExecutionRecord",
    "ExecutionRequest",
    "FlowDefinition",
    "FlowNotActiveError",
    "FlowNotFoundError",
    "FlowOrchestrator",
    "FlowService",
    "FlowWorker",
    "InMemoryFlowRepository",
    "InvalidFlowDefinitionError",
    "PersistenceError",
    "SQLiteFlowRepository",
    "StepExecutionError",
    "StepExecutor",
    "StepNotFoundError",
    "TenantFlowConfig",
    "TenantFlowError",
    "TriggerStep",
    "UnknownStepTypeError",
    "get_repository",
    "get_transport",
    "load_config",
    "parse_steps",
]
