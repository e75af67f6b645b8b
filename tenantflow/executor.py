"""Type-dispatched execution of individual flow steps."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from .constants import DEFAULT_ACTION_TYPE, DEFAULT_DELAY_MS, DEFAULT_TRIGGER_TYPE
from .errors import StepExecutionError, TenantFlowError, UnknownStepTypeError
from .models import ActionStep, ConditionStep, DelayStep, Step, TriggerStep, utcnow

logger = logging.getLogger(__name__)

ActionHandler = Callable[
    [ActionStep, Dict[str, Any]],
    Union[Awaitable[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
]
ConditionPredicate = Callable[[Dict[str, Any]], Union[Awaitable[bool], bool]]


class StepRunner(Protocol):
    """Anything able to execute one step against a context."""

    async def execute(self, step: Step, context: dict[str, Any]) -> dict[str, Any]:
        """Return the result fragment to merge into the context."""


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StepExecutor:
    """Executes a single step and returns its result fragment.

    Action handlers are registered per ``action_type`` and condition predicates
    per condition identifier. Without a registration the baseline behaviour
    applies: actions echo their parameters and conditions evaluate true.
    """

    def __init__(
        self,
        action_handlers: Optional[Dict[str, ActionHandler]] = None,
        condition_predicates: Optional[Dict[str, ConditionPredicate]] = None,
        default_delay_ms: int = DEFAULT_DELAY_MS,
    ) -> None:
        self._action_handlers: Dict[str, ActionHandler] = dict(action_handlers or {})
        self._conditions: Dict[str, ConditionPredicate] = dict(
            condition_predicates or {}
        )
        self.default_delay_ms = default_delay_ms
        self._dispatch: Dict[str, Callable[[Any, dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "trigger": self._execute_trigger,
            "action": self._execute_action,
            "condition": self._execute_condition,
            "delay": self._execute_delay,
        }

    def register_action(self, action_type: str, handler: ActionHandler) -> None:
        self._action_handlers[action_type] = handler

    def register_condition(self, name: str, predicate: ConditionPredicate) -> None:
        self._conditions[name] = predicate

    async def execute(self, step: Step, context: dict[str, Any]) -> dict[str, Any]:
        """Execute ``step`` against ``context``.

        Raises:
            UnknownStepTypeError: No handler exists for the step's type.
            StepExecutionError: The step implementation raised.
        """
        handler = self._dispatch.get(step.type)
        if handler is None:
            raise UnknownStepTypeError(step.id, step.type)

        logger.debug(f"Executing {step.type} step {step.id} ({step.name})")
        try:
            return await handler(step, context)
        except TenantFlowError:
            raise
        except Exception as e:
            raise StepExecutionError(step.id, e) from e

    async def _execute_trigger(
        self, step: TriggerStep, context: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "triggerExecuted": True,
            "triggerType": step.config.trigger_type or DEFAULT_TRIGGER_TYPE,
            "triggerData": step.config.parameters,
        }

    async def _execute_action(
        self, step: ActionStep, context: dict[str, Any]
    ) -> dict[str, Any]:
        action_type = step.config.action_type or DEFAULT_ACTION_TYPE
        handler = self._action_handlers.get(action_type)
        if handler is None:
            action_data = step.config.parameters
        else:
            action_data = await _maybe_await(handler(step, dict(context)))
        return {
            "actionExecuted": True,
            "actionType": action_type,
            "actionData": action_data,
        }

    async def _execute_condition(
        self, step: ConditionStep, context: dict[str, Any]
    ) -> dict[str, Any]:
        name = step.config.condition
        predicate = self._conditions.get(name) if name else None
        met = True if predicate is None else bool(await _maybe_await(predicate(dict(context))))
        return {
            "conditionMet": met,
            "conditionType": name,
            "evaluationData": dict(context),
        }

    async def _execute_delay(
        self, step: DelayStep, context: dict[str, Any]
    ) -> dict[str, Any]:
        duration = step.config.delay_duration
        if duration is None:
            duration = self.default_delay_ms
        logger.debug(f"Delaying step {step.id} for {duration} ms")
        await asyncio.sleep(duration / 1000)
        return {
            "delayCompleted": True,
            "delayDuration": duration,
            "completedAt": utcnow().isoformat(),
        }
