"""Drives one execution through a flow's step graph."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from .errors import PersistenceError, StepNotFoundError
from .executor import StepRunner
from .models import ExecutionLog, ExecutionRecord, FlowDefinition, utcnow
from .persistence import ExecutionStore

logger = logging.getLogger(__name__)


class FlowOrchestrator:
    """Runs an execution from its ``current_step_id`` until it terminates.

    Every transition to a successor step is checkpointed in the execution
    store before that successor runs, so a crashed run can be resumed from
    the persisted ``current_step_id`` and context. Only the first entry of a
    step's ``next_steps`` is followed.
    """

    def __init__(self, executions: ExecutionStore, executor: StepRunner) -> None:
        self._executions = executions
        self._executor = executor

    async def run(
        self, flow: FlowDefinition, execution: ExecutionRecord
    ) -> ExecutionRecord:
        """Execute ``execution`` against ``flow`` and finalize it.

        Returns:
            The completed execution record.

        Raises:
            Exception: Whatever failed mid-run, after the execution has been
                durably recorded as ``failed`` with the same message.
        """
        current = execution.current_step_id
        logger.info(
            f"Running execution {execution.id} of flow {flow.id} from step {current!r}"
        )
        try:
            while current:
                step = flow.find_step(current)
                if step is None:
                    raise StepNotFoundError(current)

                await self._log(
                    execution,
                    "info",
                    f"Executing step {step.id} ({step.type})",
                    {"stepId": step.id, "name": step.name},
                )
                result = await self._executor.execute(step, dict(execution.context))
                execution.context = {**execution.context, **result}
                execution.completed_steps.append(step.id)
                await self._log(execution, "info", f"Step {step.id} completed")

                next_id = step.next_step_id
                if next_id:
                    # Only persist transitions to steps that exist.
                    if flow.find_step(next_id) is None:
                        raise StepNotFoundError(next_id)
                    await self._executions.update_execution_transition(
                        execution.id,
                        next_id,
                        execution.context,
                        execution.completed_steps,
                    )
                    execution.current_step_id = next_id
                current = next_id
        except Exception as e:
            await self._fail(execution, e, getattr(e, "step_id", None) or current)
            raise

        await self._complete(execution)
        return execution

    async def _log(
        self,
        execution: ExecutionRecord,
        level: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        entry = ExecutionLog(level=level, message=message, data=data)
        execution.logs.append(entry)
        logger.log(
            logging.ERROR if level == "error" else logging.INFO,
            f"[{execution.id}] {message}",
        )
        await self._executions.append_execution_log(execution.id, entry)

    async def _log_best_effort(
        self,
        execution: ExecutionRecord,
        level: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        # Terminal status is already stored; a lost log entry must not undo it.
        try:
            await self._log(execution, level, message, data)
        except PersistenceError:
            logger.warning(f"Could not store log entry for execution {execution.id}")

    async def _complete(self, execution: ExecutionRecord) -> None:
        completed_at = utcnow()
        elapsed = _elapsed_ms(execution, completed_at)
        await self._executions.finalize_execution(
            execution.id,
            "completed",
            completed_at=completed_at,
            context=execution.context,
            completed_steps=execution.completed_steps,
            execution_time=elapsed,
        )
        execution.status = "completed"
        execution.completed_at = completed_at
        execution.output_data = dict(execution.context)
        execution.execution_time = elapsed
        execution.updated_at = completed_at
        await self._log_best_effort(execution, "info", "Flow execution completed")
        logger.info(f"Flow execution {execution.id} completed successfully")

    async def _fail(
        self, execution: ExecutionRecord, error: BaseException, failed_step: str
    ) -> None:
        completed_at = utcnow()
        message = str(error)
        execution.status = "failed"
        execution.error = message
        execution.failed_step = failed_step or None
        execution.completed_at = completed_at
        execution.execution_time = _elapsed_ms(execution, completed_at)
        execution.updated_at = completed_at
        logger.error(f"Flow execution {execution.id} failed: {message}")
        try:
            await self._executions.finalize_execution(
                execution.id,
                "failed",
                message,
                failed_step=execution.failed_step,
                completed_at=completed_at,
                context=execution.context,
                completed_steps=execution.completed_steps,
                execution_time=execution.execution_time,
            )
        except PersistenceError:
            # The original error is re-raised by the caller.
            logger.exception(f"Could not record failure of execution {execution.id}")
            return
        await self._log_best_effort(
            execution,
            "error",
            f"Flow execution failed: {message}",
            {"failedStep": execution.failed_step},
        )


def _elapsed_ms(execution: ExecutionRecord, completed_at: datetime) -> int:
    return int((completed_at - execution.started_at).total_seconds() * 1000)
