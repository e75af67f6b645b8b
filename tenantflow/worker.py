"""Worker consuming queued flow executions from a transport."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from .contracts import ExecutionRequest
from .errors import ExecutionNotFoundError, ExecutionNotRunningError, PersistenceError
from .transports import BaseTransport

if TYPE_CHECKING:
    from .service import FlowService

logger = logging.getLogger(__name__)


class FlowWorker:
    """Runs executions submitted with ``FlowService.submit_flow``.

    A failing execution is already recorded as failed by the orchestrator, so
    the worker logs it, acknowledges the message and keeps consuming. When the
    store itself is unavailable the request is requeued after a growing delay
    (``engine.requeue_delay`` times the attempt number) and dropped once it
    has been redelivered ``engine.max_redeliveries`` times.
    """

    def __init__(
        self,
        transport: BaseTransport,
        service: "FlowService",
        topic: Optional[str] = None,
        requeue_delay: Optional[float] = None,
        max_redeliveries: Optional[int] = None,
    ) -> None:
        engine = service.config.engine
        self._transport = transport
        self._service = service
        self._topic = topic or engine.execution_topic
        self._requeue_delay = (
            engine.requeue_delay if requeue_delay is None else requeue_delay
        )
        self._max_redeliveries = (
            engine.max_redeliveries if max_redeliveries is None else max_redeliveries
        )
        self._attempts: dict[str, int] = {}
        self.processed: list[str] = []
        self.dropped: list[str] = []

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Listen for execution requests until ``lifespan`` seconds elapse."""
        logger.info(f"Worker listening on {self._topic}")
        async for raw_message, request in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                await self._handle_request(request)
            except PersistenceError as e:
                await self._retry_later(raw_message, request, e)
                continue
            self._attempts.pop(request.execution_id, None)
            await self._transport.ack(raw_message)
        logger.info(f"Worker on {self._topic} stopped")

    async def _retry_later(
        self, raw_message, request: ExecutionRequest, error: PersistenceError
    ) -> None:
        execution_id = request.execution_id
        attempt = self._attempts.get(execution_id, 0) + 1
        if attempt > self._max_redeliveries:
            self._attempts.pop(execution_id, None)
            logger.error(
                f"Dropping execution {execution_id} after {attempt} attempts; "
                f"store still unavailable: {error}"
            )
            self.dropped.append(execution_id)
            await self._transport.ack(raw_message)
            return

        self._attempts[execution_id] = attempt
        delay = self._requeue_delay * attempt
        logger.warning(
            f"Store unavailable while running execution {execution_id}: {error}; "
            f"requeueing in {delay:.2f}s (attempt {attempt}/{self._max_redeliveries})"
        )
        await asyncio.sleep(delay)
        await self._transport.nack(raw_message, requeue=True)

    async def _handle_request(self, request: ExecutionRequest) -> None:
        logger.info(
            f"Received execution {request.execution_id} of flow {request.flow_id}"
        )
        try:
            execution = await self._service.resume_execution(
                request.execution_id, request.tenant_id
            )
        except (ExecutionNotFoundError, ExecutionNotRunningError) as e:
            logger.warning(f"Skipping execution {request.execution_id}: {e}")
            return
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Execution {request.execution_id} failed: {e}")
            self.processed.append(request.execution_id)
            return
        logger.info(f"Execution {execution.id} finished with status {execution.status}")
        self.processed.append(execution.id)
