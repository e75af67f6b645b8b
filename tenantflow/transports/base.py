"""Queue interface between ``FlowService.submit_flow`` and ``FlowWorker``."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import ExecutionRequest

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Delivers ``ExecutionRequest``s to workers at least once.

    A request only names an execution; its state lives in the execution
    store, so a redelivered request for a finished execution is harmless and
    the worker skips it.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: ExecutionRequest) -> None:
        """Queue an execution request on ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, ExecutionRequest]]:
        """Yield ``(raw_message, request)`` pairs from ``topic``.

        The raw message is what ``ack``/``nack`` take back. Iteration ends once
        ``lifespan`` seconds have passed, or never when it is None.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Drop a request whose execution reached a terminal state."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Hand a request back so its still-running execution is retried.

        Transports that cannot requeue drop the request instead.
        """
        await self.ack(raw_message)
