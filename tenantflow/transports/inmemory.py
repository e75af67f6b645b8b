"""In-process transport used by tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import ExecutionRequest
from .base import BaseTransport

RawInMemoryMessage = Tuple[str, ExecutionRequest]


class InMemoryTransport(BaseTransport[RawInMemoryMessage]):
    """Simple in-process queue keyed by topic."""

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queues: Dict[str, Deque[RawInMemoryMessage]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def publish(self, topic: str, message: ExecutionRequest) -> None:
        """Publish message to in-memory queue."""
        raw = (topic, message.model_copy(deep=True))
        async with self._lock:
            self._queues[topic].append(raw)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawInMemoryMessage, ExecutionRequest]]:
        """Subscribe to messages from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs
                indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            async with self._lock:
                raw_message = (
                    self._queues[topic].popleft() if self._queues[topic] else None
                )
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(self._poll_interval)

    async def ack(self, raw_message: RawInMemoryMessage) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    async def nack(self, raw_message: RawInMemoryMessage, requeue: bool = True) -> None:
        """Put the message back at the front of its queue when requeueing."""
        if not requeue:
            return
        topic, _ = raw_message
        async with self._lock:
            self._queues[topic].appendleft(raw_message)

    def pending(self, topic: str) -> int:
        """Number of messages waiting on ``topic``."""
        return len(self._queues[topic])
