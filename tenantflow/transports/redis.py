"""Redis transport for cross-process queued executions."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..constants import DEFAULT_QUEUE_PREFIX
from ..contracts import ExecutionRequest
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis list-based transport; LPUSH to publish, BRPOP to consume."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        queue_prefix: str = DEFAULT_QUEUE_PREFIX,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_prefix = queue_prefix
        self._redis: Optional[redis.Redis] = client
        self._topics: dict[str, str] = {}

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def queue_name(self, topic: str) -> str:
        return f"{self.queue_prefix}:{topic}"

    async def publish(self, topic: str, message: ExecutionRequest) -> None:
        """Publish message to a Redis list acting as a queue."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, ExecutionRequest]]:
        """Subscribe to messages from a Redis queue."""
        if not self._redis:
            await self.connect()

        queue = self.queue_name(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            result = await self._redis.brpop(queue, timeout=1)
            if not result:
                continue

            _, message_json = result
            try:
                message = ExecutionRequest.from_json(message_json)
            except ValidationError as e:
                logger.error(f"Dropping malformed message on {queue}: {e}")
                continue
            self._topics[message_json] = topic
            yield message_json, message

    async def ack(self, raw_message: str) -> None:
        """Message was already removed by BRPOP; forget its topic."""
        self._topics.pop(raw_message, None)

    async def nack(self, raw_message: str, requeue: bool = True) -> None:
        """Push the message back onto the consuming end of its queue."""
        topic = self._topics.pop(raw_message, None)
        if requeue and topic is not None:
            if not self._redis:
                await self.connect()
            await self._redis.rpush(self.queue_name(topic), raw_message)
