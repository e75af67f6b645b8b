"""Transports that carry queued executions from ``submit_flow`` to workers."""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from ..config import TenantFlowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport

logger = logging.getLogger(__name__)


def _build_inmemory(config: TenantFlowConfig) -> BaseTransport:
    return InMemoryTransport(poll_interval=config.transport.poll_interval)


def _build_redis(config: TenantFlowConfig) -> BaseTransport:
    # Imported lazily so the redis client is only needed when selected.
    from .redis import RedisTransport

    redis_conf = config.transport.redis
    return RedisTransport(
        host=redis_conf.host,
        port=redis_conf.port,
        db=redis_conf.db,
        password=redis_conf.password,
        queue_prefix=redis_conf.queue_prefix,
    )


TRANSPORT_BUILDERS: dict[str, Callable[[TenantFlowConfig], BaseTransport]] = {
    "inmemory": _build_inmemory,
    "redis": _build_redis,
}


def get_transport(
    backend: Optional[str] = None, config: Optional[TenantFlowConfig] = None
) -> BaseTransport:
    """Build the transport that queues executions for workers.

    ``backend`` wins over ``TENANTFLOW_TRANSPORT``, which wins over
    ``config.transport.backend``. An in-memory transport only reaches workers
    running in the same process as the submitting service.

    Raises:
        ValueError: The backend name is not one of ``TRANSPORT_BUILDERS``.
    """
    config = config or load_config()
    name = (
        backend or os.getenv("TENANTFLOW_TRANSPORT") or config.transport.backend
    ).lower()
    builder = TRANSPORT_BUILDERS.get(name)
    if builder is None:
        raise ValueError(
            f"Unsupported transport backend: {name}; "
            f"expected one of {', '.join(sorted(TRANSPORT_BUILDERS))}"
        )
    logger.debug(f"Using {name} transport for {config.engine.execution_topic}")
    return builder(config)


__all__ = ["BaseTransport", "InMemoryTransport", "TRANSPORT_BUILDERS", "get_transport"]
