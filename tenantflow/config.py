from __future__ import annotations

import os
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_DELAY_MS,
    DEFAULT_EXECUTION_TOPIC,
    DEFAULT_MAX_REDELIVERIES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_QUEUE_PREFIX,
    DEFAULT_REQUEUE_DELAY,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    # Lists are named "<queue_prefix>:<topic>".
    queue_prefix: str = DEFAULT_QUEUE_PREFIX


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Execution engine settings."""

    default_delay_ms: int = Field(default=DEFAULT_DELAY_MS, ge=0)
    # Seed values every new execution context starts from; caller context wins.
    default_context: dict[str, Any] = Field(default_factory=dict)
    execution_topic: str = DEFAULT_EXECUTION_TOPIC
    # Worker backoff while the store is unavailable, multiplied by the attempt.
    requeue_delay: float = Field(default=DEFAULT_REQUEUE_DELAY, ge=0)
    max_redeliveries: int = Field(default=DEFAULT_MAX_REDELIVERIES, ge=0)


class TenantFlowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> TenantFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TENANTFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TENANTFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TenantFlowConfig(**data)
    else:
        config = TenantFlowConfig()

    env_db_url = os.getenv("TENANTFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
