"""Persistence layer for flow definitions and execution records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TenantFlowConfig, load_config
from .inmemory import InMemoryFlowRepository
from .repository import ExecutionStore, FlowRepository, FlowStore
from .sqlite import SQLiteFlowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[TenantFlowConfig] = None
) -> FlowRepository:
    """Factory function to build a flow repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``TENANTFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    if database_url is None:
        config = config or load_config()
        database_url = (
            os.getenv("TENANTFLOW_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or config.database_url
        )

    if not database_url:
        return InMemoryFlowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteFlowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresFlowRepository

        return PostgresFlowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ExecutionStore",
    "FlowRepository",
    "FlowStore",
    "InMemoryFlowRepository",
    "SQLiteFlowRepository",
    "get_repository",
]
