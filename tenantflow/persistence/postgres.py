"""PostgreSQL implementation of the flow and execution stores."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence

import asyncpg

from ..errors import PersistenceError
from ..models import ExecutionLog, ExecutionRecord, FlowDefinition, Step, utcnow
from .repository import FlowRepository

_FLOW_COLUMNS = (
    "id, tenant_id, company_id, name, description, flow_type, trigger_type, "
    "trigger_config, steps, conditions, is_active, status, metadata, tags, "
    "total_executions, successful_executions, failed_executions, "
    "last_executed_at, last_execution_status, created_by, created_at, updated_at"
)

_EXECUTION_COLUMNS = (
    "id, flow_id, tenant_id, status, trigger_type, triggered_by, input_data, "
    "output_data, context, current_step, completed_steps, failed_step, "
    "execution_time, error, started_at, completed_at, updated_at, created_at"
)


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load(raw: Any) -> Any:
    if raw is None or not isinstance(raw, str):
        return raw
    return json.loads(raw)


class PostgresFlowRepository(FlowRepository):
    """Persist flows and executions using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"PostgreSQL connection failed: {e}") from e
        try:
            yield conn
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"PostgreSQL query failed: {e}") from e
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS automated_flows (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                company_id TEXT,
                name TEXT NOT NULL,
                description TEXT,
                flow_type TEXT NOT NULL,
                trigger_type TEXT,
                trigger_config JSONB,
                steps JSONB NOT NULL,
                conditions JSONB,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                status TEXT NOT NULL DEFAULT 'active',
                metadata JSONB,
                tags JSONB,
                total_executions INTEGER NOT NULL DEFAULT 0,
                successful_executions INTEGER NOT NULL DEFAULT 0,
                failed_executions INTEGER NOT NULL DEFAULT 0,
                last_executed_at TIMESTAMPTZ,
                last_execution_status TEXT,
                created_by TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_executions (
                id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                status TEXT NOT NULL,
                trigger_type TEXT,
                triggered_by TEXT,
                input_data JSONB,
                output_data JSONB,
                context JSONB,
                current_step TEXT,
                completed_steps JSONB,
                failed_step TEXT,
                execution_time INTEGER,
                error TEXT,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_execution_logs (
                id SERIAL PRIMARY KEY,
                execution_id TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL,
                level TEXT NOT NULL,
                message TEXT NOT NULL,
                data JSONB
            )
            """
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _flow_from_row(row: asyncpg.Record) -> FlowDefinition:
        data = dict(row)
        for key in ("trigger_config", "steps", "conditions", "metadata", "tags"):
            data[key] = _load(data[key])
        data["description"] = data["description"] or ""
        data["steps"] = data["steps"] or []
        data["metadata"] = data["metadata"] or {}
        data["tags"] = data["tags"] or []
        return FlowDefinition.model_validate(data)

    @staticmethod
    def _execution_from_row(
        row: asyncpg.Record, logs: list[asyncpg.Record]
    ) -> ExecutionRecord:
        data = dict(row)
        for key in ("input_data", "output_data", "context", "completed_steps"):
            data[key] = _load(data[key])
        data["current_step_id"] = data.pop("current_step") or ""
        data["input_data"] = data["input_data"] or {}
        data["context"] = data["context"] or {}
        data["completed_steps"] = data["completed_steps"] or []
        data["updated_at"] = data["updated_at"] or data["started_at"]
        data["logs"] = [
            ExecutionLog(
                timestamp=r["timestamp"],
                level=r["level"],
                message=r["message"],
                data=_load(r["data"]),
            )
            for r in logs
        ]
        return ExecutionRecord.model_validate(data)

    # ------------------------------------------------------------------
    # Flow store
    async def create_flow_record(
        self,
        tenant_id: str,
        name: str,
        description: str,
        steps: Sequence[Step],
        **fields: Any,
    ) -> str:
        flow = FlowDefinition(
            tenant_id=tenant_id,
            name=name,
            description=description,
            steps=list(steps),
            **fields,
        )
        data = flow.model_dump(mode="json")
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO automated_flows ({_FLOW_COLUMNS}) VALUES "
                "($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10::jsonb, $11, "
                "$12, $13::jsonb, $14::jsonb, $15, $16, $17, $18, $19, $20, $21, $22)",
                flow.id,
                flow.tenant_id,
                flow.company_id,
                flow.name,
                flow.description,
                flow.flow_type,
                flow.trigger_type,
                _dump(flow.trigger_config),
                _dump(data["steps"]),
                _dump(flow.conditions),
                flow.is_active,
                flow.status,
                _dump(flow.metadata),
                _dump(flow.tags),
                flow.total_executions,
                flow.successful_executions,
                flow.failed_executions,
                flow.last_executed_at,
                flow.last_execution_status,
                flow.created_by,
                flow.created_at,
                flow.updated_at,
            )
        return flow.id

    async def get_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_FLOW_COLUMNS} FROM automated_flows "
                "WHERE id = $1 AND tenant_id = $2",
                flow_id,
                tenant_id,
            )
        if not row:
            return None
        return self._flow_from_row(row)

    async def list_flows(self, tenant_id: str) -> list[FlowDefinition]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_FLOW_COLUMNS} FROM automated_flows "
                "WHERE tenant_id = $1 ORDER BY created_at",
                tenant_id,
            )
        return [self._flow_from_row(r) for r in rows]

    async def update_flow_status(
        self, flow_id: str, tenant_id: str, status: str
    ) -> FlowDefinition | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE automated_flows SET status = $1, is_active = $2, updated_at = $3
                WHERE id = $4 AND tenant_id = $5
                RETURNING {_FLOW_COLUMNS}
                """,
                status,
                status == "active",
                utcnow(),
                flow_id,
                tenant_id,
            )
        if not row:
            return None
        return self._flow_from_row(row)

    # ------------------------------------------------------------------
    # Execution store
    async def create_execution_record(self, execution: ExecutionRecord) -> None:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO flow_executions ({_EXECUTION_COLUMNS}) VALUES "
                    "($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, $9::jsonb, $10, "
                    "$11::jsonb, $12, $13, $14, $15, $16, $17, $18)",
                    execution.id,
                    execution.flow_id,
                    execution.tenant_id,
                    execution.status,
                    execution.trigger_type,
                    execution.triggered_by,
                    _dump(execution.input_data),
                    _dump(execution.output_data),
                    _dump(execution.context),
                    execution.current_step_id,
                    _dump(execution.completed_steps),
                    execution.failed_step,
                    execution.execution_time,
                    execution.error,
                    execution.started_at,
                    execution.completed_at,
                    execution.updated_at,
                    execution.created_at,
                )
                for entry in execution.logs:
                    await self._insert_log(conn, execution.id, entry)

    @staticmethod
    async def _insert_log(
        conn: asyncpg.Connection, execution_id: str, entry: ExecutionLog
    ) -> None:
        await conn.execute(
            "INSERT INTO flow_execution_logs (execution_id, timestamp, level, message, data) "
            "VALUES ($1, $2, $3, $4, $5::jsonb)",
            execution_id,
            entry.timestamp,
            entry.level,
            entry.message,
            _dump(entry.data),
        )

    async def update_execution_transition(
        self,
        execution_id: str,
        current_step_id: str,
        context: dict[str, Any],
        completed_steps: list[str] | None = None,
    ) -> None:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                UPDATE flow_executions
                SET current_step = $1, context = $2::jsonb,
                    completed_steps = COALESCE($3::jsonb, completed_steps),
                    updated_at = $4
                WHERE id = $5
                """,
                current_step_id,
                _dump(context),
                _dump(completed_steps),
                utcnow(),
                execution_id,
            )
        if status.endswith(" 0"):
            raise PersistenceError(f"Execution {execution_id} does not exist")

    async def append_execution_log(self, execution_id: str, entry: ExecutionLog) -> None:
        async with self._connection() as conn:
            await self._insert_log(conn, execution_id, entry)

    async def finalize_execution(
        self,
        execution_id: str,
        status: str,
        error: Optional[str] = None,
        *,
        failed_step: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        context: Optional[dict[str, Any]] = None,
        completed_steps: Optional[list[str]] = None,
        execution_time: Optional[int] = None,
    ) -> None:
        completed_at = completed_at or utcnow()
        async with self._connection() as conn:
            async with conn.transaction():
                flow_id = await conn.fetchval(
                    """
                    UPDATE flow_executions
                    SET status = $1, error = $2, failed_step = $3, completed_at = $4,
                        execution_time = $5, updated_at = $4,
                        context = COALESCE($6::jsonb, context),
                        output_data = $7::jsonb,
                        completed_steps = COALESCE($8::jsonb, completed_steps)
                    WHERE id = $9
                    RETURNING flow_id
                    """,
                    status,
                    error,
                    failed_step,
                    completed_at,
                    execution_time,
                    _dump(context),
                    _dump(context) if status == "completed" else None,
                    _dump(completed_steps),
                    execution_id,
                )
                if flow_id is None:
                    raise PersistenceError(f"Execution {execution_id} does not exist")
                await conn.execute(
                    """
                    UPDATE automated_flows
                    SET total_executions = total_executions + 1,
                        successful_executions = successful_executions + $1,
                        failed_executions = failed_executions + $2,
                        last_executed_at = $3, last_execution_status = $4, updated_at = $3
                    WHERE id = $5
                    """,
                    1 if status == "completed" else 0,
                    1 if status == "failed" else 0,
                    completed_at,
                    status,
                    flow_id,
                )

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> ExecutionRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions "
                "WHERE id = $1 AND tenant_id = $2",
                execution_id,
                tenant_id,
            )
            if not row:
                return None
            logs = await conn.fetch(
                "SELECT timestamp, level, message, data FROM flow_execution_logs "
                "WHERE execution_id = $1 ORDER BY id",
                execution_id,
            )
        return self._execution_from_row(row, logs)

    async def list_executions(
        self, tenant_id: str, flow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions "
                "WHERE tenant_id = $1 AND ($2::text IS NULL OR flow_id = $2) "
                "ORDER BY started_at",
                tenant_id,
                flow_id,
            )
        return [self._execution_from_row(r, []) for r in rows]
