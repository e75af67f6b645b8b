"""SQLite implementation of the flow and execution stores."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

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


def _load(raw: str | None) -> Any:
    return json.loads(raw) if raw else None


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SQLiteFlowRepository(FlowRepository):
    """Persist flows and executions using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS flows (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    company_id TEXT,
                    name TEXT NOT NULL,
                    description TEXT,
                    flow_type TEXT NOT NULL,
                    trigger_type TEXT,
                    trigger_config TEXT,
                    steps TEXT NOT NULL,
                    conditions TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    status TEXT NOT NULL DEFAULT 'active',
                    metadata TEXT,
                    tags TEXT,
                    total_executions INTEGER NOT NULL DEFAULT 0,
                    successful_executions INTEGER NOT NULL DEFAULT 0,
                    failed_executions INTEGER NOT NULL DEFAULT 0,
                    last_executed_at TEXT,
                    last_execution_status TEXT,
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS ix_flows_tenant ON flows (tenant_id);

                CREATE TABLE IF NOT EXISTS executions (
                    id TEXT PRIMARY KEY,
                    flow_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    trigger_type TEXT,
                    triggered_by TEXT,
                    input_data TEXT,
                    output_data TEXT,
                    context TEXT,
                    current_step TEXT,
                    completed_steps TEXT,
                    failed_step TEXT,
                    execution_time INTEGER,
                    error TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    updated_at TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS ix_executions_tenant_flow
                    ON executions (tenant_id, flow_id);

                CREATE TABLE IF NOT EXISTS execution_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    data TEXT
                );
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(query, params)
                return cur.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite write failed: {e}") from e

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite read failed: {e}") from e

    def _finalize(
        self,
        execution_id: str,
        status: str,
        error: Optional[str],
        failed_step: Optional[str],
        completed_at: datetime,
        context: Optional[dict[str, Any]],
        completed_steps: Optional[list[str]],
        execution_time: Optional[int],
    ) -> None:
        # Execution row and flow counters change in one transaction.
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    """
                    UPDATE executions
                    SET status = ?, error = ?, failed_step = ?, completed_at = ?,
                        execution_time = ?, updated_at = ?,
                        context = COALESCE(?, context),
                        output_data = ?,
                        completed_steps = COALESCE(?, completed_steps)
                    WHERE id = ?
                    """,
                    (
                        status,
                        error,
                        failed_step,
                        _ts(completed_at),
                        execution_time,
                        _ts(completed_at),
                        _dump(context),
                        _dump(context) if status == "completed" else None,
                        _dump(completed_steps),
                        execution_id,
                    ),
                )
                if cur.rowcount == 0:
                    raise PersistenceError(f"Execution {execution_id} does not exist")
                self._conn.execute(
                    """
                    UPDATE flows
                    SET total_executions = total_executions + 1,
                        successful_executions = successful_executions + ?,
                        failed_executions = failed_executions + ?,
                        last_executed_at = ?, last_execution_status = ?, updated_at = ?
                    WHERE id = (SELECT flow_id FROM executions WHERE id = ?)
                    """,
                    (
                        1 if status == "completed" else 0,
                        1 if status == "failed" else 0,
                        _ts(completed_at),
                        status,
                        _ts(completed_at),
                        execution_id,
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite write failed: {e}") from e

    @staticmethod
    def _flow_from_row(row: sqlite3.Row) -> FlowDefinition:
        return FlowDefinition(
            id=row["id"],
            tenant_id=row["tenant_id"],
            company_id=row["company_id"],
            name=row["name"],
            description=row["description"] or "",
            flow_type=row["flow_type"],
            trigger_type=row["trigger_type"],
            trigger_config=_load(row["trigger_config"]),
            steps=_load(row["steps"]) or [],
            conditions=_load(row["conditions"]),
            is_active=bool(row["is_active"]),
            status=row["status"],
            metadata=_load(row["metadata"]) or {},
            tags=_load(row["tags"]) or [],
            total_executions=row["total_executions"],
            successful_executions=row["successful_executions"],
            failed_executions=row["failed_executions"],
            last_executed_at=row["last_executed_at"],
            last_execution_status=row["last_execution_status"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _execution_from_row(
        row: sqlite3.Row, logs: list[sqlite3.Row]
    ) -> ExecutionRecord:
        return ExecutionRecord(
            id=row["id"],
            flow_id=row["flow_id"],
            tenant_id=row["tenant_id"],
            status=row["status"],
            trigger_type=row["trigger_type"],
            triggered_by=row["triggered_by"],
            input_data=_load(row["input_data"]) or {},
            output_data=_load(row["output_data"]),
            context=_load(row["context"]) or {},
            current_step_id=row["current_step"] or "",
            completed_steps=_load(row["completed_steps"]) or [],
            failed_step=row["failed_step"],
            execution_time=row["execution_time"],
            error=row["error"],
            logs=[
                ExecutionLog(
                    timestamp=r["timestamp"],
                    level=r["level"],
                    message=r["message"],
                    data=_load(r["data"]),
                )
                for r in logs
            ],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"] or row["started_at"],
            created_at=row["created_at"],
        )

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
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO flows ({_FLOW_COLUMNS}) VALUES "
            "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
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
            int(flow.is_active),
            flow.status,
            _dump(flow.metadata),
            _dump(flow.tags),
            flow.total_executions,
            flow.successful_executions,
            flow.failed_executions,
            _ts(flow.last_executed_at),
            flow.last_execution_status,
            flow.created_by,
            _ts(flow.created_at),
            _ts(flow.updated_at),
        )
        return flow.id

    async def get_flow(self, flow_id: str, tenant_id: str) -> FlowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_FLOW_COLUMNS} FROM flows WHERE id = ? AND tenant_id = ?",
            flow_id,
            tenant_id,
        )
        if not row:
            return None
        return self._flow_from_row(row)

    async def list_flows(self, tenant_id: str) -> list[FlowDefinition]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_FLOW_COLUMNS} FROM flows WHERE tenant_id = ? ORDER BY created_at",
            tenant_id,
        )
        return [self._flow_from_row(r) for r in rows]

    async def update_flow_status(
        self, flow_id: str, tenant_id: str, status: str
    ) -> FlowDefinition | None:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE flows SET status = ?, is_active = ?, updated_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            status,
            int(status == "active"),
            _ts(utcnow()),
            flow_id,
            tenant_id,
        )
        if not updated:
            return None
        return await self.get_flow(flow_id, tenant_id)

    # ------------------------------------------------------------------
    # Execution store
    async def create_execution_record(self, execution: ExecutionRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO executions ({_EXECUTION_COLUMNS}) VALUES "
            "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
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
            _ts(execution.started_at),
            _ts(execution.completed_at),
            _ts(execution.updated_at),
            _ts(execution.created_at),
        )
        for entry in execution.logs:
            await self.append_execution_log(execution.id, entry)

    async def update_execution_transition(
        self,
        execution_id: str,
        current_step_id: str,
        context: dict[str, Any],
        completed_steps: list[str] | None = None,
    ) -> None:
        if completed_steps is None:
            query = (
                "UPDATE executions SET current_step = ?, context = ?, updated_at = ? "
                "WHERE id = ?"
            )
            params: tuple[Any, ...] = (
                current_step_id,
                _dump(context),
                _ts(utcnow()),
                execution_id,
            )
        else:
            query = (
                "UPDATE executions SET current_step = ?, context = ?, "
                "completed_steps = ?, updated_at = ? WHERE id = ?"
            )
            params = (
                current_step_id,
                _dump(context),
                _dump(completed_steps),
                _ts(utcnow()),
                execution_id,
            )
        updated = await asyncio.to_thread(self._execute, query, *params)
        if not updated:
            raise PersistenceError(f"Execution {execution_id} does not exist")

    async def append_execution_log(self, execution_id: str, entry: ExecutionLog) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO execution_logs (execution_id, timestamp, level, message, data) "
            "VALUES (?, ?, ?, ?, ?)",
            execution_id,
            _ts(entry.timestamp),
            entry.level,
            entry.message,
            _dump(entry.data),
        )

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
        await asyncio.to_thread(
            self._finalize,
            execution_id,
            status,
            error,
            failed_step,
            completed_at or utcnow(),
            context,
            completed_steps,
            execution_time,
        )

    async def get_execution(
        self, execution_id: str, tenant_id: str
    ) -> ExecutionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ? AND tenant_id = ?",
            execution_id,
            tenant_id,
        )
        if not row:
            return None
        logs = await asyncio.to_thread(
            self._fetchall,
            "SELECT timestamp, level, message, data FROM execution_logs "
            "WHERE execution_id = ? ORDER BY id",
            execution_id,
        )
        return self._execution_from_row(row, logs)

    async def list_executions(
        self, tenant_id: str, flow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        if flow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE tenant_id = ? "
                "ORDER BY started_at",
                tenant_id,
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_EXECUTION_COLUMNS} FROM executions "
                "WHERE tenant_id = ? AND flow_id = ? ORDER BY started_at",
                tenant_id,
                flow_id,
            )
        # Listings omit logs; use get_execution for the full record.
        return [self._execution_from_row(r, []) for r in rows]
