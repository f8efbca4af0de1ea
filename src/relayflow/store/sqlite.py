"""SQLite workflow store using stdlib ``sqlite3`` + ``asyncio.to_thread``.

Definitions and step results are stored as typed rows in their own tables
rather than as serialized blobs; only the free-form string metadata maps
are kept as JSON text. All blocking I/O runs in a worker thread and every
operation holds the store lock for its whole read-modify-write, so writes
to one workflow never interleave.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, TypeVar

import structlog

from relayflow.core.constants import StepStatus, StepType, WorkflowStatus
from relayflow.core.exceptions import StoreError, WorkflowNotFoundError
from relayflow.core.types import (
    StepDefinition,
    StepResult,
    Workflow,
    WorkflowDefinition,
    WorkflowStats,
    utcnow,
)
from relayflow.store.base import (
    ACTIVE_STATUSES,
    FAILED_STATUSES,
    FINISHED_STATUSES,
    WorkflowStore,
    check_status_write,
    check_step_write,
    new_workflow_id,
)

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'created',
    current_step INTEGER NOT NULL DEFAULT 0,
    total_steps INTEGER NOT NULL,
    source_address TEXT NOT NULL,
    destination_address TEXT NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    claimed_by TEXT
);

CREATE TABLE IF NOT EXISTS workflow_steps (
    workflow_id TEXT NOT NULL REFERENCES workflows(id),
    step_index INTEGER NOT NULL,
    type TEXT NOT NULL,
    network TEXT NOT NULL,
    destination_network TEXT,
    token TEXT NOT NULL,
    destination_token TEXT,
    amount TEXT NOT NULL,
    to_address TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (workflow_id, step_index)
);

CREATE TABLE IF NOT EXISTS step_results (
    workflow_id TEXT NOT NULL REFERENCES workflows(id),
    step_index INTEGER NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    network TEXT NOT NULL,
    tx_ref TEXT,
    amount TEXT NOT NULL,
    token TEXT NOT NULL,
    fee TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    started_at TEXT,
    completed_at TEXT,
    PRIMARY KEY (workflow_id, step_index)
);

CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows(status);
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _opt_decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


class SQLiteWorkflowStore(WorkflowStore):
    """Workflow store backed by a SQLite database.

    Args:
        database: Path to the SQLite database file, or ``":memory:"``.

    Usage::

        store = SQLiteWorkflowStore("workflow.db")
        await store.connect()
        ...
        await store.close()
    """

    def __init__(self, database: str = ":memory:") -> None:
        self._database = database
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"SQLiteWorkflowStore(database={self._database!r})"

    async def __aenter__(self) -> SQLiteWorkflowStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection and create the schema in a worker thread."""

        def _connect() -> sqlite3.Connection:
            conn = sqlite3.connect(self._database, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self._database != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
            conn.commit()
            return conn

        self._conn = await asyncio.to_thread(_connect)
        logger.info("sqlite.connected", database=self._database)

    async def close(self) -> None:
        """Close the connection in a worker thread."""
        if self._conn is not None:
            await asyncio.to_thread(self._conn.close)
            self._conn = None
            logger.info("sqlite.closed", database=self._database)

    async def _run(self, fn: Callable[[sqlite3.Connection], _T]) -> _T:
        if self._conn is None:
            raise StoreError("Not connected", code="NOT_CONNECTED")
        conn = self._conn  # capture for closure

        def _tx() -> _T:
            try:
                result = fn(conn)
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
            return result

        async with self._lock:
            return await asyncio.to_thread(_tx)

    # -- WorkflowStore ------------------------------------------------------

    async def create_workflow(self, definition: WorkflowDefinition) -> Workflow:
        workflow_id = new_workflow_id()
        now = _ts(utcnow())

        def _insert(conn: sqlite3.Connection) -> Workflow:
            conn.execute(
                """
                INSERT INTO workflows (id, name, description, status, current_step,
                    total_steps, source_address, destination_address, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (
                    workflow_id,
                    definition.name,
                    definition.description,
                    WorkflowStatus.CREATED.value,
                    len(definition.steps),
                    definition.source_address,
                    definition.destination_address,
                    now,
                    now,
                ),
            )
            conn.executemany(
                """
                INSERT INTO workflow_steps (workflow_id, step_index, type, network,
                    destination_network, token, destination_token, amount, to_address, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        workflow_id,
                        index,
                        step.type.value,
                        step.network,
                        step.destination_network,
                        step.token,
                        step.destination_token,
                        str(step.amount),
                        step.to_address,
                        json.dumps(step.metadata, sort_keys=True),
                    )
                    for index, step in enumerate(definition.steps)
                ],
            )
            return self._load(conn, workflow_id)  # type: ignore[return-value]

        return await self._run(_insert)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return await self._run(lambda conn: self._load(conn, workflow_id))

    async def update_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        error: str | None = None,
        *,
        expected: WorkflowStatus | None = None,
    ) -> Workflow:
        now = _ts(utcnow())
        completed_at = now if status in FINISHED_STATUSES else None

        def _update(conn: sqlite3.Connection) -> Workflow:
            current = self._load(conn, workflow_id)
            if current is None:
                raise WorkflowNotFoundError(workflow_id)
            check_status_write(current, status, expected)
            conn.execute(
                """
                UPDATE workflows SET status = ?, error = ?, updated_at = ?,
                    completed_at = COALESCE(?, completed_at)
                WHERE id = ?
                """,
                (status.value, error, now, completed_at, workflow_id),
            )
            return self._load(conn, workflow_id)  # type: ignore[return-value]

        return await self._run(_update)

    async def update_step(
        self, workflow_id: str, current_step: int, step_results: Sequence[StepResult]
    ) -> Workflow:
        now = _ts(utcnow())
        results = list(step_results)

        def _update(conn: sqlite3.Connection) -> Workflow:
            current = self._load(conn, workflow_id)
            if current is None:
                raise WorkflowNotFoundError(workflow_id)
            check_step_write(current, current_step, results)
            conn.execute("DELETE FROM step_results WHERE workflow_id = ?", (workflow_id,))
            conn.executemany(
                """
                INSERT INTO step_results (workflow_id, step_index, type, status, network,
                    tx_ref, amount, token, fee, duration_ms, retry_count, error, metadata,
                    started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [self._result_row(workflow_id, r) for r in results],
            )
            conn.execute(
                "UPDATE workflows SET current_step = ?, updated_at = ? WHERE id = ?",
                (current_step, now, workflow_id),
            )
            return self._load(conn, workflow_id)  # type: ignore[return-value]

        return await self._run(_update)

    async def list_workflows(
        self, status: WorkflowStatus | None = None, limit: int = 50
    ) -> list[Workflow]:
        def _list(conn: sqlite3.Connection) -> list[Workflow]:
            query = "SELECT id FROM workflows"
            params: list[Any] = []
            if status is not None:
                query += " WHERE status = ?"
                params.append(status.value)
            query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
            params.append(limit)
            ids = [row["id"] for row in conn.execute(query, params).fetchall()]
            return [wf for wf in (self._load(conn, i) for i in ids) if wf is not None]

        return await self._run(_list)

    async def claim(self, workflow_id: str, owner: str) -> bool:
        def _claim(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                """
                UPDATE workflows SET claimed_by = ?
                WHERE id = ? AND (claimed_by IS NULL OR claimed_by = ?)
                """,
                (owner, workflow_id, owner),
            )
            if cursor.rowcount:
                return True
            if conn.execute("SELECT 1 FROM workflows WHERE id = ?", (workflow_id,)).fetchone():
                return False
            raise WorkflowNotFoundError(workflow_id)

        return await self._run(_claim)

    async def release(self, workflow_id: str, owner: str) -> None:
        await self._run(
            lambda conn: conn.execute(
                "UPDATE workflows SET claimed_by = NULL WHERE id = ? AND claimed_by = ?",
                (workflow_id, owner),
            )
        )

    async def clear_claims(self) -> int:
        """Drop every execution claim and return how many were held.

        Claims outlive a crashed process in a file database. Call this at
        startup when no other process is executing against the same file.
        """

        def _clear(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                "UPDATE workflows SET claimed_by = NULL WHERE claimed_by IS NOT NULL"
            )
            return cursor.rowcount

        cleared = await self._run(_clear)
        if cleared:
            logger.warning("sqlite.claims_cleared", database=self._database, count=cleared)
        return cleared

    async def stats(self) -> WorkflowStats:
        def _in(statuses: frozenset[WorkflowStatus]) -> str:
            return ", ".join(f"'{s.value}'" for s in sorted(statuses))

        def _stats(conn: sqlite3.Connection) -> WorkflowStats:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                    SUM(CASE WHEN status IN ({_in(FAILED_STATUSES)}) THEN 1 ELSE 0 END) AS failed,
                    SUM(CASE WHEN status IN ({_in(ACTIVE_STATUSES)}) THEN 1 ELSE 0 END) AS active,
                    AVG(CASE WHEN completed_at IS NOT NULL THEN
                        (julianday(completed_at) - julianday(created_at)) * 86400000
                    END) AS avg_ms
                FROM workflows
                """  # noqa: S608
            ).fetchone()
            return WorkflowStats(
                total=row["total"] or 0,
                completed=row["completed"] or 0,
                failed=row["failed"] or 0,
                active=row["active"] or 0,
                avg_duration_ms=round(row["avg_ms"] or 0),
            )

        return await self._run(_stats)

    # -- record mapping -----------------------------------------------------

    @staticmethod
    def _result_row(workflow_id: str, result: StepResult) -> tuple[Any, ...]:
        return (
            workflow_id,
            result.step_index,
            result.type.value,
            result.status.value,
            result.network,
            result.tx_ref,
            str(result.amount),
            result.token,
            str(result.fee) if result.fee is not None else None,
            result.duration_ms,
            result.retry_count,
            result.error,
            json.dumps(result.metadata, sort_keys=True),
            _ts(result.started_at),
            _ts(result.completed_at),
        )

    @staticmethod
    def _load(conn: sqlite3.Connection, workflow_id: str) -> Workflow | None:
        row = conn.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,)).fetchone()
        if row is None:
            return None

        steps = [
            StepDefinition(
                type=StepType(s["type"]),
                network=s["network"],
                destination_network=s["destination_network"],
                token=s["token"],
                destination_token=s["destination_token"],
                amount=Decimal(s["amount"]),
                to_address=s["to_address"],
                metadata=json.loads(s["metadata"]),
            )
            for s in conn.execute(
                "SELECT * FROM workflow_steps WHERE workflow_id = ? ORDER BY step_index",
                (workflow_id,),
            )
        ]
        results = [
            StepResult(
                step_index=r["step_index"],
                type=StepType(r["type"]),
                status=StepStatus(r["status"]),
                network=r["network"],
                tx_ref=r["tx_ref"],
                amount=Decimal(r["amount"]),
                token=r["token"],
                fee=_opt_decimal(r["fee"]),
                duration_ms=r["duration_ms"],
                retry_count=r["retry_count"],
                error=r["error"],
                metadata=json.loads(r["metadata"]),
                started_at=_parse_ts(r["started_at"]),
                completed_at=_parse_ts(r["completed_at"]),
            )
            for r in conn.execute(
                "SELECT * FROM step_results WHERE workflow_id = ? ORDER BY step_index",
                (workflow_id,),
            )
        ]
        definition = WorkflowDefinition(
            name=row["name"],
            description=row["description"],
            steps=steps,
            source_address=row["source_address"],
            destination_address=row["destination_address"],
        )
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            status=WorkflowStatus(row["status"]),
            current_step=row["current_step"],
            total_steps=row["total_steps"],
            definition=definition,
            step_results=results,
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            error=row["error"],
        )
