"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..models import ErrorContext, WorkflowProgress, WorkflowSession, WorkflowState
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist orchestration state using SQLite.

    Each record is stored as a JSON document; a few session columns are
    duplicated out of the document so they can be indexed.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_sessions (
                id TEXT PRIMARY KEY,
                user_session_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_progress (
                session_id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                session_id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_errors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_user ON workflow_sessions (user_session_id, status)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_errors_session ON workflow_errors (session_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    # ------------------------------------------------------------------
    # Sessions
    async def save_session(self, session: WorkflowSession) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_sessions (id, user_session_id, status, created_at, updated_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_session_id = excluded.user_session_id,
                status = excluded.status,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            session.id,
            session.user_session_id,
            session.status.value,
            session.created_at.isoformat(),
            session.updated_at.isoformat(),
            session.model_dump_json(),
        )

    async def get_session(self, session_id: str) -> WorkflowSession | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_sessions WHERE id = ?",
            session_id,
        )
        if not row:
            return None
        return WorkflowSession.model_validate_json(row["data"])

    async def delete_session(self, session_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM workflow_sessions WHERE id = ?", session_id
        )
        return deleted > 0

    async def list_sessions(self) -> list[WorkflowSession]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflow_sessions ORDER BY created_at"
        )
        return [WorkflowSession.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Progress
    async def save_progress(self, session_id: str, progress: WorkflowProgress) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_progress (session_id, data) VALUES (?, ?)",
            session_id,
            progress.model_dump_json(),
        )

    async def get_progress(self, session_id: str) -> WorkflowProgress | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_progress WHERE session_id = ?",
            session_id,
        )
        if not row:
            return None
        return WorkflowProgress.model_validate_json(row["data"])

    async def delete_progress(self, session_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_progress WHERE session_id = ?",
            session_id,
        )
        return deleted > 0

    async def list_progress_ids(self) -> list[str]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT session_id FROM workflow_progress"
        )
        return [r["session_id"] for r in rows]

    # ------------------------------------------------------------------
    # States
    async def save_state(self, session_id: str, state: WorkflowState) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_states (session_id, data) VALUES (?, ?)",
            session_id,
            state.model_dump_json(),
        )

    async def get_state(self, session_id: str) -> WorkflowState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_states WHERE session_id = ?",
            session_id,
        )
        if not row:
            return None
        return WorkflowState.model_validate_json(row["data"])

    async def delete_state(self, session_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_states WHERE session_id = ?",
            session_id,
        )
        return deleted > 0

    async def list_states(self) -> list[tuple[str, WorkflowState]]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT session_id, data FROM workflow_states"
        )
        return [
            (r["session_id"], WorkflowState.model_validate_json(r["data"])) for r in rows
        ]

    # ------------------------------------------------------------------
    # Error ledger
    async def append_error(self, context: ErrorContext) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflow_errors (session_id, data) VALUES (?, ?)",
            context.session_id,
            context.model_dump_json(),
        )

    async def get_errors(self, session_id: str) -> list[ErrorContext]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_errors WHERE session_id = ? ORDER BY id",
            session_id,
        )
        return [ErrorContext.model_validate_json(r["data"]) for r in rows]

    async def list_errors(self) -> list[ErrorContext]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflow_errors ORDER BY id"
        )
        return [ErrorContext.model_validate_json(r["data"]) for r in rows]

    async def clear_errors(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_errors WHERE session_id = ?",
            session_id,
        )
