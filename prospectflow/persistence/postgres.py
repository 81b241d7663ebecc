"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import asyncpg

from ..models import ErrorContext, WorkflowProgress, WorkflowSession, WorkflowState
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist orchestration state using PostgreSQL JSONB documents."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_sessions (
                id TEXT PRIMARY KEY,
                user_session_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_progress (
                session_id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                session_id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_errors (
                id SERIAL PRIMARY KEY,
                session_id TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save_session(self, session: WorkflowSession) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_sessions (id, user_session_id, status, created_at, updated_at, data)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    user_session_id = EXCLUDED.user_session_id,
                    status = EXCLUDED.status,
                    updated_at = EXCLUDED.updated_at,
                    data = EXCLUDED.data
                """,
                session.id,
                session.user_session_id,
                session.status.value,
                session.created_at,
                session.updated_at,
                session.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_session(self, session_id: str) -> WorkflowSession | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_sessions WHERE id = $1", session_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowSession.model_validate_json(row["data"])

    async def delete_session(self, session_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_sessions WHERE id = $1", session_id
            )
        finally:
            await conn.close()
        return result != "DELETE 0"

    async def list_sessions(self) -> list[WorkflowSession]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM workflow_sessions ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [WorkflowSession.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_progress(self, session_id: str, progress: WorkflowProgress) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_progress (session_id, data) VALUES ($1, $2::jsonb)
                ON CONFLICT (session_id) DO UPDATE SET data = EXCLUDED.data
                """,
                session_id,
                progress.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_progress(self, session_id: str) -> WorkflowProgress | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_progress WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowProgress.model_validate_json(row["data"])

    async def delete_progress(self, session_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_progress WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
        return result != "DELETE 0"

    async def list_progress_ids(self) -> list[str]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT session_id FROM workflow_progress")
        finally:
            await conn.close()
        return [r["session_id"] for r in rows]

    # ------------------------------------------------------------------
    async def save_state(self, session_id: str, state: WorkflowState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_states (session_id, data) VALUES ($1, $2::jsonb)
                ON CONFLICT (session_id) DO UPDATE SET data = EXCLUDED.data
                """,
                session_id,
                state.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_state(self, session_id: str) -> WorkflowState | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_states WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowState.model_validate_json(row["data"])

    async def delete_state(self, session_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_states WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
        return result != "DELETE 0"

    async def list_states(self) -> list[tuple[str, WorkflowState]]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT session_id, data FROM workflow_states")
        finally:
            await conn.close()
        return [
            (r["session_id"], WorkflowState.model_validate_json(r["data"])) for r in rows
        ]

    # ------------------------------------------------------------------
    async def append_error(self, context: ErrorContext) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workflow_errors (session_id, data) VALUES ($1, $2::jsonb)",
                context.session_id,
                context.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_errors(self, session_id: str) -> list[ErrorContext]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM workflow_errors WHERE session_id = $1 ORDER BY id",
                session_id,
            )
        finally:
            await conn.close()
        return [ErrorContext.model_validate_json(r["data"]) for r in rows]

    async def list_errors(self) -> list[ErrorContext]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT data FROM workflow_errors ORDER BY id")
        finally:
            await conn.close()
        return [ErrorContext.model_validate_json(r["data"]) for r in rows]

    async def clear_errors(self, session_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM workflow_errors WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
