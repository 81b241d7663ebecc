"""Repository abstraction for workflow orchestration state."""

from __future__ import annotations

from typing import Protocol

from ..models import ErrorContext, WorkflowProgress, WorkflowSession, WorkflowState


class WorkflowRepository(Protocol):
    """Protocol for persistence backends keyed by workflow session id.

    Sessions, progress records, state envelopes and the error ledger are kept
    in separate collections so each component owns exactly one of them.
    """

    async def save_session(self, session: WorkflowSession) -> None:
        """Insert or overwrite a session."""

    async def get_session(self, session_id: str) -> WorkflowSession | None:
        """Return the session or ``None``."""

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session. Returns ``True`` if a record was removed."""

    async def list_sessions(self) -> list[WorkflowSession]:
        """Return all sessions."""

    async def save_progress(self, session_id: str, progress: WorkflowProgress) -> None:
        """Insert or overwrite the progress record of a session."""

    async def get_progress(self, session_id: str) -> WorkflowProgress | None:
        """Return the progress record or ``None``."""

    async def delete_progress(self, session_id: str) -> bool:
        """Delete the progress record of a session."""

    async def list_progress_ids(self) -> list[str]:
        """Return ids of all sessions with a progress record."""

    async def save_state(self, session_id: str, state: WorkflowState) -> None:
        """Insert or overwrite the persisted state envelope."""

    async def get_state(self, session_id: str) -> WorkflowState | None:
        """Return the state envelope or ``None``."""

    async def delete_state(self, session_id: str) -> bool:
        """Delete the state envelope of a session."""

    async def list_states(self) -> list[tuple[str, WorkflowState]]:
        """Return ``(session_id, state)`` pairs for all stored states."""

    async def append_error(self, context: ErrorContext) -> None:
        """Append an error context to the session's ledger."""

    async def get_errors(self, session_id: str) -> list[ErrorContext]:
        """Return the session's ledger in insertion order."""

    async def list_errors(self) -> list[ErrorContext]:
        """Return every ledger entry across sessions."""

    async def clear_errors(self, session_id: str) -> None:
        """Drop the session's ledger."""
