"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List

from ..models import ErrorContext, WorkflowProgress, WorkflowSession, WorkflowState
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store orchestration state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are deep-copied on the way in
    and out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, WorkflowSession] = {}
        self._progress: Dict[str, WorkflowProgress] = {}
        self._states: Dict[str, WorkflowState] = {}
        self._errors: Dict[str, List[ErrorContext]] = defaultdict(list)

    # ------------------------------------------------------------------
    async def save_session(self, session: WorkflowSession) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> WorkflowSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_sessions(self) -> list[WorkflowSession]:
        return [s.model_copy(deep=True) for s in self._sessions.values()]

    # ------------------------------------------------------------------
    async def save_progress(self, session_id: str, progress: WorkflowProgress) -> None:
        self._progress[session_id] = progress.model_copy(deep=True)

    async def get_progress(self, session_id: str) -> WorkflowProgress | None:
        progress = self._progress.get(session_id)
        return progress.model_copy(deep=True) if progress else None

    async def delete_progress(self, session_id: str) -> bool:
        return self._progress.pop(session_id, None) is not None

    async def list_progress_ids(self) -> list[str]:
        return list(self._progress.keys())

    # ------------------------------------------------------------------
    async def save_state(self, session_id: str, state: WorkflowState) -> None:
        self._states[session_id] = state.model_copy(deep=True)

    async def get_state(self, session_id: str) -> WorkflowState | None:
        state = self._states.get(session_id)
        return state.model_copy(deep=True) if state else None

    async def delete_state(self, session_id: str) -> bool:
        return self._states.pop(session_id, None) is not None

    async def list_states(self) -> list[tuple[str, WorkflowState]]:
        return [(sid, s.model_copy(deep=True)) for sid, s in self._states.items()]

    # ------------------------------------------------------------------
    async def append_error(self, context: ErrorContext) -> None:
        self._errors[context.session_id].append(context.model_copy(deep=True))

    async def get_errors(self, session_id: str) -> list[ErrorContext]:
        return [e.model_copy(deep=True) for e in self._errors.get(session_id, [])]

    async def list_errors(self) -> list[ErrorContext]:
        return [e.model_copy(deep=True) for errs in self._errors.values() for e in errs]

    async def clear_errors(self, session_id: str) -> None:
        self._errors.pop(session_id, None)
