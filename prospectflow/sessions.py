"""Session store: workflow session CRUD and step advancement bookkeeping."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional

from .constants import DEFAULT_SEARCH_LIMIT
from .exceptions import InvalidTransitionError, SessionNotFoundError, ValidationError
from .locks import SessionLocks
from .models import (
    PIPELINE_STEPS,
    ActivityCount,
    SessionFilter,
    SessionPage,
    SessionStatistics,
    WorkflowSession,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "current_step",
    "status",
    "configuration_data",
    "steps_completed",
    "error_message",
    "campaign_id",
}


def _check_completion(session: WorkflowSession) -> None:
    """A session is COMPLETED exactly when it sits on the COMPLETED step."""
    at_end = session.current_step == WorkflowStep.COMPLETED
    if at_end != (session.status == WorkflowStatus.COMPLETED):
        raise InvalidTransitionError(
            f"Session {session.id} cannot be {session.status.value} "
            f"at step {session.current_step.value}"
        )


class SessionStore:
    """Owns ``WorkflowSession`` records.

    Sessions are only changed through the explicit transition methods below.
    Each mutation is a locked read-modify-write against the repository and
    always bumps ``updated_at``.
    """

    def __init__(
        self, repository: WorkflowRepository, locks: SessionLocks | None = None
    ) -> None:
        self._repository = repository
        self._locks = locks or SessionLocks()

    async def create_session(
        self,
        user_session_id: str,
        campaign_id: Optional[int] = None,
        initial_step: Optional[WorkflowStep] = None,
        configuration: Optional[dict[str, Any]] = None,
    ) -> WorkflowSession:
        if not user_session_id:
            raise ValidationError("User session ID is required")

        step = initial_step or WorkflowStep.UPLOAD_CSV
        session = WorkflowSession(
            user_session_id=user_session_id,
            campaign_id=campaign_id,
            current_step=step,
            status=(
                WorkflowStatus.COMPLETED
                if step == WorkflowStep.COMPLETED
                else WorkflowStatus.ACTIVE
            ),
            configuration_data=dict(configuration or {}),
        )
        await self._repository.save_session(session)
        logger.info(
            f"Created workflow session {session.id} for user {user_session_id} at {step.value}"
        )
        return session

    async def get_session(self, session_id: str) -> WorkflowSession:
        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def update_session(self, session_id: str, **updates: Any) -> WorkflowSession:
        """Apply ``updates`` to the session and bump ``updated_at``."""
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update session fields: {sorted(unknown)}")

        def apply(session: WorkflowSession) -> None:
            for key, value in updates.items():
                setattr(session, key, value)
            _check_completion(session)

        return await self._mutate(session_id, apply)

    async def advance_to_next_step(
        self, session_id: str, next_step: WorkflowStep
    ) -> WorkflowSession:
        def apply(session: WorkflowSession) -> None:
            if session.current_step not in session.steps_completed:
                session.steps_completed.append(session.current_step)
            session.current_step = next_step
            session.status = (
                WorkflowStatus.COMPLETED
                if next_step == WorkflowStep.COMPLETED
                else WorkflowStatus.ACTIVE
            )

        session = await self._mutate(session_id, apply)
        logger.info(f"Session {session_id} advanced to {next_step.value}")
        return session

    async def pause_session(self, session_id: str) -> WorkflowSession:
        return await self.update_session(session_id, status=WorkflowStatus.PAUSED)

    async def resume_session(self, session_id: str) -> WorkflowSession:
        return await self.update_session(
            session_id, status=WorkflowStatus.ACTIVE, error_message=None
        )

    async def complete_session(self, session_id: str) -> WorkflowSession:
        return await self.update_session(
            session_id,
            current_step=WorkflowStep.COMPLETED,
            status=WorkflowStatus.COMPLETED,
        )

    async def abandon_session(
        self, session_id: str, reason: Optional[str] = None
    ) -> WorkflowSession:
        return await self.update_session(
            session_id, status=WorkflowStatus.ABANDONED, error_message=reason
        )

    async def error_session(self, session_id: str, error_message: str) -> WorkflowSession:
        logger.warning(f"Session {session_id} entered ERROR state: {error_message}")
        return await self.update_session(
            session_id, status=WorkflowStatus.ERROR, error_message=error_message
        )

    async def update_configuration(
        self, session_id: str, updates: dict[str, Any]
    ) -> WorkflowSession:
        def apply(session: WorkflowSession) -> None:
            session.configuration_data = {**session.configuration_data, **updates}

        return await self._mutate(session_id, apply)

    async def merge_section(
        self, session_id: str, section: str, values: dict[str, Any]
    ) -> WorkflowSession:
        def apply(session: WorkflowSession) -> None:
            current = session.configuration_data.get(section) or {}
            session.configuration_data = {
                **session.configuration_data,
                section: {**current, **values},
            }

        return await self._mutate(session_id, apply)

    async def delete_session(self, session_id: str) -> None:
        if not session_id:
            raise ValidationError("Session ID is required")
        async with self._locks.hold(session_id):
            if not await self._repository.delete_session(session_id):
                raise SessionNotFoundError(session_id)
        self._locks.discard(session_id)
        logger.info(f"Deleted workflow session {session_id}")

    async def find_active_session_by_user(self, user_session_id: str) -> WorkflowSession:
        active = [
            s
            for s in await self._repository.list_sessions()
            if s.user_session_id == user_session_id and s.status == WorkflowStatus.ACTIVE
        ]
        if not active:
            raise SessionNotFoundError(f"no active session for user {user_session_id}")
        return max(active, key=lambda s: s.created_at)

    async def search_sessions(
        self,
        filters: Optional[SessionFilter] = None,
        offset: int = 0,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> SessionPage:
        filters = filters or SessionFilter()
        matched = [s for s in await self._repository.list_sessions() if filters.matches(s)]
        matched.sort(key=lambda s: s.created_at, reverse=True)

        total = len(matched)
        items = matched[offset : offset + limit]
        return SessionPage(items=items, total=total, has_more=offset + len(items) < total)

    async def get_session_statistics(
        self, time_range: Optional[tuple[datetime, datetime]] = None
    ) -> SessionStatistics:
        sessions = await self._repository.list_sessions()
        if time_range:
            start, end = time_range
            sessions = [s for s in sessions if start <= s.created_at <= end]

        total = len(sessions)
        by_status = {status: 0 for status in WorkflowStatus}
        by_step = {step: 0 for step in PIPELINE_STEPS}
        for session in sessions:
            by_status[session.status] += 1
            by_step[session.current_step] += 1

        completed = [s for s in sessions if s.status == WorkflowStatus.COMPLETED]
        completion_rate = (len(completed) / total) * 100 if total else 0.0

        durations = [
            (s.updated_at - s.created_at).total_seconds() / 60 for s in completed
        ]
        average_duration = sum(durations) / len(durations) if durations else 0.0

        activity = Counter(s.created_at.date().isoformat() for s in sessions)
        recent_activity = [
            ActivityCount(date=day, count=count) for day, count in sorted(activity.items())
        ]

        return SessionStatistics(
            total=total,
            by_status=by_status,
            by_step=by_step,
            completion_rate=completion_rate,
            average_duration=average_duration,
            recent_activity=recent_activity,
        )

    # ------------------------------------------------------------------
    async def _mutate(
        self, session_id: str, apply: Callable[[WorkflowSession], None]
    ) -> WorkflowSession:
        async with self._locks.hold(session_id):
            session = await self.get_session(session_id)
            apply(session)
            session.updated_at = utcnow()
            await self._repository.save_session(session)
        return session
