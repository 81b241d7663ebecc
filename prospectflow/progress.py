"""Progress tracker: per-step status table and the derived aggregate."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Optional

from .events import EventDispatcher, EventListener
from .exceptions import ProgressNotFoundError
from .locks import SessionLocks
from .models import (
    NON_TERMINAL_STEPS,
    StepStatus,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowProgress,
    WorkflowStep,
    ProgressSummary,
    utcnow,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

_FINISHED = (StepStatus.COMPLETED, StepStatus.SKIPPED)


def calculate_overall_progress(progress: WorkflowProgress) -> int:
    """Mean over the five non-terminal steps, rounded half up.

    Completed and skipped steps count as 100; every other step contributes its
    stored percentage, so a failed step keeps the credit it had when it failed.
    The terminal ``COMPLETED`` step is excluded from the denominator.
    """
    total = 0.0
    for step in NON_TERMINAL_STEPS:
        entry = progress.steps.get(step)
        if entry is None:
            continue
        total += 100 if entry.status in _FINISHED else entry.progress
    return int(math.floor(total / len(NON_TERMINAL_STEPS) + 0.5))


class ProgressTracker:
    """Owns ``WorkflowProgress`` records and emits workflow events.

    Every mutation loads the record, applies the change, re-derives
    ``overall_progress`` and stores it while holding the session lock. Events
    go out after the lock is released.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        locks: SessionLocks | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self._repository = repository
        self._locks = locks or SessionLocks()
        self._dispatcher = dispatcher or EventDispatcher()

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    async def initialize_progress(self, session_id: str) -> WorkflowProgress:
        progress = WorkflowProgress.initial()
        async with self._locks.hold(session_id):
            await self._repository.save_progress(session_id, progress)
        logger.info(f"Initialized progress tracking for session {session_id}")
        await self.emit_event(
            WorkflowEvent(
                type=WorkflowEventType.SESSION_CREATED,
                session_id=session_id,
                data=progress.model_dump(mode="json"),
                timestamp=progress.started_at,
            )
        )
        return progress

    async def get_progress(self, session_id: str) -> WorkflowProgress:
        progress = await self._repository.get_progress(session_id)
        if progress is None:
            raise ProgressNotFoundError(session_id)
        return progress

    async def start_step(self, session_id: str, step: WorkflowStep) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            entry = progress.steps[step]
            entry.status = StepStatus.IN_PROGRESS
            entry.started_at = progress.last_updated
            entry.message = f"Starting {step.label}"
            progress.current_step = step
            return entry.model_dump(mode="json")

        progress, data = await self._mutate(session_id, apply)
        logger.info(f"Session {session_id}: started step {step.value}")
        await self._emit(WorkflowEventType.STEP_STARTED, session_id, step, data)
        return progress

    async def update_step_progress(
        self,
        session_id: str,
        step: WorkflowStep,
        percent: float,
        message: Optional[str] = None,
    ) -> WorkflowProgress:
        clamped = max(0, min(100, percent))

        def apply(progress: WorkflowProgress) -> Any:
            entry = progress.steps[step]
            entry.progress = clamped
            entry.message = message
            entry.metadata = {
                **entry.metadata,
                "last_progress_update": progress.last_updated.isoformat(),
            }
            return None

        progress, _ = await self._mutate(session_id, apply)
        logger.debug(
            f"Session {session_id}: {step.value} at {clamped}% (overall {progress.overall_progress}%)"
        )
        await self._emit(
            WorkflowEventType.PROGRESS_UPDATED,
            session_id,
            step,
            {
                "progress": clamped,
                "message": message,
                "overall_progress": progress.overall_progress,
            },
        )
        return progress

    async def complete_step(
        self, session_id: str, step: WorkflowStep, message: Optional[str] = None
    ) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            entry = progress.steps[step]
            entry.status = StepStatus.COMPLETED
            entry.progress = 100
            entry.completed_at = progress.last_updated
            entry.message = message or f"{step.label} completed"
            return entry.model_dump(mode="json")

        progress, data = await self._mutate(session_id, apply)
        logger.info(f"Session {session_id}: completed step {step.value}")
        await self._emit(WorkflowEventType.STEP_COMPLETED, session_id, step, data)
        return progress

    async def fail_step(
        self, session_id: str, step: WorkflowStep, error_message: str
    ) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            entry = progress.steps[step]
            entry.status = StepStatus.FAILED
            entry.errors.append(error_message)
            entry.message = f"Failed: {error_message}"
            entry.metadata = {
                **entry.metadata,
                "failed_at": progress.last_updated.isoformat(),
            }
            return {"error": error_message, "step_progress": entry.model_dump(mode="json")}

        progress, data = await self._mutate(session_id, apply)
        logger.warning(f"Session {session_id}: step {step.value} failed: {error_message}")
        await self._emit(WorkflowEventType.STEP_FAILED, session_id, step, data)
        return progress

    async def skip_step(
        self, session_id: str, step: WorkflowStep, reason: Optional[str] = None
    ) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            entry = progress.steps[step]
            entry.status = StepStatus.SKIPPED
            entry.progress = 100
            entry.completed_at = progress.last_updated
            entry.message = reason or f"{step.label} skipped"
            return entry.model_dump(mode="json")

        progress, data = await self._mutate(session_id, apply)
        logger.info(f"Session {session_id}: skipped step {step.value}")
        await self._emit(WorkflowEventType.STEP_COMPLETED, session_id, step, data)
        return progress

    async def set_current_step(
        self, session_id: str, step: WorkflowStep
    ) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            progress.current_step = step
            return None

        progress, _ = await self._mutate(session_id, apply)
        return progress

    async def update_time_estimate(
        self, session_id: str, estimated_minutes: float
    ) -> WorkflowProgress:
        def apply(progress: WorkflowProgress) -> Any:
            progress.estimated_time_remaining = estimated_minutes
            return None

        progress, _ = await self._mutate(session_id, apply)
        return progress

    async def get_progress_summary(self, session_id: str) -> ProgressSummary:
        progress = await self.get_progress(session_id)
        entries = list(progress.steps.values())
        return ProgressSummary(
            current_step=progress.current_step,
            overall_progress=progress.overall_progress,
            completed_steps=sum(1 for e in entries if e.status in _FINISHED),
            total_steps=len(NON_TERMINAL_STEPS),
            has_errors=any(e.errors for e in entries),
            is_completed=progress.current_step == WorkflowStep.COMPLETED,
        )

    async def clear_progress(self, session_id: str) -> None:
        async with self._locks.hold(session_id):
            await self._repository.delete_progress(session_id)
        self._dispatcher.clear(session_id)

    async def list_sessions(self) -> list[str]:
        return await self._repository.list_progress_ids()

    # ------------------------------------------------------------------
    # Events
    def add_event_listener(self, session_id: str, listener: EventListener) -> None:
        self._dispatcher.add_listener(session_id, listener)

    def remove_event_listener(self, session_id: str, listener: EventListener) -> bool:
        return self._dispatcher.remove_listener(session_id, listener)

    async def emit_event(self, event: WorkflowEvent) -> None:
        await self._dispatcher.emit(event)

    async def _emit(
        self,
        event_type: WorkflowEventType,
        session_id: str,
        step: WorkflowStep,
        data: Any,
    ) -> None:
        await self.emit_event(
            WorkflowEvent(type=event_type, session_id=session_id, step=step, data=data)
        )

    # ------------------------------------------------------------------
    async def _mutate(
        self, session_id: str, apply: Callable[[WorkflowProgress], Any]
    ) -> tuple[WorkflowProgress, Any]:
        async with self._locks.hold(session_id):
            progress = await self.get_progress(session_id)
            progress.last_updated = utcnow()
            data = apply(progress)
            progress.overall_progress = calculate_overall_progress(progress)
            await self._repository.save_progress(session_id, progress)
        return progress, data
