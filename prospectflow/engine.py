"""Workflow engine: wires sessions, progress, state and errors into one flow."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from .config import ProspectflowConfig, load_config
from .error_handler import ErrorHandler
from .events import EventDispatcher
from .exceptions import InvalidTransitionError, ValidationError
from .locks import SessionLocks
from .models import (
    ErrorContext,
    ErrorResolution,
    RecoveryActionType,
    RecoveryResult,
    ValidationResult,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowSession,
    WorkflowStep,
)
from .persistence import WorkflowRepository, get_repository
from .progress import ProgressTracker
from .sessions import SessionStore
from .state import StateManager
from .transports import BaseTransport
from .validation import StepValidator

logger = logging.getLogger(__name__)


class StepFailure(BaseModel):
    """What the engine did with a failed step."""

    resolution: ErrorResolution
    recovery: Optional[RecoveryResult] = None
    skipped: bool = False


class WorkflowEngine:
    """Entry point for driving a session through the pipeline.

    Components share one repository and one per-session lock registry. The
    engine never holds a lock itself; each component call is its own locked
    read-modify-write.
    """

    def __init__(
        self,
        repository: Optional[WorkflowRepository] = None,
        config: Optional[ProspectflowConfig] = None,
        transport: Optional[BaseTransport] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.locks = SessionLocks()
        self.dispatcher = EventDispatcher(transport)
        self.sessions = SessionStore(self.repository, self.locks)
        self.progress = ProgressTracker(self.repository, self.locks, self.dispatcher)
        self.state = StateManager(self.repository, self.locks)
        self.errors = ErrorHandler(
            self.repository, self.config.retry, state_manager=self.state
        )
        self.validator = StepValidator()

    async def start_workflow(
        self,
        user_session_id: str,
        campaign_id: Optional[int] = None,
        configuration: Optional[dict[str, Any]] = None,
    ) -> WorkflowSession:
        session = await self.sessions.create_session(
            user_session_id, campaign_id=campaign_id, configuration=configuration
        )
        progress = await self.progress.initialize_progress(session.id)
        await self.state.save_state(session.id, session, progress, configuration)
        await self.state.create_checkpoint(session.id, session.current_step, "Workflow started")
        return session

    async def configure_step(
        self, session_id: str, step: WorkflowStep, values: dict[str, Any]
    ) -> ValidationResult:
        """Merge ``values`` into the step's configuration section and validate it."""
        section = self.validator.get_step_definition(step).config_section
        if section is None:
            raise ValidationError(f"Step {step.value} takes no configuration")

        state = await self.state.merge_section(session_id, section, values)
        await self.sessions.merge_section(session_id, section, values)

        result = self.validator.validate_step(step, state.configuration)
        await self.state.record_validation(session_id, step, result)
        return result

    async def begin_step(self, session_id: str, step: WorkflowStep) -> None:
        await self.progress.start_step(session_id, step)

    async def report_progress(
        self,
        session_id: str,
        step: WorkflowStep,
        percent: float,
        message: Optional[str] = None,
    ) -> int:
        progress = await self.progress.update_step_progress(session_id, step, percent, message)
        return progress.overall_progress

    async def complete_step(
        self,
        session_id: str,
        step: WorkflowStep,
        message: Optional[str] = None,
    ) -> WorkflowSession:
        """Validate ``step``'s requirements, mark it done and advance."""
        await self._require_current(session_id, step)
        state = await self.state.load_state(session_id)
        result = self.validator.validate_step(step, state.configuration)
        await self.state.record_validation(session_id, step, result)
        if not result.can_proceed:
            raise ValidationError(
                f"Step {step.value} is missing required fields: "
                f"{', '.join(result.missing_requirements)}"
            )
        await self.progress.complete_step(session_id, step, message)
        return await self._advance(session_id, step, f"Completed {step.label}")

    async def skip_step(
        self, session_id: str, step: WorkflowStep, reason: Optional[str] = None
    ) -> WorkflowSession:
        if not self.validator.can_skip(step):
            raise InvalidTransitionError(f"Step {step.value} cannot be skipped")
        await self._require_current(session_id, step)
        await self.progress.skip_step(session_id, step, reason)
        return await self._advance(session_id, step, f"Skipped {step.label}")

    async def fail_step(
        self,
        session_id: str,
        step: WorkflowStep,
        error: BaseException,
        operation: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> StepFailure:
        """Record a step failure and apply the suggested recovery.

        An automated retry re-runs ``operation``; if it succeeds the step is
        back in progress. When the retry is not possible or fails and the step
        may be skipped, the step is skipped.
        Otherwise the step stays failed for manual intervention; the session
        itself is not moved to ``ERROR``.
        """
        context = ErrorContext.from_exception(session_id, error, step=step)
        await self.progress.fail_step(session_id, step, str(error))
        resolution = await self.errors.handle_error(context)
        await self.progress.emit_event(
            WorkflowEvent(
                type=WorkflowEventType.ERROR_OCCURRED,
                session_id=session_id,
                step=step,
                data={
                    "code": resolution.error_definition.code,
                    "message": resolution.error_definition.user_message,
                    "can_recover": resolution.can_recover,
                },
            )
        )

        outcome = StepFailure(resolution=resolution)
        if not resolution.can_recover:
            return outcome

        action = resolution.suggested_action
        if action.automated:
            outcome.recovery = await self.errors.attempt_recovery(context, action, operation)
            if outcome.recovery.success:
                await self.progress.start_step(session_id, step)
                return outcome

        can_skip_error = any(
            a.type == RecoveryActionType.SKIP
            for a in resolution.error_definition.recovery_actions
        )
        if can_skip_error and self.validator.can_skip(step):
            await self.skip_step(session_id, step, "skipped after retry exhaustion")
            outcome.skipped = True
        return outcome

    async def pause_workflow(self, session_id: str) -> WorkflowSession:
        session = await self.sessions.pause_session(session_id)
        await self._session_changed(session)
        return session

    async def resume_workflow(self, session_id: str) -> WorkflowSession:
        session = await self.sessions.resume_session(session_id)
        await self._session_changed(session)
        return session

    async def abort_workflow(self, session_id: str, reason: str) -> WorkflowSession:
        session = await self.sessions.error_session(session_id, reason)
        await self._session_changed(session)
        return session

    async def restore_checkpoint(self, session_id: str, index: int) -> WorkflowSession:
        state = await self.state.restore_from_checkpoint(session_id, index)
        step = state.session.current_step
        session = await self.sessions.update_session(
            session_id,
            current_step=step,
            status=state.session.status,
            configuration_data=dict(state.configuration),
        )
        await self.progress.set_current_step(session_id, step)
        await self._session_changed(session)
        return session

    async def delete_workflow(self, session_id: str) -> None:
        await self.sessions.delete_session(session_id)
        await self.progress.clear_progress(session_id)
        await self.state.delete_state(session_id)
        await self.errors.clear_error_history(session_id)

    # ------------------------------------------------------------------
    async def _advance(
        self, session_id: str, step: WorkflowStep, description: str
    ) -> WorkflowSession:
        next_steps = self.validator.get_step_definition(step).next_steps
        if not next_steps:
            raise InvalidTransitionError(f"Step {step.value} has no next step")
        next_step = next_steps[0]
        check = self.validator.validate_transition(step, next_step)
        if not check.is_valid:
            raise InvalidTransitionError(check.errors[0].message)

        session = await self.sessions.advance_to_next_step(session_id, next_step)
        progress = await self.progress.set_current_step(session_id, next_step)
        if next_step == WorkflowStep.COMPLETED:
            progress = await self.progress.complete_step(
                session_id, WorkflowStep.COMPLETED, "Workflow completed"
            )

        await self.state.sync_progress(session_id, progress)
        await self.state.sync_session(session_id, session)
        await self.state.create_checkpoint(session_id, next_step, description)

        if next_step == WorkflowStep.COMPLETED:
            await self.progress.emit_event(
                WorkflowEvent(
                    type=WorkflowEventType.SESSION_COMPLETED,
                    session_id=session_id,
                    step=next_step,
                    data=session.model_dump(mode="json"),
                )
            )
        return session

    async def _require_current(self, session_id: str, step: WorkflowStep) -> None:
        session = await self.sessions.get_session(session_id)
        if session.current_step != step:
            raise InvalidTransitionError(
                f"Session {session_id} is at {session.current_step.value}, not {step.value}"
            )

    async def _session_changed(self, session: WorkflowSession) -> None:
        await self.state.sync_session(session.id, session)
        await self.progress.emit_event(
            WorkflowEvent(
                type=WorkflowEventType.SESSION_UPDATED,
                session_id=session.id,
                step=session.current_step,
                data=session.model_dump(mode="json"),
            )
        )
