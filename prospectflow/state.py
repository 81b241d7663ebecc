"""State manager: persisted workflow envelope, checkpoints and import/export."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Optional

import pydantic

from .constants import DEFAULT_STATE_RETENTION_DAYS, STATE_EXPORT_VERSION
from .exceptions import (
    CheckpointIndexError,
    IncompatibleStateVersionError,
    InvalidStateDocumentError,
    StateNotFoundError,
)
from .locks import SessionLocks
from .models import (
    Checkpoint,
    CheckpointSnapshot,
    CleanupResult,
    ErrorContext,
    HistoryEntry,
    StateExport,
    StateListing,
    StateMetadata,
    StateSummary,
    ValidationResult,
    WorkflowProgress,
    WorkflowSession,
    WorkflowState,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


def _is_configuration_complete(configuration: dict[str, Any]) -> bool:
    csv_upload = configuration.get("csv_upload") or {}
    campaign = configuration.get("campaign_settings") or {}
    return bool(csv_upload.get("file_name")) and bool(campaign.get("campaign_name"))


class StateManager:
    """Owns ``WorkflowState`` envelopes and their append-only checkpoint log."""

    def __init__(
        self, repository: WorkflowRepository, locks: SessionLocks | None = None
    ) -> None:
        self._repository = repository
        self._locks = locks or SessionLocks()

    async def save_state(
        self,
        session_id: str,
        session: WorkflowSession,
        progress: WorkflowProgress,
        configuration: Optional[dict[str, Any]] = None,
    ) -> WorkflowState:
        """Write a fresh envelope, replacing anything stored for ``session_id``.

        Validation results and errors start empty and the checkpoint log is
        reset, so this is meant for initial creation only.
        """
        state = WorkflowState(
            session=session,
            progress=progress,
            configuration=dict(configuration or {}),
            metadata=StateMetadata(
                version=STATE_EXPORT_VERSION,
                created_by=session.user_session_id,
                last_modified_by=session.user_session_id,
            ),
        )
        async with self._locks.hold(session_id):
            await self._repository.save_state(session_id, state)
        logger.info(f"Saved workflow state for session {session_id}")
        return state

    async def load_state(self, session_id: str) -> WorkflowState:
        state = await self._repository.get_state(session_id)
        if state is None:
            raise StateNotFoundError(session_id)
        return state

    async def create_checkpoint(
        self, session_id: str, step: WorkflowStep, description: str
    ) -> Checkpoint:
        def apply(state: WorkflowState) -> Checkpoint:
            checkpoint = Checkpoint(
                step=step,
                snapshot=CheckpointSnapshot(
                    description=description,
                    step=step,
                    progress=state.progress.overall_progress,
                    configuration=dict(state.configuration),
                ),
            )
            state.metadata.checkpoints.append(checkpoint)
            return checkpoint

        checkpoint = await self._mutate(session_id, apply)
        logger.info(f"Created checkpoint for session {session_id} at {step.value}: {description}")
        return checkpoint

    async def restore_from_checkpoint(
        self, session_id: str, checkpoint_index: int
    ) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            checkpoints = state.metadata.checkpoints
            if not 0 <= checkpoint_index < len(checkpoints):
                raise CheckpointIndexError(checkpoint_index, len(checkpoints))

            checkpoint = checkpoints[checkpoint_index]
            if checkpoint.snapshot.configuration is not None:
                state.configuration = dict(checkpoint.snapshot.configuration)
            state.session.current_step = checkpoint.step
            state.session.status = (
                WorkflowStatus.COMPLETED
                if checkpoint.step == WorkflowStep.COMPLETED
                else WorkflowStatus.ACTIVE
            )

            checkpoints.append(
                Checkpoint(
                    step=checkpoint.step,
                    snapshot=CheckpointSnapshot(
                        description=f"Restored from checkpoint {checkpoint_index}",
                        step=checkpoint.step,
                        progress=state.progress.overall_progress,
                        configuration=dict(state.configuration),
                        restored_from=checkpoint_index,
                    ),
                )
            )
            return state

        state = await self._mutate(session_id, apply)
        logger.info(f"Restored session {session_id} from checkpoint {checkpoint_index}")
        return state

    async def get_workflow_history(self, session_id: str) -> list[HistoryEntry]:
        state = await self.load_state(session_id)
        return [
            HistoryEntry(
                step=checkpoint.step,
                timestamp=checkpoint.timestamp,
                description=checkpoint.snapshot.description,
                progress=checkpoint.snapshot.progress,
            )
            for checkpoint in state.metadata.checkpoints
        ]

    async def update_configuration(
        self, session_id: str, updates: dict[str, Any]
    ) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.configuration = {**state.configuration, **updates}
            return state

        return await self._mutate(session_id, apply)

    async def merge_section(
        self, session_id: str, section: str, values: dict[str, Any]
    ) -> WorkflowState:
        """Merge ``values`` into one configuration section under the session lock."""

        def apply(state: WorkflowState) -> WorkflowState:
            current = state.configuration.get(section) or {}
            state.configuration = {**state.configuration, section: {**current, **values}}
            return state

        return await self._mutate(session_id, apply)

    async def add_error(self, session_id: str, context: ErrorContext) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.errors.append(context)
            return state

        return await self._mutate(session_id, apply)

    async def clear_errors(self, session_id: str) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.errors = []
            return state

        return await self._mutate(session_id, apply)

    async def record_validation(
        self, session_id: str, step: WorkflowStep, result: ValidationResult
    ) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.validation_results[step] = result
            return state

        return await self._mutate(session_id, apply)

    async def sync_progress(
        self, session_id: str, progress: WorkflowProgress
    ) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.progress = progress
            state.session.current_step = progress.current_step
            return state

        return await self._mutate(session_id, apply)

    async def sync_session(
        self, session_id: str, session: WorkflowSession
    ) -> WorkflowState:
        def apply(state: WorkflowState) -> WorkflowState:
            state.session = session.model_copy(deep=True)
            return state

        return await self._mutate(session_id, apply)

    async def export_state(self, session_id: str) -> str:
        state = await self.load_state(session_id)
        document = StateExport(
            version=STATE_EXPORT_VERSION,
            timestamp=utcnow(),
            session_id=session_id,
            state=state,
        )
        return document.model_dump_json(indent=2)

    async def import_state(
        self, session_id: str, serialized: str, modified_by: str = "import"
    ) -> WorkflowState:
        """Store an exported document under ``session_id``.

        Raises:
            IncompatibleStateVersionError: the document's version is not
                ``STATE_EXPORT_VERSION``. Nothing is written.
            InvalidStateDocumentError: the document is not JSON or carries no
                usable ``state``.
        """
        try:
            raw = json.loads(serialized)
        except json.JSONDecodeError as exc:
            raise InvalidStateDocumentError(f"State document is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise InvalidStateDocumentError("State document must be a JSON object")

        version = raw.get("version")
        if version != STATE_EXPORT_VERSION:
            raise IncompatibleStateVersionError(version)
        if not raw.get("state"):
            raise InvalidStateDocumentError("State document has no state")

        try:
            state = WorkflowState.model_validate(raw["state"])
        except pydantic.ValidationError as exc:
            raise InvalidStateDocumentError(f"Invalid workflow state: {exc}") from exc

        state.session.id = session_id
        state.metadata.last_modified_by = modified_by
        async with self._locks.hold(session_id):
            await self._repository.save_state(session_id, state)
        logger.info(f"Imported workflow state into session {session_id}")
        return state

    async def get_state_summary(self, session_id: str) -> StateSummary:
        state = await self.load_state(session_id)
        return StateSummary(
            current_step=state.session.current_step,
            overall_progress=state.progress.overall_progress,
            checkpoint_count=len(state.metadata.checkpoints),
            error_count=len(state.errors),
            last_modified=state.session.updated_at,
            configuration_complete=_is_configuration_complete(state.configuration),
        )

    async def list_states(self) -> list[StateListing]:
        return [
            StateListing(
                session_id=session_id,
                current_step=state.session.current_step,
                status=state.session.status,
                last_modified=state.session.updated_at,
                checkpoint_count=len(state.metadata.checkpoints),
            )
            for session_id, state in await self._repository.list_states()
        ]

    async def delete_state(self, session_id: str) -> bool:
        async with self._locks.hold(session_id):
            return await self._repository.delete_state(session_id)

    async def cleanup_old_states(
        self, older_than_days: int = DEFAULT_STATE_RETENTION_DAYS
    ) -> CleanupResult:
        cutoff = utcnow() - timedelta(days=older_than_days)
        states = await self._repository.list_states()

        deleted = 0
        for session_id, state in states:
            if state.session.updated_at < cutoff:
                if await self.delete_state(session_id):
                    deleted += 1

        logger.info(f"Cleaned up {deleted} workflow states older than {older_than_days} days")
        return CleanupResult(deleted_count=deleted, remaining_count=len(states) - deleted)

    # ------------------------------------------------------------------
    async def _mutate(self, session_id: str, apply: Callable[[WorkflowState], Any]) -> Any:
        async with self._locks.hold(session_id):
            state = await self.load_state(session_id)
            result = apply(state)
            state.session.updated_at = utcnow()
            await self._repository.save_state(session_id, state)
        return result
