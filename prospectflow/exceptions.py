"""prospectflow exception hierarchy."""

from __future__ import annotations


class ProspectflowError(Exception):
    """Base exception for all prospectflow errors."""


class ValidationError(ProspectflowError):
    """Caller supplied invalid input."""


class NotFoundError(ProspectflowError):
    """A keyed record does not exist."""


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Workflow session not found: {session_id}")


class ProgressNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Progress data not found for session: {session_id}")


class StateNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Workflow state not found: {session_id}")


class BatchNotFoundError(NotFoundError):
    def __init__(self, batch_id: int) -> None:
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class CheckpointIndexError(ProspectflowError):
    """Checkpoint index outside the checkpoint log."""

    def __init__(self, index: int, size: int) -> None:
        self.index = index
        self.size = size
        super().__init__(f"Invalid checkpoint index {index} (log has {size} entries)")


class IncompatibleStateVersionError(ProspectflowError):
    """Exported state document was written by an unsupported version."""

    def __init__(self, version: object) -> None:
        self.version = version
        super().__init__(f"Unsupported export version: {version}")


class InvalidStateDocumentError(ProspectflowError):
    """Exported state document could not be parsed."""


class InvalidTransitionError(ProspectflowError):
    """Requested step transition is not allowed."""


class PipelineStepError(ProspectflowError):
    """A sub-step of the enrichment pipeline failed."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        self.detail = message
        super().__init__(f"Pipeline step {step} failed: {message}")


class PersistenceStepError(PipelineStepError):
    """The mandatory persistence sub-step failed; the job cannot complete."""

    def __init__(self, message: str) -> None:
        super().__init__("persist", message)
