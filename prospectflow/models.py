"""Data models for workflow sessions, progress, persisted state and errors."""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Naive timestamps are read as UTC.
UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


def new_session_id() -> str:
    return f"ws_{uuid.uuid4().hex}"


class WorkflowStep(str, Enum):
    """Fixed pipeline steps, declared in canonical order."""

    UPLOAD_CSV = "UPLOAD_CSV"
    CAMPAIGN_SETTINGS = "CAMPAIGN_SETTINGS"
    ENRICHMENT_CONFIG = "ENRICHMENT_CONFIG"
    BEGIN_ENRICHMENT = "BEGIN_ENRICHMENT"
    EMAIL_GENERATION = "EMAIL_GENERATION"
    COMPLETED = "COMPLETED"

    @property
    def label(self) -> str:
        return self.value.lower().replace("_", " ")


PIPELINE_STEPS: tuple[WorkflowStep, ...] = tuple(WorkflowStep)
NON_TERMINAL_STEPS: tuple[WorkflowStep, ...] = PIPELINE_STEPS[:-1]


class WorkflowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"
    ERROR = "ERROR"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ----------------------------------------------------------------------
# Sessions


class WorkflowSession(BaseModel):
    """One guided run of the enrichment and outreach workflow."""

    id: str = Field(default_factory=new_session_id)
    user_session_id: str
    campaign_id: Optional[int] = None
    current_step: WorkflowStep = WorkflowStep.UPLOAD_CSV
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    configuration_data: dict[str, Any] = Field(default_factory=dict)
    steps_completed: list[WorkflowStep] = Field(default_factory=list)
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)
    error_message: Optional[str] = None


class SessionFilter(BaseModel):
    user_session_id: Optional[str] = None
    campaign_id: Optional[int] = None
    status: Optional[WorkflowStatus] = None
    current_step: Optional[WorkflowStep] = None
    created_after: Optional[UTCDateTime] = None
    created_before: Optional[UTCDateTime] = None

    def matches(self, session: WorkflowSession) -> bool:
        if self.user_session_id and session.user_session_id != self.user_session_id:
            return False
        if self.campaign_id is not None and session.campaign_id != self.campaign_id:
            return False
        if self.status and session.status != self.status:
            return False
        if self.current_step and session.current_step != self.current_step:
            return False
        if self.created_after and not session.created_at > self.created_after:
            return False
        if self.created_before and not session.created_at < self.created_before:
            return False
        return True


class SessionPage(BaseModel):
    items: list[WorkflowSession] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False


class ActivityCount(BaseModel):
    date: str
    count: int


class SessionStatistics(BaseModel):
    total: int
    by_status: dict[WorkflowStatus, int]
    by_step: dict[WorkflowStep, int]
    completion_rate: float
    average_duration: float
    recent_activity: list[ActivityCount] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Progress


class StepProgress(BaseModel):
    step: WorkflowStep
    status: StepStatus = StepStatus.PENDING
    progress: float = 0
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    message: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class WorkflowProgress(BaseModel):
    """Per-session step table plus the derived aggregate."""

    current_step: WorkflowStep = WorkflowStep.UPLOAD_CSV
    overall_progress: int = 0
    steps: dict[WorkflowStep, StepProgress] = Field(default_factory=dict)
    estimated_time_remaining: Optional[float] = None
    started_at: UTCDateTime = Field(default_factory=utcnow)
    last_updated: UTCDateTime = Field(default_factory=utcnow)

    @classmethod
    def initial(cls) -> "WorkflowProgress":
        now = utcnow()
        return cls(
            steps={step: StepProgress(step=step) for step in PIPELINE_STEPS},
            started_at=now,
            last_updated=now,
        )


class ProgressSummary(BaseModel):
    current_step: WorkflowStep
    overall_progress: int
    completed_steps: int
    total_steps: int
    has_errors: bool
    is_completed: bool


class WorkflowEventType(str, Enum):
    SESSION_CREATED = "session_created"
    STEP_STARTED = "step_started"
    PROGRESS_UPDATED = "progress_updated"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    ERROR_OCCURRED = "error_occurred"
    SESSION_UPDATED = "session_updated"
    SESSION_COMPLETED = "session_completed"


class WorkflowEvent(BaseModel):
    type: WorkflowEventType
    session_id: str
    step: Optional[WorkflowStep] = None
    data: Any = None
    timestamp: UTCDateTime = Field(default_factory=utcnow)


# ----------------------------------------------------------------------
# Validation


class ValidationIssue(BaseModel):
    step: WorkflowStep
    field: Optional[str] = None
    message: str
    code: str
    severity: str = "error"


class ValidationResult(BaseModel):
    is_valid: bool = True
    can_proceed: bool = True
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    missing_requirements: list[str] = Field(default_factory=list)


class StepDefinition(BaseModel):
    step: WorkflowStep
    name: str
    description: str
    config_section: Optional[str] = None
    required: list[str] = Field(default_factory=list)
    optional: list[str] = Field(default_factory=list)
    estimated_duration: int = 0
    can_skip: bool = False
    can_revert: bool = False
    dependencies: list[WorkflowStep] = Field(default_factory=list)
    next_steps: list[WorkflowStep] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Errors


class ErrorInfo(BaseModel):
    message: str
    type: Optional[str] = None
    stack_trace: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorContext(BaseModel):
    """The unit that is logged and classified by the error handler."""

    session_id: str
    error: ErrorInfo
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    step: Optional[WorkflowStep] = None
    action: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        session_id: str,
        exc: BaseException,
        step: Optional[WorkflowStep] = None,
        action: Optional[str] = None,
    ) -> "ErrorContext":
        return cls(
            session_id=session_id,
            step=step,
            action=action,
            error=ErrorInfo(
                message=str(exc),
                type=type(exc).__name__,
                stack_trace="".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
            ),
        )


class RecoveryActionType(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    MANUAL = "manual"
    ABORT = "abort"
    RESTART = "restart"


class RecoveryAction(BaseModel):
    type: RecoveryActionType
    description: str
    automated: bool = False
    conditions: list[str] = Field(default_factory=list)


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    EXTERNAL = "external"
    USER = "user"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorDefinition(BaseModel):
    code: str
    name: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    recoverable: bool
    recovery_actions: list[RecoveryAction] = Field(default_factory=list)
    user_message: str
    technical_message: str


class ErrorResolution(BaseModel):
    error_definition: ErrorDefinition
    suggested_action: RecoveryAction
    can_recover: bool


class RecoveryResult(BaseModel):
    success: bool
    error: Optional[str] = None
    value: Any = None


class ErrorCodeCount(BaseModel):
    code: str
    count: int


class ErrorStatistics(BaseModel):
    total_errors: int = 0
    errors_by_category: dict[str, int] = Field(default_factory=dict)
    errors_by_severity: dict[str, int] = Field(default_factory=dict)
    recovery_success_rate: Optional[float] = None
    common_errors: list[ErrorCodeCount] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Persisted state


class CheckpointSnapshot(BaseModel):
    description: str
    step: WorkflowStep
    progress: Optional[int] = None
    configuration: Optional[dict[str, Any]] = None
    restored_from: Optional[int] = None


class Checkpoint(BaseModel):
    step: WorkflowStep
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    snapshot: CheckpointSnapshot


class StateMetadata(BaseModel):
    version: str
    created_by: str
    last_modified_by: str
    checkpoints: list[Checkpoint] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """Persisted envelope wrapping a session, its progress and configuration."""

    session: WorkflowSession
    progress: WorkflowProgress
    configuration: dict[str, Any] = Field(default_factory=dict)
    validation_results: dict[WorkflowStep, ValidationResult] = Field(
        default_factory=dict
    )
    errors: list[ErrorContext] = Field(default_factory=list)
    metadata: StateMetadata


class StateExport(BaseModel):
    version: str
    timestamp: UTCDateTime
    session_id: str
    state: WorkflowState


class HistoryEntry(BaseModel):
    step: WorkflowStep
    timestamp: UTCDateTime
    description: str
    progress: Optional[int] = None


class StateSummary(BaseModel):
    current_step: WorkflowStep
    overall_progress: int
    checkpoint_count: int
    error_count: int
    last_modified: UTCDateTime
    configuration_complete: bool


class StateListing(BaseModel):
    session_id: str
    current_step: WorkflowStep
    status: WorkflowStatus
    last_modified: UTCDateTime
    checkpoint_count: int


class CleanupResult(BaseModel):
    deleted_count: int
    remaining_count: int
