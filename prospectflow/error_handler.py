"""Error classification, recovery policy and the per-session error ledger."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Awaitable, Callable, Optional

from .config import RetryConfig
from .exceptions import StateNotFoundError
from .models import (
    ErrorCategory,
    ErrorCodeCount,
    ErrorContext,
    ErrorDefinition,
    ErrorResolution,
    ErrorSeverity,
    ErrorStatistics,
    RecoveryAction,
    RecoveryActionType,
    RecoveryResult,
)
from .persistence import WorkflowRepository
from .utils.retry import wait_ms

logger = logging.getLogger(__name__)

UPLOAD_FILE_TOO_LARGE = "UPLOAD_FILE_TOO_LARGE"
INVALID_CSV_FORMAT = "INVALID_CSV_FORMAT"
MISSING_REQUIRED_HEADERS = "MISSING_REQUIRED_HEADERS"
ENRICHMENT_SERVICE_UNAVAILABLE = "ENRICHMENT_SERVICE_UNAVAILABLE"
API_RATE_LIMIT_EXCEEDED = "API_RATE_LIMIT_EXCEEDED"
INSUFFICIENT_API_CREDITS = "INSUFFICIENT_API_CREDITS"
SYSTEM_ERROR = "SYSTEM_ERROR"

UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred."

Operation = Callable[[], Awaitable[Any]]


def _action(
    type: RecoveryActionType,
    description: str,
    automated: bool = False,
    *conditions: str,
) -> RecoveryAction:
    return RecoveryAction(
        type=type, description=description, automated=automated, conditions=list(conditions)
    )


DEFAULT_ERROR_DEFINITIONS: tuple[ErrorDefinition, ...] = (
    ErrorDefinition(
        code=UPLOAD_FILE_TOO_LARGE,
        name="File Too Large",
        description="Uploaded file exceeds size limit",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.MEDIUM,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.MANUAL, "Upload a smaller file", False, "file_size_under_limit"),
        ],
        user_message="The uploaded file is too large. Please upload a file smaller than 100MB.",
        technical_message="File size exceeds the configured maximum upload limit",
    ),
    ErrorDefinition(
        code=INVALID_CSV_FORMAT,
        name="Invalid CSV Format",
        description="CSV file format is invalid or corrupted",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.HIGH,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.MANUAL, "Fix CSV format and re-upload", False, "valid_csv_format"),
        ],
        user_message="The CSV file format is invalid. Please check the file and upload again.",
        technical_message="CSV parsing failed due to format issues",
    ),
    ErrorDefinition(
        code=MISSING_REQUIRED_HEADERS,
        name="Missing Required Headers",
        description="CSV file is missing required column headers",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.HIGH,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.MANUAL, "Add required headers to CSV file", False, "has_required_headers"),
        ],
        user_message=(
            "The CSV file is missing required headers. Please ensure your file "
            "has email, name, and company columns."
        ),
        technical_message="Required CSV headers not found in uploaded file",
    ),
    ErrorDefinition(
        code=ENRICHMENT_SERVICE_UNAVAILABLE,
        name="Enrichment Service Unavailable",
        description="External enrichment service is not responding",
        category=ErrorCategory.EXTERNAL,
        severity=ErrorSeverity.HIGH,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.RETRY, "Retry enrichment after delay", True, "service_available"),
            _action(RecoveryActionType.SKIP, "Skip enrichment and continue"),
        ],
        user_message=(
            "The enrichment service is temporarily unavailable. We will retry automatically."
        ),
        technical_message="HTTP timeout or connection error to enrichment service",
    ),
    ErrorDefinition(
        code=API_RATE_LIMIT_EXCEEDED,
        name="API Rate Limit Exceeded",
        description="API rate limit has been exceeded",
        category=ErrorCategory.EXTERNAL,
        severity=ErrorSeverity.MEDIUM,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.RETRY, "Wait and retry after rate limit reset", True, "rate_limit_reset"),
        ],
        user_message=(
            "API rate limit reached. Processing will continue automatically after a short delay."
        ),
        technical_message="API rate limit exceeded, need to wait for reset",
    ),
    ErrorDefinition(
        code=INSUFFICIENT_API_CREDITS,
        name="Insufficient API Credits",
        description="Not enough API credits to complete operation",
        category=ErrorCategory.USER,
        severity=ErrorSeverity.CRITICAL,
        recoverable=False,
        recovery_actions=[
            _action(RecoveryActionType.MANUAL, "Add more API credits", False, "sufficient_credits"),
            _action(RecoveryActionType.ABORT, "Cancel operation"),
        ],
        user_message=(
            "Insufficient API credits to complete this operation. Please add more credits to continue."
        ),
        technical_message="API credits balance insufficient for operation",
    ),
    ErrorDefinition(
        code=SYSTEM_ERROR,
        name="System Error",
        description="An unexpected system error occurred",
        category=ErrorCategory.SYSTEM,
        severity=ErrorSeverity.CRITICAL,
        recoverable=True,
        recovery_actions=[
            _action(RecoveryActionType.RETRY, "Retry operation", True),
            _action(RecoveryActionType.RESTART, "Restart workflow from last checkpoint", False, "checkpoint_available"),
        ],
        user_message="A system error occurred. We are retrying the operation automatically.",
        technical_message="Unhandled system exception occurred",
    ),
)

UNKNOWN_ERROR_DEFINITION = ErrorDefinition(
    code="UNKNOWN_ERROR",
    name="Unknown Error",
    description="An unknown error occurred",
    category=ErrorCategory.SYSTEM,
    severity=ErrorSeverity.CRITICAL,
    recoverable=False,
    user_message=UNKNOWN_ERROR_MESSAGE,
    technical_message="Unknown error type",
)

MANUAL_INTERVENTION = RecoveryAction(
    type=RecoveryActionType.MANUAL,
    description="Manual intervention required",
)


def identify_error_code(context: ErrorContext) -> str:
    """Map an error message onto a catalog code; first match wins."""
    message = context.error.message.lower()

    if "file too large" in message or "size limit" in message:
        return UPLOAD_FILE_TOO_LARGE
    if "csv" in message and "format" in message:
        return INVALID_CSV_FORMAT
    if "required" in message and "header" in message:
        return MISSING_REQUIRED_HEADERS
    if "rate limit" in message:
        return API_RATE_LIMIT_EXCEEDED
    if "credit" in message or "insufficient" in message:
        return INSUFFICIENT_API_CREDITS
    if "service unavailable" in message or "timeout" in message:
        return ENRICHMENT_SERVICE_UNAVAILABLE
    return SYSTEM_ERROR


class ErrorHandler:
    """Classifies workflow errors and applies the recovery policy.

    The ledger of handled errors lives in the repository, keyed by session
    id. When a state manager is attached every handled error is mirrored into
    the session's persisted state so the two never drift apart.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        retry: Optional[RetryConfig] = None,
        state_manager: Any = None,
        sleep: Callable[[int], Awaitable[None]] = wait_ms,
    ) -> None:
        self._repository = repository
        self._retry = retry or RetryConfig()
        self._state_manager = state_manager
        self._sleep = sleep
        self._definitions: dict[str, ErrorDefinition] = {
            d.code: d for d in DEFAULT_ERROR_DEFINITIONS
        }
        self._recovery_attempts: dict[str, list[bool]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Catalog
    def identify_error_code(self, context: ErrorContext) -> str:
        return identify_error_code(context)

    def register_error_definition(self, definition: ErrorDefinition) -> None:
        self._definitions[definition.code] = definition

    def get_error_definitions(self) -> dict[str, ErrorDefinition]:
        return dict(self._definitions)

    def definition_for(self, context: ErrorContext) -> ErrorDefinition:
        return (
            self._definitions.get(identify_error_code(context))
            or self._definitions.get(SYSTEM_ERROR)
            or UNKNOWN_ERROR_DEFINITION
        )

    def is_recoverable(self, context: ErrorContext) -> bool:
        definition = self._definitions.get(identify_error_code(context))
        return definition.recoverable if definition else False

    def get_user_message(self, context: ErrorContext) -> str:
        definition = self._definitions.get(identify_error_code(context))
        return definition.user_message if definition else UNKNOWN_ERROR_MESSAGE

    def calculate_retry_delay(self, context: ErrorContext) -> int:
        """Delay in milliseconds before an automated retry."""
        code = identify_error_code(context)
        if code == API_RATE_LIMIT_EXCEEDED:
            return self._retry.rate_limit_delay_ms
        if code == ENRICHMENT_SERVICE_UNAVAILABLE:
            return self._retry.service_unavailable_delay_ms
        return self._retry.default_delay_ms

    # ------------------------------------------------------------------
    # Handling
    async def handle_error(self, context: ErrorContext) -> ErrorResolution:
        await self._log_error(context)

        definition = self.definition_for(context)
        suggested = (
            definition.recovery_actions[0]
            if definition.recovery_actions
            else MANUAL_INTERVENTION
        )
        logger.warning(
            f"Session {context.session_id} error classified as {definition.code} "
            f"(step={context.step.value if context.step else None}): "
            f"{definition.technical_message}; original: {context.error.message}"
        )
        return ErrorResolution(
            error_definition=definition,
            suggested_action=suggested,
            can_recover=definition.recoverable,
        )

    async def attempt_recovery(
        self,
        context: ErrorContext,
        action: RecoveryAction,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        """Run an automated recovery action.

        ``retry`` waits :meth:`calculate_retry_delay` and re-executes
        ``operation``, reporting its real outcome. ``skip`` always succeeds.
        Manual actions and unsupported types fail without side effects.
        """
        if not action.automated:
            return RecoveryResult(
                success=False, error="Recovery action requires manual intervention"
            )

        if action.type == RecoveryActionType.RETRY:
            result = await self._execute_retry(context, operation)
        elif action.type == RecoveryActionType.SKIP:
            result = RecoveryResult(success=True, value=True)
        else:
            return RecoveryResult(
                success=False,
                error=f"Unsupported automated recovery type: {action.type.value}",
            )

        self._recovery_attempts[context.session_id].append(result.success)
        return result

    async def _execute_retry(
        self, context: ErrorContext, operation: Optional[Operation]
    ) -> RecoveryResult:
        if operation is None:
            return RecoveryResult(success=False, error="No operation supplied to retry")

        delay = self.calculate_retry_delay(context)
        logger.info(f"Retrying failed operation for session {context.session_id} in {delay}ms")
        await self._sleep(delay)
        try:
            value = await operation()
        except Exception as exc:
            logger.warning(f"Retry for session {context.session_id} failed: {exc}")
            return RecoveryResult(success=False, error=str(exc))
        return RecoveryResult(success=True, value=value)

    # ------------------------------------------------------------------
    # Ledger
    async def _log_error(self, context: ErrorContext) -> None:
        await self._repository.append_error(context)
        if self._state_manager is None:
            return
        try:
            await self._state_manager.add_error(context.session_id, context)
        except StateNotFoundError:
            logger.debug(f"No persisted state for session {context.session_id}; ledger only")

    async def get_error_history(self, session_id: str) -> list[ErrorContext]:
        return await self._repository.get_errors(session_id)

    async def clear_error_history(self, session_id: str) -> None:
        await self._repository.clear_errors(session_id)
        self._recovery_attempts.pop(session_id, None)
        if self._state_manager is None:
            return
        try:
            await self._state_manager.clear_errors(session_id)
        except StateNotFoundError:
            logger.debug(f"No persisted state for session {session_id} to clear")

    async def get_error_statistics(self, session_id: Optional[str] = None) -> ErrorStatistics:
        if session_id is not None:
            errors = await self._repository.get_errors(session_id)
            attempts = self._recovery_attempts.get(session_id, [])
        else:
            errors = await self._repository.list_errors()
            attempts = [a for log in self._recovery_attempts.values() for a in log]

        by_category: Counter[str] = Counter()
        by_severity: Counter[str] = Counter()
        by_code: Counter[str] = Counter()
        for context in errors:
            code = identify_error_code(context)
            definition = self._definitions.get(code)
            if definition:
                by_category[definition.category.value] += 1
                by_severity[definition.severity.value] += 1
            by_code[code] += 1

        return ErrorStatistics(
            total_errors=len(errors),
            errors_by_category=dict(by_category),
            errors_by_severity=dict(by_severity),
            recovery_success_rate=(sum(attempts) / len(attempts)) if attempts else None,
            common_errors=[
                ErrorCodeCount(code=code, count=count)
                for code, count in by_code.most_common(5)
            ],
        )
