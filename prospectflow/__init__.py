"""prospectflow: orchestration for multi-step prospect enrichment workflows."""

from .engine import StepFailure, WorkflowEngine
from .error_handler import ErrorHandler
from .events import EventDispatcher
from .jobs import EnrichmentPipeline, JobQueueAdapter
from .models import WorkflowStatus, WorkflowStep
from .persistence import get_repository
from .progress import ProgressTracker, calculate_overall_progress
from .sessions import SessionStore
from .state import StateManager
from .transports import get_transport
from .validation import StepValidator

__version__ = "0.1.0"
__all__ = [
    "EnrichmentPipeline",
    "ErrorHandler",
    "EventDispatcher",
    "JobQueueAdapter",
    "ProgressTracker",
    "SessionStore",
    "StateManager",
    "StepFailure",
    "StepValidator",
    "WorkflowEngine",
    "WorkflowStatus",
    "WorkflowStep",
    "calculate_overall_progress",
    "get_repository",
    "get_transport",
]
