from .adapter import JobQueueAdapter, LoggingNotifier, Notifier
from .batch import run_batch
from .pipeline import EnrichmentPipeline, EnrichmentProviders, ProgressCallback

__all__ = [
    "EnrichmentPipeline",
    "EnrichmentProviders",
    "JobQueueAdapter",
    "LoggingNotifier",
    "Notifier",
    "ProgressCallback",
    "run_batch",
]
