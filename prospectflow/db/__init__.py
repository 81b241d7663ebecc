from .batch_db import DEFAULT_BATCH_DATABASE_URL, BatchDB, rollup_status
from .models import BatchStatus, EnrichmentBatch, JobOutcome, ProcessedJob

__all__ = [
    "BatchDB",
    "BatchStatus",
    "DEFAULT_BATCH_DATABASE_URL",
    "EnrichmentBatch",
    "JobOutcome",
    "ProcessedJob",
    "rollup_status",
]
