from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BatchStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"


TERMINAL_BATCH_STATUSES = (
    BatchStatus.COMPLETED,
    BatchStatus.COMPLETED_WITH_ERRORS,
    BatchStatus.FAILED,
)


class JobOutcome(str, Enum):
    ENRICHED = "enriched"
    FAILED = "failed"


class EnrichmentBatch(SQLModel, table=True):
    """A set of prospects enriched together, with aggregate counters."""

    id: Optional[int] = Field(default=None, primary_key=True)
    campaign_id: Optional[int] = Field(default=None, index=True)
    user_id: Optional[str] = None
    name: str = ""
    status: str = Field(default=BatchStatus.PROCESSING.value)
    total_prospects: int = 0
    enriched_prospects: int = 0
    failed_prospects: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def processed(self) -> int:
        return self.enriched_prospects + self.failed_prospects


class ProcessedJob(SQLModel, table=True):
    """Terminal outcome already counted for a job id."""

    job_id: str = Field(primary_key=True)
    batch_id: int = Field(foreign_key="enrichmentbatch.id", index=True)
    outcome: str
    recorded_at: datetime = Field(default_factory=_now)
