"""Message and job contracts exchanged between the orchestrator and workers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_WEBSITE_PAGES


class QueueMessage(BaseModel):
    """Envelope exchanged over a transport. ``kind`` names the payload schema."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempt: int = 1
    payload: Dict[str, Any] = Field(default_factory=dict)
    spec_version: str = "1.0"

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "QueueMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)

    def bump_attempt(self) -> "QueueMessage":
        """Return a copy for redelivery with a fresh id and incremented attempt."""
        return self.model_copy(
            update={"message_id": str(uuid.uuid4()), "attempt": self.attempt + 1}
        )


class JobProgress(BaseModel):
    """Progress report emitted by a job at each pipeline milestone."""

    progress: int = 0
    total: int = 1
    processed: int = 0
    failed: int = 0
    status: str
    message: str
    current_item: Optional[str] = None
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EnrichmentServices(BaseModel):
    """Which optional enrichment sub-steps run for a prospect."""

    profile: bool = True
    company: bool = True
    tech_stack: bool = True


class EnrichmentOptions(BaseModel):
    website_pages: int = DEFAULT_WEBSITE_PAGES


class ProspectData(BaseModel):
    """Prospect fields the pipeline reads; anything else rides in ``extra``."""

    name: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    linkedin_url: Optional[str] = None
    website: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class EnrichmentJob(BaseModel):
    """One prospect's enrichment run."""

    job_id: str = Field(default_factory=lambda: f"job_{uuid.uuid4().hex}")
    prospect_id: str
    user_id: str
    session_id: Optional[str] = None
    batch_id: Optional[int] = None
    prospect: ProspectData = Field(default_factory=ProspectData)
    services: EnrichmentServices = Field(default_factory=EnrichmentServices)
    options: EnrichmentOptions = Field(default_factory=EnrichmentOptions)

    def to_message(self) -> QueueMessage:
        return QueueMessage(kind="enrichment_job", payload=self.model_dump(mode="json"))

    @classmethod
    def from_message(cls, message: QueueMessage) -> "EnrichmentJob":
        return cls.model_validate(message.payload)


class JobSummary(BaseModel):
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class JobResult(BaseModel):
    success: bool
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[JobSummary] = None
    errors: List[str] = Field(default_factory=list)
