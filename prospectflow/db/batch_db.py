from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, col

from ..exceptions import BatchNotFoundError
from .models import (
    TERMINAL_BATCH_STATUSES,
    BatchStatus,
    EnrichmentBatch,
    JobOutcome,
    ProcessedJob,
    _now,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_DATABASE_URL = "sqlite+aiosqlite:///prospectflow_batches.db"


def rollup_status(batch: EnrichmentBatch) -> Optional[BatchStatus]:
    """Terminal status once every prospect has an outcome, else ``None``."""
    if batch.processed < batch.total_prospects:
        return None
    if batch.enriched_prospects == 0:
        return BatchStatus.FAILED
    if batch.failed_prospects == 0:
        return BatchStatus.COMPLETED
    return BatchStatus.COMPLETED_WITH_ERRORS


class BatchDB:
    """Async store for batch records and their enriched/failed counters.

    Counters only ever move through ``UPDATE ... SET n = n + 1`` and each job id
    is recorded in ``ProcessedJob`` in the same transaction, so a redelivered
    job can never be counted twice.
    """

    def __init__(self, database_url: str = DEFAULT_BATCH_DATABASE_URL) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    async def create_batch(
        self,
        total_prospects: int,
        campaign_id: Optional[int] = None,
        user_id: Optional[str] = None,
        name: str = "",
    ) -> EnrichmentBatch:
        batch = EnrichmentBatch(
            total_prospects=total_prospects,
            campaign_id=campaign_id,
            user_id=user_id,
            name=name,
        )
        async with self.session() as session:
            session.add(batch)
            await session.commit()
            await session.refresh(batch)
        return batch

    async def get_batch(self, batch_id: int) -> EnrichmentBatch:
        async with self.session() as session:
            batch = await session.get(EnrichmentBatch, batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    async def is_accounted(self, job_id: str) -> bool:
        async with self.session() as session:
            return await session.get(ProcessedJob, job_id) is not None

    async def record_outcome(
        self, batch_id: int, job_id: str, outcome: JobOutcome
    ) -> bool:
        """Count ``outcome`` for ``job_id`` once.

        Returns ``False`` when the job was already accounted for and nothing
        changed.
        """
        counter = (
            EnrichmentBatch.enriched_prospects
            if outcome == JobOutcome.ENRICHED
            else EnrichmentBatch.failed_prospects
        )
        async with self.session() as session:
            batch = await session.get(EnrichmentBatch, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)

            session.add(ProcessedJob(job_id=job_id, batch_id=batch_id, outcome=outcome.value))
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Job {job_id} already accounted for batch {batch_id}; skipping")
                return False

            await session.execute(
                update(EnrichmentBatch)
                .where(col(EnrichmentBatch.id) == batch_id)
                .values({counter: col(counter) + 1, "updated_at": _now()})
            )
            await session.refresh(batch)

            status = rollup_status(batch)
            if status is not None and batch.status not in {s.value for s in TERMINAL_BATCH_STATUSES}:
                batch.status = status.value
                logger.info(
                    f"Batch {batch_id} finished as {status.value}: "
                    f"{batch.enriched_prospects} enriched, {batch.failed_prospects} failed "
                    f"of {batch.total_prospects}"
                )
            await session.commit()

        logger.debug(f"Batch {batch_id}: recorded {outcome.value} for job {job_id}")
        return True
