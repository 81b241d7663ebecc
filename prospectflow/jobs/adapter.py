"""Queue worker that runs enrichment jobs and feeds results back into a session."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, defaultdict
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

from ..config import BatchConfig
from ..constants import ENRICHMENT_TOPIC
from ..contracts import EnrichmentJob, JobProgress, JobResult, QueueMessage
from ..db import BatchDB, JobOutcome
from ..db.models import TERMINAL_BATCH_STATUSES
from ..error_handler import ErrorHandler
from ..exceptions import PersistenceStepError, SessionNotFoundError
from ..models import ErrorContext, WorkflowStatus, WorkflowStep
from ..progress import ProgressTracker
from ..sessions import SessionStore
from ..transports import BaseTransport
from ..utils.retry import compute_backoff
from .batch import run_batch
from .pipeline import EnrichmentPipeline

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Outbound channel for per-user job notifications."""

    async def notify(self, user_id: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    async def notify(self, user_id: str, payload: dict[str, Any]) -> None:
        logger.info(f"Notify {user_id}: {payload}")


class JobQueueAdapter:
    """Consumes ``EnrichmentJob`` messages and reports their outcome.

    Per job the adapter maps pipeline milestones onto the session's
    ``BEGIN_ENRICHMENT`` step, retries failures with exponential backoff and
    then runs exactly one terminal hook. A job id that has already been
    counted is never counted again, even if its message is delivered twice.
    """

    def __init__(
        self,
        transport: BaseTransport,
        pipeline: EnrichmentPipeline,
        progress_tracker: Optional[ProgressTracker] = None,
        error_handler: Optional[ErrorHandler] = None,
        session_store: Optional[SessionStore] = None,
        batch_db: Optional[BatchDB] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[BatchConfig] = None,
        topic: str = ENRICHMENT_TOPIC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._pipeline = pipeline
        self._progress = progress_tracker
        self._errors = error_handler
        self._sessions = session_store
        self._batches = batch_db
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._config = config or BatchConfig()
        self._topic = topic
        self._sleep = sleep
        self._accounted: OrderedDict[str, None] = OrderedDict()
        self._running: dict[str, set[asyncio.Task[Any]]] = defaultdict(set)

    @property
    def topic(self) -> str:
        return self._topic

    async def enqueue(self, job: EnrichmentJob) -> None:
        await self._transport.publish(self._topic, job.to_message())
        logger.info(f"Enqueued enrichment job {job.job_id} for prospect {job.prospect_id}")

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume jobs from the transport until ``lifespan`` seconds elapse."""
        async for raw_message, message in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                await self.handle_message(message)
            except Exception as exc:
                if message.attempt >= self._config.max_attempts:
                    logger.error(
                        f"Giving up on message {message.message_id} after "
                        f"{message.attempt} deliveries: {exc}"
                    )
                    await self._transport.nack(raw_message, requeue=False)
                    continue
                logger.warning(f"Redelivering message {message.message_id}: {exc}")
                await self._transport.publish(self._topic, message.bump_attempt())
            await self._transport.ack(raw_message)

    async def handle_message(self, message: QueueMessage) -> Optional[JobResult]:
        if message.kind != "enrichment_job":
            logger.warning(f"Ignoring message of kind {message.kind} on {self._topic}")
            return None
        job = EnrichmentJob.from_message(message)
        return await self._track(job, self.process_job(job))

    async def run_batch(
        self, jobs: Sequence[EnrichmentJob]
    ) -> list[Union[Optional[JobResult], BaseException]]:
        return await run_batch(
            jobs,
            lambda job: self._track(job, self.process_job(job)),
            concurrency=self._config.concurrency,
            delay=self._config.request_delay,
            sleep=self._sleep,
        )

    def cancel_session(self, session_id: str) -> int:
        """Cancel in-flight jobs for ``session_id``; returns how many were cancelled."""
        tasks = [t for t in self._running.get(session_id, ()) if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} in-flight jobs for session {session_id}")
        return len(tasks)

    def running_jobs(self, session_id: str) -> int:
        return sum(1 for t in self._running.get(session_id, ()) if not t.done())

    # ------------------------------------------------------------------
    async def process_job(self, job: EnrichmentJob) -> Optional[JobResult]:
        """Run one job to a terminal outcome.

        Returns ``None`` when the job was not run: already accounted for, or
        its session is not ``ACTIVE``.
        """
        if await self._already_accounted(job):
            logger.info(f"Job {job.job_id} already accounted; ignoring redelivery")
            return None
        if not await self._session_accepts_jobs(job):
            return None

        attempts = max(self._config.max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                result = await self._pipeline.run(job, lambda p: self._on_progress(job, p))
            except Exception as exc:
                if attempt < attempts:
                    delay = compute_backoff(attempt, base=self._config.backoff_base)
                    logger.warning(
                        f"Job {job.job_id} attempt {attempt}/{attempts} failed: {exc}; "
                        f"retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                logger.error(f"Job {job.job_id} failed after {attempts} attempts: {exc}")
                await self._on_failed(job, exc)
                return JobResult(success=False, message=str(exc), errors=[str(exc)])

            await self._on_completed(job, result)
            return result
        return None

    async def _track(self, job: EnrichmentJob, work: Awaitable[Any]) -> Any:
        """Run ``work`` as a task that ``cancel_session`` can reach.

        A job cancelled through ``cancel_session`` yields ``None``; cancelling
        the caller cancels the job and propagates.
        """
        task = asyncio.ensure_future(work)
        key = job.session_id or ""
        self._running[key].add(task)
        try:
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
            if task.cancelled():
                logger.info(f"Job {job.job_id} was cancelled")
                return None
            return task.result()
        finally:
            self._running[key].discard(task)
            if not self._running[key]:
                del self._running[key]

    def _remember(self, job_id: str) -> None:
        """Keep the most recently accounted job ids, oldest evicted first."""
        self._accounted[job_id] = None
        self._accounted.move_to_end(job_id)
        while len(self._accounted) > self._config.accounted_cache_size:
            self._accounted.popitem(last=False)

    async def _already_accounted(self, job: EnrichmentJob) -> bool:
        if job.job_id in self._accounted:
            return True
        return self._batches is not None and await self._batches.is_accounted(job.job_id)

    async def _session_accepts_jobs(self, job: EnrichmentJob) -> bool:
        if job.session_id is None or self._sessions is None:
            return True
        try:
            session = await self._sessions.get_session(job.session_id)
        except SessionNotFoundError:
            logger.warning(f"Job {job.job_id} references unknown session {job.session_id}")
            return False
        if session.status != WorkflowStatus.ACTIVE:
            logger.info(
                f"Session {job.session_id} is {session.status.value}; not starting job {job.job_id}"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Hooks
    async def _on_progress(self, job: EnrichmentJob, progress: JobProgress) -> None:
        await self._notifier.notify(
            job.user_id,
            {
                "prospect_id": job.prospect_id,
                "status": progress.status,
                "progress": progress.progress,
                "message": progress.message,
            },
        )
        # Batch jobs report the batch-level fraction once they finish.
        if job.batch_id is None and job.session_id and self._progress:
            await self._progress.update_step_progress(
                job.session_id,
                WorkflowStep.BEGIN_ENRICHMENT,
                progress.progress,
                progress.message,
            )

    async def _on_completed(self, job: EnrichmentJob, result: JobResult) -> None:
        if not await self._account(job, JobOutcome.ENRICHED):
            return
        await self._notifier.notify(
            job.user_id,
            {
                "prospect_id": job.prospect_id,
                "status": "completed",
                "progress": 100,
                "message": result.message,
            },
        )

    async def _on_failed(self, job: EnrichmentJob, exc: Exception) -> None:
        if job.job_id in self._accounted:
            return
        user_message = str(exc)
        code = None
        if self._errors is not None:
            context = ErrorContext.from_exception(
                job.session_id or job.user_id,
                exc,
                step=WorkflowStep.BEGIN_ENRICHMENT,
                action=f"enrich_prospect:{job.prospect_id}",
            )
            resolution = await self._errors.handle_error(context)
            user_message = resolution.error_definition.user_message
            code = resolution.error_definition.code

        if not await self._account(job, JobOutcome.FAILED):
            return

        if isinstance(exc, PersistenceStepError) and job.session_id and self._sessions:
            await self._sessions.error_session(job.session_id, user_message)

        await self._notifier.notify(
            job.user_id,
            {
                "prospect_id": job.prospect_id,
                "status": "error",
                "progress": 0,
                "message": user_message,
                "error_code": code,
            },
        )

    async def _account(self, job: EnrichmentJob, outcome: JobOutcome) -> bool:
        """Record the terminal outcome once; ``False`` if it was already counted."""
        if job.job_id in self._accounted:
            return False
        if job.batch_id is not None and self._batches is not None:
            if not await self._batches.record_outcome(job.batch_id, job.job_id, outcome):
                self._remember(job.job_id)
                return False
        self._remember(job.job_id)

        if job.batch_id is not None and self._batches is not None:
            await self._report_batch(job)
        return True

    async def _report_batch(self, job: EnrichmentJob) -> None:
        batch = await self._batches.get_batch(job.batch_id)
        if job.session_id and self._progress and batch.total_prospects:
            await self._progress.update_step_progress(
                job.session_id,
                WorkflowStep.BEGIN_ENRICHMENT,
                batch.processed / batch.total_prospects * 100,
                f"{batch.processed} of {batch.total_prospects} prospects processed",
            )
        if batch.status in {s.value for s in TERMINAL_BATCH_STATUSES}:
            await self._notifier.notify(
                job.user_id,
                {
                    "batch_id": batch.id,
                    "status": batch.status.lower(),
                    "progress": 100,
                    "total_prospects": batch.total_prospects,
                    "completed_prospects": batch.enriched_prospects,
                    "failed_prospects": batch.failed_prospects,
                },
            )
