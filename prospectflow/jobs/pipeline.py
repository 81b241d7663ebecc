"""Per-prospect enrichment sub-pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..config import PipelineConfig
from ..contracts import EnrichmentJob, JobProgress, JobResult
from ..exceptions import PersistenceStepError, PipelineStepError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[JobProgress], Awaitable[None]]


class EnrichmentProviders(Protocol):
    """External collaborators the pipeline drives, one call per sub-step."""

    async def prepare(self, job: EnrichmentJob) -> dict[str, Any]:
        ...

    async def fetch_profile(self, job: EnrichmentJob) -> Optional[dict[str, Any]]:
        ...

    async def analyze_company(
        self, job: EnrichmentJob, pages: int
    ) -> Optional[dict[str, Any]]:
        ...

    async def analyze_tech_stack(self, job: EnrichmentJob) -> Optional[dict[str, Any]]:
        ...

    async def synthesize(
        self, job: EnrichmentJob, findings: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        ...

    async def persist(self, job: EnrichmentJob, result: dict[str, Any]) -> None:
        ...


async def _discard_progress(progress: JobProgress) -> None:
    return None


class EnrichmentPipeline:
    """Runs prepare, profile, company, tech stack, synthesis and persist.

    Profile, company and tech stack can be switched off per job. Those three
    and synthesis are fail-soft: a failure is logged, recorded in the result's
    ``errors`` and the pipeline continues with ``None`` for that finding.
    Prepare and persist are mandatory and raise.
    """

    def __init__(
        self, providers: EnrichmentProviders, config: Optional[PipelineConfig] = None
    ) -> None:
        self.providers = providers
        self.config = config or PipelineConfig()

    async def run(
        self, job: EnrichmentJob, report: Optional[ProgressCallback] = None
    ) -> JobResult:
        report = report or _discard_progress
        start = datetime.now(timezone.utc)
        errors: list[str] = []

        async def milestone(progress: int, status: str, message: str) -> None:
            await report(
                JobProgress(
                    progress=progress,
                    status=status,
                    message=message,
                    current_item=job.prospect_id,
                    start_time=start,
                )
            )

        logger.info(f"Starting enrichment for prospect {job.prospect_id} (job {job.job_id})")

        await milestone(5, "Creating Prospect", "Creating prospect record")
        prepared = await self._call("prepare", self.providers.prepare(job))

        findings: dict[str, Any] = {"profile": None, "company": None, "tech_stack": None}

        if job.services.profile:
            await milestone(15, "Profile Lookup", "Fetching profile data")
            findings["profile"] = await self._soft("profile", self.providers.fetch_profile(job), errors)
            await milestone(25, "Profile Lookup", "Profile lookup finished")
        else:
            await milestone(25, "Profile Lookup", "Profile lookup skipped")

        if job.services.company:
            pages = min(job.options.website_pages, self.config.max_website_pages)
            await milestone(35, "Company Analysis", f"Analyzing company website ({pages} pages)")
            findings["company"] = await self._soft(
                "company", self.providers.analyze_company(job, pages), errors
            )
            await milestone(45, "Company Analysis", "Company analysis finished")
        else:
            await milestone(45, "Company Analysis", "Company analysis skipped")

        if job.services.tech_stack:
            await milestone(60, "Tech Stack", "Analyzing technology stack")
            findings["tech_stack"] = await self._soft(
                "tech_stack", self.providers.analyze_tech_stack(job), errors
            )
            await milestone(65, "Tech Stack", "Tech stack analysis finished")
        else:
            await milestone(65, "Tech Stack", "Tech stack analysis skipped")

        await milestone(75, "Synthesis", "Generating prospect summary")
        synthesis = await self._soft("synthesis", self.providers.synthesize(job, findings), errors)
        await milestone(85, "Synthesis", "Summary generated")

        await milestone(95, "Saving", "Saving enrichment data")
        data = {
            "prospect_id": job.prospect_id,
            "prepared": prepared,
            "findings": findings,
            "synthesis": synthesis,
        }
        try:
            await self._call("persist", self.providers.persist(job, data))
        except PipelineStepError as exc:
            raise PersistenceStepError(exc.detail) from exc

        await milestone(100, "Completed", "Enrichment completed successfully")
        logger.info(
            f"Enrichment for prospect {job.prospect_id} finished with {len(errors)} soft failures"
        )
        return JobResult(
            success=True,
            message="Enrichment completed successfully",
            data=data,
            errors=errors,
        )

    async def _call(self, step: str, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self.config.call_timeout)
        except asyncio.TimeoutError as exc:
            raise PipelineStepError(
                step, f"timeout after {self.config.call_timeout}s"
            ) from exc
        except PipelineStepError:
            raise
        except Exception as exc:
            raise PipelineStepError(step, str(exc)) from exc

    async def _soft(self, step: str, call: Awaitable[Any], errors: list[str]) -> Any:
        try:
            return await self._call(step, call)
        except PipelineStepError as exc:
            logger.warning(f"Prospect enrichment sub-step failed, continuing: {exc}")
            errors.append(str(exc))
            return None
