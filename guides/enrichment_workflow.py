"""Drive a prospect enrichment session end to end.

Run with ``python guides/enrichment_workflow.py``. Everything stays in memory:
the repository, the job queue and a SQLite file for batch counters.
"""

import asyncio
import random
from pathlib import Path
from tempfile import TemporaryDirectory

from prospectflow import WorkflowEngine
from prospectflow.config import BatchConfig, ProspectflowConfig
from prospectflow.contracts import EnrichmentJob, ProspectData
from prospectflow.db import BatchDB
from prospectflow.jobs import EnrichmentPipeline, JobQueueAdapter
from prospectflow.models import WorkflowStep
from prospectflow.persistence import InMemoryWorkflowRepository
from prospectflow.transports import InMemoryTransport


class DemoProviders:
    """Stand-in enrichment providers with the occasional flaky call."""

    async def prepare(self, job):
        return {"prospect_id": job.prospect_id}

    async def fetch_profile(self, job):
        await asyncio.sleep(0.05)
        return {"headline": f"{job.prospect.position} at {job.prospect.company}"}

    async def analyze_company(self, job, pages):
        await asyncio.sleep(0.05)
        if random.random() < 0.3:
            raise RuntimeError("company website timeout")
        return {"pages_read": pages}

    async def analyze_tech_stack(self, job):
        return {"stack": ["python", "postgres"]}

    async def synthesize(self, job, findings):
        return {"summary": f"{job.prospect.name} looks like a good fit"}

    async def persist(self, job, result):
        print(f"  saved enrichment for {job.prospect.name}")


PROSPECTS = [
    ProspectData(name="Ada Lovelace", company="Analytical Engines", position="CTO"),
    ProspectData(name="Grace Hopper", company="Compilers Inc", position="VP Engineering"),
    ProspectData(name="Alan Turing", company="Bletchley Labs", position="Founder"),
]


async def configure_campaign(engine: WorkflowEngine, session_id: str) -> None:
    await engine.configure_step(
        session_id,
        WorkflowStep.UPLOAD_CSV,
        {"file_name": "leads.csv", "file_path": "/tmp/leads.csv", "headers": ["name", "email", "company"]},
    )
    await engine.complete_step(session_id, WorkflowStep.UPLOAD_CSV)

    await engine.configure_step(
        session_id,
        WorkflowStep.CAMPAIGN_SETTINGS,
        {"campaign_name": "Q4 outreach", "email_subject": "Quick question"},
    )
    await engine.complete_step(session_id, WorkflowStep.CAMPAIGN_SETTINGS)
    await engine.skip_step(session_id, WorkflowStep.ENRICHMENT_CONFIG, "using default services")


async def main() -> None:
    engine = WorkflowEngine(
        repository=InMemoryWorkflowRepository(), config=ProspectflowConfig()
    )
    session = await engine.start_workflow("demo-user", campaign_id=1)
    engine.progress.add_event_listener(
        session.id,
        lambda event: print(f"  [{event.type.value}] {event.step.value if event.step else ''}"),
    )
    print(f"Started session {session.id}")

    await configure_campaign(engine, session.id)

    with TemporaryDirectory() as tmp:
        batches = BatchDB(f"sqlite+aiosqlite:///{Path(tmp) / 'batches.db'}")
        await batches.init_db()
        batch = await batches.create_batch(len(PROSPECTS), campaign_id=1, user_id="demo-user")
        await engine.configure_step(session.id, WorkflowStep.BEGIN_ENRICHMENT, {"batch_id": batch.id})

        adapter = JobQueueAdapter(
            InMemoryTransport(),
            EnrichmentPipeline(DemoProviders()),
            progress_tracker=engine.progress,
            error_handler=engine.errors,
            session_store=engine.sessions,
            batch_db=batches,
            config=BatchConfig(concurrency=2, request_delay=0.1),
        )
        await engine.begin_step(session.id, WorkflowStep.BEGIN_ENRICHMENT)
        jobs = [
            EnrichmentJob(
                prospect_id=f"p-{i}",
                user_id="demo-user",
                session_id=session.id,
                batch_id=batch.id,
                prospect=prospect,
            )
            for i, prospect in enumerate(PROSPECTS)
        ]
        results = await adapter.run_batch(jobs)
        for job, result in zip(jobs, results):
            print(f"  {job.prospect.name}: {getattr(result, 'errors', result)}")

        batch = await batches.get_batch(batch.id)
        print(f"Batch {batch.id}: {batch.status} ({batch.enriched_prospects}/{batch.total_prospects})")
        await batches.close()

    await engine.complete_step(session.id, WorkflowStep.BEGIN_ENRICHMENT)
    await engine.complete_step(session.id, WorkflowStep.EMAIL_GENERATION)

    summary = await engine.progress.get_progress_summary(session.id)
    print(f"Overall progress {summary.overall_progress}%, completed={summary.is_completed}")
    for entry in await engine.state.get_workflow_history(session.id):
        print(f"  {entry.timestamp:%H:%M:%S} {entry.step.value:<18} {entry.description}")


if __name__ == "__main__":
    asyncio.run(main())
