import asyncio
from typing import Any, Optional

import pytest

from prospectflow.config import ProspectflowConfig
from prospectflow.contracts import EnrichmentJob
from prospectflow.engine import WorkflowEngine
from prospectflow.locks import SessionLocks
from prospectflow.persistence import InMemoryWorkflowRepository


class FakeProviders:
    """Enrichment providers with scriptable failures and delays."""

    def __init__(self) -> None:
        self.fail: dict[str, Exception] = {}
        self.fail_times: dict[str, int] = {}
        self.calls: list[str] = []
        self.persisted: list[dict[str, Any]] = []
        self.hang: set[str] = set()

    async def _step(self, name: str, value: Any) -> Any:
        self.calls.append(name)
        if name in self.hang:
            await asyncio.sleep(3600)
        remaining = self.fail_times.get(name)
        if remaining is not None:
            if remaining > 0:
                self.fail_times[name] = remaining - 1
                raise RuntimeError(f"{name} exploded")
        elif name in self.fail:
            raise self.fail[name]
        return value

    async def prepare(self, job: EnrichmentJob) -> dict[str, Any]:
        return await self._step("prepare", {"prospect_id": job.prospect_id})

    async def fetch_profile(self, job: EnrichmentJob) -> Optional[dict[str, Any]]:
        return await self._step("profile", {"headline": "CTO"})

    async def analyze_company(self, job: EnrichmentJob, pages: int) -> Optional[dict[str, Any]]:
        return await self._step("company", {"pages": pages})

    async def analyze_tech_stack(self, job: EnrichmentJob) -> Optional[dict[str, Any]]:
        return await self._step("tech_stack", {"stack": ["python"]})

    async def synthesize(self, job: EnrichmentJob, findings: dict[str, Any]) -> Optional[dict[str, Any]]:
        return await self._step("synthesis", {"summary": "great fit"})

    async def persist(self, job: EnrichmentJob, result: dict[str, Any]) -> None:
        await self._step("persist", None)
        self.persisted.append(result)


@pytest.fixture
def repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def locks() -> SessionLocks:
    return SessionLocks()


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def engine(repo) -> WorkflowEngine:
    return WorkflowEngine(repository=repo, config=ProspectflowConfig())
