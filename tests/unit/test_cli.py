import asyncio
import json
import sys
import types

import pytest
from typer.testing import CliRunner

import prospectflow.cli as cli
import prospectflow.persistence as persistence
from prospectflow.cli import app
from prospectflow.config import ProspectflowConfig
from prospectflow.engine import WorkflowEngine
from prospectflow.models import ErrorContext, ErrorInfo
from prospectflow.persistence import InMemoryWorkflowRepository
from prospectflow.transports.inmemory import InMemoryTransport


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PROSPECTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


def _setup_engine() -> WorkflowEngine:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return WorkflowEngine(repository=repo, config=ProspectflowConfig())


def test_session_list_and_show():
    engine = _setup_engine()
    session = asyncio.run(engine.start_workflow("user-1", campaign_id=3))

    runner = CliRunner()
    result = runner.invoke(app, ["session", "list"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert session.id in result.stdout
    assert "ACTIVE" in result.stdout

    result = runner.invoke(app, ["session", "list", "--user", "someone-else"])
    assert result.exit_code == 0
    assert "No sessions found" in result.stdout

    result = runner.invoke(app, ["session", "show", session.id])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Overall progress: 0%" in result.stdout
    assert "- UPLOAD_CSV: pending (0%)" in result.stdout


def test_session_show_missing():
    _setup_engine()
    runner = CliRunner()
    result = runner.invoke(app, ["session", "show", "missing-id"])
    assert result.exit_code == 1
    assert "Workflow session not found" in result.stdout


def test_session_delete():
    engine = _setup_engine()
    session = asyncio.run(engine.start_workflow("user-1"))

    runner = CliRunner()
    result = runner.invoke(app, ["session", "delete", session.id])
    assert result.exit_code == 0
    assert f"Deleted session {session.id}" in result.stdout

    result = runner.invoke(app, ["session", "delete", session.id])
    assert result.exit_code == 1


def test_state_export_import_and_history(tmp_path):
    engine = _setup_engine()
    session = asyncio.run(engine.start_workflow("user-1"))
    export_path = tmp_path / "state.json"

    runner = CliRunner()
    result = runner.invoke(app, ["state", "export", session.id, "--output", str(export_path)])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert json.loads(export_path.read_text())["version"] == "1.0.0"

    result = runner.invoke(app, ["state", "import", "copied", str(export_path)])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "with 1 checkpoints" in result.stdout

    result = runner.invoke(app, ["state", "history", "copied"])
    assert result.exit_code == 0
    assert "UPLOAD_CSV 0% Workflow started" in result.stdout

    state = asyncio.run(engine.state.load_state("copied"))
    assert state.metadata.last_modified_by == "cli"


def test_state_import_rejects_bad_input(tmp_path):
    _setup_engine()
    runner = CliRunner()

    result = runner.invoke(app, ["state", "import", "x", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "Specified file does not exist" in result.stdout

    document = tmp_path / "old.json"
    document.write_text(json.dumps({"version": "0.9.0", "state": {}}))
    result = runner.invoke(app, ["state", "import", "x", str(document)])
    assert result.exit_code == 1
    assert "Unsupported export version: 0.9.0" in result.stdout


def test_state_cleanup_keeps_recent_states():
    engine = _setup_engine()
    asyncio.run(engine.start_workflow("user-1"))

    runner = CliRunner()
    result = runner.invoke(app, ["state", "cleanup", "--days", "30"])
    assert result.exit_code == 0
    assert "Deleted 0 states, 1 remaining" in result.stdout


def test_errors_catalog_and_stats():
    engine = _setup_engine()
    session = asyncio.run(engine.start_workflow("user-1"))
    asyncio.run(
        engine.errors.handle_error(
            ErrorContext(session_id=session.id, error=ErrorInfo(message="rate limit hit"))
        )
    )

    runner = CliRunner()
    result = runner.invoke(app, ["errors", "catalog"])
    assert result.exit_code == 0
    assert "API_RATE_LIMIT_EXCEEDED\texternal\tmedium\trecoverable" in result.stdout
    assert "INSUFFICIENT_API_CREDITS\tuser\tcritical\tfatal" in result.stdout

    result = runner.invoke(app, ["errors", "stats", "--session", session.id])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    stats = json.loads(result.stdout)
    assert stats["total_errors"] == 1
    assert stats["common_errors"] == [{"code": "API_RATE_LIMIT_EXCEEDED", "count": 1}]


def test_worker_run_requires_module_attribute():
    _setup_engine()
    runner = CliRunner()
    result = runner.invoke(app, ["worker", "run", "prospectflow.jobs"])
    assert result.exit_code == 2


class RecordingTransport(InMemoryTransport):
    def __init__(self):
        super().__init__(poll_interval=0.01)
        self.calls = []

    async def connect(self):
        self.calls.append("connect")

    async def disconnect(self):
        self.calls.append("disconnect")


def test_worker_run_closes_its_transport(tmp_path, monkeypatch):
    _setup_engine()
    transport = RecordingTransport()
    monkeypatch.setattr(cli, "get_transport", lambda config=None: transport)
    providers_module = types.ModuleType("demo_providers")
    providers_module.providers = types.SimpleNamespace()
    monkeypatch.setitem(sys.modules, "demo_providers", providers_module)

    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "worker",
            "run",
            "demo_providers:providers",
            "--lifespan",
            "0.05",
            "--batch-db",
            f"sqlite+aiosqlite:///{tmp_path / 'batches.db'}",
        ],
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert transport.calls == ["connect", "disconnect"]
