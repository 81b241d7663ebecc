import json
from datetime import timedelta

import pytest

from prospectflow.exceptions import (
    CheckpointIndexError,
    IncompatibleStateVersionError,
    InvalidStateDocumentError,
    StateNotFoundError,
)
from prospectflow.models import (
    ErrorContext,
    ErrorInfo,
    WorkflowProgress,
    WorkflowSession,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from prospectflow.state import StateManager


async def _saved(manager: StateManager, session_id: str = "s1", configuration=None):
    session = WorkflowSession(id=session_id, user_session_id="user-1")
    return await manager.save_state(
        session_id, session, WorkflowProgress.initial(), configuration
    )


@pytest.mark.asyncio
async def test_save_and_load_state(repo):
    manager = StateManager(repo)
    await _saved(manager, configuration={"csv_upload": {"file_name": "leads.csv"}})

    state = await manager.load_state("s1")
    assert state.metadata.version == "1.0.0"
    assert state.metadata.created_by == "user-1"
    assert state.metadata.checkpoints == []
    assert state.configuration["csv_upload"]["file_name"] == "leads.csv"

    with pytest.raises(StateNotFoundError):
        await manager.load_state("missing")


@pytest.mark.asyncio
async def test_checkpoint_log_only_grows(repo):
    manager = StateManager(repo)
    await _saved(manager, configuration={"a": 1})

    await manager.create_checkpoint("s1", WorkflowStep.UPLOAD_CSV, "first")
    await manager.update_configuration("s1", {"b": 2})
    await manager.create_checkpoint("s1", WorkflowStep.CAMPAIGN_SETTINGS, "second")

    state = await manager.restore_from_checkpoint("s1", 0)
    assert state.configuration == {"a": 1}
    assert state.session.current_step == WorkflowStep.UPLOAD_CSV
    assert state.session.status == WorkflowStatus.ACTIVE

    history = await manager.get_workflow_history("s1")
    assert [h.description for h in history] == [
        "first",
        "second",
        "Restored from checkpoint 0",
    ]
    restored = (await manager.load_state("s1")).metadata.checkpoints[-1]
    assert restored.snapshot.restored_from == 0

    with pytest.raises(CheckpointIndexError):
        await manager.restore_from_checkpoint("s1", 3)
    with pytest.raises(CheckpointIndexError):
        await manager.restore_from_checkpoint("s1", -1)
    assert len(await manager.get_workflow_history("s1")) == 3

    original = 3
    targets = [2, 3, 1, 4, 0]
    for n, index in enumerate(targets, start=1):
        await manager.restore_from_checkpoint("s1", index)
        assert len(await manager.get_workflow_history("s1")) == original + n

    checkpoints = (await manager.load_state("s1")).metadata.checkpoints
    assert [c.snapshot.restored_from for c in checkpoints[original:]] == targets
    assert [c.snapshot.description for c in checkpoints[:2]] == ["first", "second"]


@pytest.mark.asyncio
async def test_export_import_preserves_checkpoints(repo):
    manager = StateManager(repo)
    await _saved(manager, configuration={"campaign_settings": {"campaign_name": "Q4"}})
    await manager.create_checkpoint("s1", WorkflowStep.UPLOAD_CSV, "start")

    document = await manager.export_state("s1")
    raw = json.loads(document)
    assert raw["version"] == "1.0.0"
    assert raw["session_id"] == "s1"

    state = await manager.import_state("copy", document)
    assert state.session.id == "copy"
    assert state.metadata.last_modified_by == "import"
    assert len(state.metadata.checkpoints) == 1
    assert (await manager.load_state("copy")).configuration == {
        "campaign_settings": {"campaign_name": "Q4"}
    }


@pytest.mark.asyncio
async def test_import_rejects_other_versions_without_writing(repo):
    manager = StateManager(repo)
    await _saved(manager)
    raw = json.loads(await manager.export_state("s1"))
    raw["version"] = "2.0.0"

    with pytest.raises(IncompatibleStateVersionError):
        await manager.import_state("other", json.dumps(raw))
    with pytest.raises(StateNotFoundError):
        await manager.load_state("other")


@pytest.mark.asyncio
async def test_import_rejects_malformed_documents(repo):
    manager = StateManager(repo)
    with pytest.raises(InvalidStateDocumentError):
        await manager.import_state("x", "not json")
    with pytest.raises(InvalidStateDocumentError):
        await manager.import_state("x", "[1, 2]")
    with pytest.raises(InvalidStateDocumentError):
        await manager.import_state("x", json.dumps({"version": "1.0.0"}))
    with pytest.raises(InvalidStateDocumentError):
        await manager.import_state("x", json.dumps({"version": "1.0.0", "state": {"bad": 1}}))


@pytest.mark.asyncio
async def test_state_summary(repo):
    manager = StateManager(repo)
    await _saved(manager, configuration={"csv_upload": {"file_name": "leads.csv"}})
    summary = await manager.get_state_summary("s1")
    assert summary.configuration_complete is False
    assert summary.checkpoint_count == 0

    await manager.update_configuration("s1", {"campaign_settings": {"campaign_name": "Q4"}})
    await manager.add_error(
        "s1", ErrorContext(session_id="s1", error=ErrorInfo(message="boom"))
    )
    summary = await manager.get_state_summary("s1")
    assert summary.configuration_complete is True
    assert summary.error_count == 1

    await manager.clear_errors("s1")
    assert (await manager.get_state_summary("s1")).error_count == 0


@pytest.mark.asyncio
async def test_sync_progress_moves_session_step(repo):
    manager = StateManager(repo)
    await _saved(manager)
    progress = WorkflowProgress.initial()
    progress.current_step = WorkflowStep.ENRICHMENT_CONFIG

    state = await manager.sync_progress("s1", progress)
    assert state.session.current_step == WorkflowStep.ENRICHMENT_CONFIG


@pytest.mark.asyncio
async def test_cleanup_old_states(repo):
    manager = StateManager(repo)
    await _saved(manager, "fresh")
    stale = await _saved(manager, "stale")
    stale.session.updated_at = utcnow() - timedelta(days=45)
    await repo.save_state("stale", stale)

    listing = {entry.session_id for entry in await manager.list_states()}
    assert listing == {"fresh", "stale"}

    result = await manager.cleanup_old_states(30)
    assert result.deleted_count == 1
    assert result.remaining_count == 1
    assert await manager.delete_state("stale") is False
    assert await manager.delete_state("fresh") is True


@pytest.mark.asyncio
async def test_imported_naive_timestamps_are_read_as_utc(repo):
    manager = StateManager(repo)
    await _saved(manager, "fresh")
    raw = json.loads(await manager.export_state("fresh"))
    raw["state"]["session"]["updated_at"] = "2020-01-01T00:00:00"

    state = await manager.import_state("legacy", json.dumps(raw))
    assert state.session.updated_at.tzinfo is not None
    assert state.session.updated_at.utcoffset() == timedelta(0)

    result = await manager.cleanup_old_states(30)
    assert result.deleted_count == 1
    assert result.remaining_count == 1
    assert {entry.session_id for entry in await manager.list_states()} == {"fresh"}
