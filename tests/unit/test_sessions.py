from datetime import timedelta

import pytest

from prospectflow.exceptions import (
    InvalidTransitionError,
    SessionNotFoundError,
    ValidationError,
)
from prospectflow.models import SessionFilter, WorkflowStatus, WorkflowStep, utcnow
from prospectflow.sessions import SessionStore


async def _created(repo, store, user, minutes_ago, **kwargs):
    session = await store.create_session(user, **kwargs)
    session.created_at = utcnow() - timedelta(minutes=minutes_ago)
    await repo.save_session(session)
    return session


@pytest.mark.asyncio
async def test_create_and_get_session(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1", campaign_id=7)

    assert session.id.startswith("ws_")
    assert session.status == WorkflowStatus.ACTIVE
    assert session.current_step == WorkflowStep.UPLOAD_CSV
    assert session.steps_completed == []

    loaded = await store.get_session(session.id)
    assert loaded == session


@pytest.mark.asyncio
async def test_create_requires_user(repo):
    store = SessionStore(repo)
    with pytest.raises(ValidationError):
        await store.create_session("")


@pytest.mark.asyncio
async def test_create_at_completed_step_is_completed(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1", initial_step=WorkflowStep.COMPLETED)
    assert session.status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_advance_is_idempotent(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1")

    await store.advance_to_next_step(session.id, WorkflowStep.CAMPAIGN_SETTINGS)
    session = await store.advance_to_next_step(session.id, WorkflowStep.CAMPAIGN_SETTINGS)

    assert session.steps_completed == [WorkflowStep.UPLOAD_CSV, WorkflowStep.CAMPAIGN_SETTINGS]
    assert session.steps_completed.count(WorkflowStep.UPLOAD_CSV) == 1
    assert session.status == WorkflowStatus.ACTIVE

    session = await store.advance_to_next_step(session.id, WorkflowStep.COMPLETED)
    assert session.status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_status_transitions(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1")

    paused = await store.pause_session(session.id)
    assert paused.status == WorkflowStatus.PAUSED
    assert paused.updated_at >= session.updated_at

    errored = await store.error_session(session.id, "boom")
    assert errored.status == WorkflowStatus.ERROR
    assert errored.error_message == "boom"

    resumed = await store.resume_session(session.id)
    assert resumed.status == WorkflowStatus.ACTIVE
    assert resumed.error_message is None

    abandoned = await store.abandon_session(session.id, "user left")
    assert abandoned.status == WorkflowStatus.ABANDONED

    completed = await store.complete_session(session.id)
    assert completed.current_step == WorkflowStep.COMPLETED
    assert completed.status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "transition",
    [
        lambda store, sid: store.pause_session(sid),
        lambda store, sid: store.resume_session(sid),
        lambda store, sid: store.abandon_session(sid, "gone"),
        lambda store, sid: store.error_session(sid, "boom"),
    ],
    ids=["pause", "resume", "abandon", "error"],
)
async def test_completed_session_rejects_status_changes(repo, transition):
    store = SessionStore(repo)
    session = await store.create_session("user-1", initial_step=WorkflowStep.COMPLETED)

    with pytest.raises(InvalidTransitionError):
        await transition(store, session.id)

    stored = await store.get_session(session.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.current_step == WorkflowStep.COMPLETED


@pytest.mark.asyncio
async def test_update_rejects_mismatched_status_and_step(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1")

    with pytest.raises(InvalidTransitionError):
        await store.update_session(session.id, status=WorkflowStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        await store.update_session(session.id, current_step=WorkflowStep.COMPLETED)

    stored = await store.get_session(session.id)
    assert stored.status == WorkflowStatus.ACTIVE
    assert stored.current_step == WorkflowStep.UPLOAD_CSV


@pytest.mark.asyncio
async def test_update_unknown_session_and_fields(repo):
    store = SessionStore(repo)
    with pytest.raises(SessionNotFoundError):
        await store.update_session("missing", status=WorkflowStatus.PAUSED)

    session = await store.create_session("user-1")
    with pytest.raises(ValidationError):
        await store.update_session(session.id, id="other")


@pytest.mark.asyncio
async def test_update_configuration_merges(repo):
    store = SessionStore(repo)
    session = await store.create_session("user-1", configuration={"a": 1})
    session = await store.update_configuration(session.id, {"b": 2})
    assert session.configuration_data == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_find_active_session_picks_newest(repo):
    store = SessionStore(repo)
    older = await _created(repo, store, "user-1", minutes_ago=10)
    newer = await store.create_session("user-1")
    await store.create_session("user-2")
    paused = await store.create_session("user-1")
    await store.pause_session(paused.id)

    found = await store.find_active_session_by_user("user-1")
    assert found.id == newer.id
    assert found.id != older.id

    with pytest.raises(SessionNotFoundError):
        await store.find_active_session_by_user("nobody")


@pytest.mark.asyncio
async def test_search_sessions_filters_and_pages(repo):
    store = SessionStore(repo)
    ids = [
        (await _created(repo, store, "user-1", minutes_ago=m, campaign_id=1)).id
        for m in (30, 20, 10)
    ]
    await store.create_session("user-2", campaign_id=2)

    page = await store.search_sessions(SessionFilter(user_session_id="user-1"), offset=0, limit=2)
    assert page.total == 3
    assert page.has_more is True
    assert [s.id for s in page.items] == list(reversed(ids))[:2]

    page = await store.search_sessions(SessionFilter(campaign_id=2))
    assert page.total == 1
    assert page.has_more is False

    future = utcnow() + timedelta(days=1)
    page = await store.search_sessions(SessionFilter(created_after=future))
    assert page.total == 0


@pytest.mark.asyncio
async def test_session_statistics(repo):
    store = SessionStore(repo)
    a = await store.create_session("user-1")
    await store.create_session("user-2")
    await store.complete_session(a.id)

    stats = await store.get_session_statistics()
    assert stats.total == 2
    assert stats.by_status[WorkflowStatus.COMPLETED] == 1
    assert stats.by_status[WorkflowStatus.ACTIVE] == 1
    assert stats.by_step[WorkflowStep.COMPLETED] == 1
    assert stats.completion_rate == 50.0
    assert stats.average_duration >= 0
    assert sum(a.count for a in stats.recent_activity) == 2


@pytest.mark.asyncio
async def test_delete_session(repo, locks):
    store = SessionStore(repo, locks)
    session = await store.create_session("user-1")
    await store.pause_session(session.id)
    assert session.id in locks

    await store.delete_session(session.id)
    assert session.id not in locks
    with pytest.raises(SessionNotFoundError):
        await store.get_session(session.id)
    with pytest.raises(SessionNotFoundError):
        await store.delete_session(session.id)
