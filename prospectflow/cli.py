"""Command line interface for operating prospectflow sessions and workers."""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .config import ProspectflowConfig, load_config
from .constants import ENRICHMENT_TOPIC
from .db import DEFAULT_BATCH_DATABASE_URL, BatchDB
from .engine import WorkflowEngine
from .exceptions import ProspectflowError
from .jobs import EnrichmentPipeline, JobQueueAdapter
from .models import SessionFilter, WorkflowStatus
from .persistence import get_repository
from .transports import get_transport

app = typer.Typer(help="CLI for prospectflow workflow sessions")

session_app = typer.Typer(help="Inspect and manage workflow sessions")
state_app = typer.Typer(help="Export, import and maintain persisted workflow state")
errors_app = typer.Typer(help="Error catalog and statistics")
worker_app = typer.Typer(help="Run enrichment workers")

app.add_typer(session_app, name="session")
app.add_typer(state_app, name="state")
app.add_typer(errors_app, name="errors")
app.add_typer(worker_app, name="worker")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
    log_level: Optional[str] = typer.Option(None, help="Logging level, e.g. DEBUG"),
) -> None:
    """prospectflow CLI entry point."""
    loaded = load_config(str(config) if config else None)
    logging.basicConfig(level=(log_level or loaded.log_level).upper())
    ctx.obj = loaded


def _engine(ctx: typer.Context) -> WorkflowEngine:
    config: ProspectflowConfig = ctx.obj or load_config()
    repository = (
        get_repository(config.database_url) if config.database_url else get_repository()
    )
    return WorkflowEngine(repository=repository, config=config)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except ProspectflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


# ----------------------------------------------------------------------
# session


@session_app.command("list")
def session_list(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, help="Filter by user session id"),
    status: Optional[WorkflowStatus] = typer.Option(None, help="Filter by status"),
    limit: int = typer.Option(50, help="Maximum sessions to show"),
) -> None:
    """
    List workflow sessions, newest first.

    Example:
        prospectflow session list --status ACTIVE
        # Output: ws_3f2a...    ACTIVE    CAMPAIGN_SETTINGS    user-1
    """
    engine = _engine(ctx)
    page = _run(
        engine.sessions.search_sessions(
            SessionFilter(user_session_id=user, status=status), limit=limit
        )
    )
    if not page.items:
        typer.echo("No sessions found")
        return
    for session in page.items:
        typer.echo(
            f"{session.id}\t{session.status.value}\t{session.current_step.value}\t{session.user_session_id}"
        )
    if page.has_more:
        typer.echo(f"... {page.total - len(page.items)} more")


@session_app.command("show")
def session_show(ctx: typer.Context, session_id: str) -> None:
    """Show a session with its step table and overall progress."""
    engine = _engine(ctx)

    async def load() -> tuple[Any, Any]:
        session = await engine.sessions.get_session(session_id)
        progress = await engine.progress.get_progress(session_id)
        return session, progress

    session, progress = _run(load())
    typer.echo(f"Session {session.id}: {session.status.value} at {session.current_step.value}")
    typer.echo(f"Overall progress: {progress.overall_progress}%")
    if session.error_message:
        typer.echo(f"Error: {session.error_message}")
    for step, entry in progress.steps.items():
        line = f"- {step.value}: {entry.status.value} ({entry.progress:g}%)"
        if entry.errors:
            line += f" errors={len(entry.errors)}"
        typer.echo(line)


@session_app.command("delete")
def session_delete(ctx: typer.Context, session_id: str) -> None:
    """Delete a session with its progress, state and error history."""
    engine = _engine(ctx)
    _run(engine.delete_workflow(session_id))
    typer.echo(f"Deleted session {session_id}")


# ----------------------------------------------------------------------
# state


@state_app.command("export")
def state_export(
    ctx: typer.Context,
    session_id: str,
    output: Optional[Path] = typer.Option(None, help="Write to file instead of stdout"),
) -> None:
    """Export a session's persisted state as a versioned JSON document."""
    engine = _engine(ctx)
    document = _run(engine.state.export_state(session_id))
    if output is None:
        typer.echo(document)
        return
    output.write_text(document)
    typer.echo(f"Exported {session_id} to {output}")


@state_app.command("import")
def state_import(ctx: typer.Context, session_id: str, source: Path) -> None:
    """Import an exported state document under SESSION_ID."""
    if not source.exists():
        typer.secho("Specified file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    engine = _engine(ctx)
    state = _run(engine.state.import_state(session_id, source.read_text(), modified_by="cli"))
    typer.echo(
        f"Imported state into {session_id} at {state.session.current_step.value} "
        f"with {len(state.metadata.checkpoints)} checkpoints"
    )


@state_app.command("history")
def state_history(ctx: typer.Context, session_id: str) -> None:
    """Show the checkpoint history of a session."""
    engine = _engine(ctx)
    history = _run(engine.state.get_workflow_history(session_id))
    if not history:
        typer.echo("No checkpoints recorded")
        return
    for index, entry in enumerate(history):
        progress = "-" if entry.progress is None else f"{entry.progress}%"
        typer.echo(
            f"[{index}] {entry.timestamp.isoformat()} {entry.step.value} {progress} {entry.description}"
        )


@state_app.command("cleanup")
def state_cleanup(
    ctx: typer.Context,
    days: int = typer.Option(30, help="Delete states not modified for this many days"),
) -> None:
    """Delete persisted states older than DAYS."""
    engine = _engine(ctx)
    result = _run(engine.state.cleanup_old_states(days))
    typer.echo(f"Deleted {result.deleted_count} states, {result.remaining_count} remaining")


# ----------------------------------------------------------------------
# errors


@errors_app.command("stats")
def errors_stats(
    ctx: typer.Context,
    session_id: Optional[str] = typer.Option(None, "--session", help="Limit to one session"),
) -> None:
    """Show error counts by category, severity and code."""
    engine = _engine(ctx)
    stats = _run(engine.errors.get_error_statistics(session_id))
    typer.echo(_dump(stats.model_dump(mode="json")))


@errors_app.command("catalog")
def errors_catalog(ctx: typer.Context) -> None:
    """List the known error codes."""
    engine = _engine(ctx)
    for code, definition in engine.errors.get_error_definitions().items():
        recoverable = "recoverable" if definition.recoverable else "fatal"
        typer.echo(
            f"{code}\t{definition.category.value}\t{definition.severity.value}\t{recoverable}"
        )


# ----------------------------------------------------------------------
# worker


def _load_providers(spec: str) -> Any:
    module_name, _, attr = spec.partition(":")
    if not attr:
        raise typer.BadParameter("expected 'module:attribute'")
    target = getattr(importlib.import_module(module_name), attr)
    return target() if callable(target) else target


@worker_app.command("run")
def worker_run(
    ctx: typer.Context,
    providers: str = typer.Argument(..., help="Enrichment providers as 'module:attribute'"),
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    batch_db: Optional[str] = typer.Option(None, help="Batch counter database URL"),
) -> None:
    """
    Run an enrichment worker.

    The worker consumes jobs from the configured transport, reports progress
    into each job's session and updates batch counters.

    Example:
        prospectflow worker run myapp.enrichment:build_providers --lifespan 300
    """
    engine = _engine(ctx)
    config = engine.config
    pipeline = EnrichmentPipeline(_load_providers(providers), config.pipeline)

    async def run() -> None:
        batches = BatchDB(batch_db or config.batch_database_url or DEFAULT_BATCH_DATABASE_URL)
        await batches.init_db()
        try:
            async with get_transport(config=config) as transport:
                adapter = JobQueueAdapter(
                    transport,
                    pipeline,
                    progress_tracker=engine.progress,
                    error_handler=engine.errors,
                    session_store=engine.sessions,
                    batch_db=batches,
                    config=config.batch,
                )
                await adapter.start(lifespan=lifespan)
        finally:
            await batches.close()

    typer.echo(f"Starting enrichment worker on {ENRICHMENT_TOPIC}")
    _run(run())
