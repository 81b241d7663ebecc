"""Session-keyed storage for sessions, progress, state and the error ledger."""

from __future__ import annotations

import logging
import os
from typing import Callable, Dict, Optional

from ..config import ProspectflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

logger = logging.getLogger(__name__)

_repository_instance: WorkflowRepository | None = None

_BACKENDS: Dict[str, Callable[[str], WorkflowRepository]] = {
    "sqlite": lambda url: SQLiteWorkflowRepository(url.split("://", 1)[1]),
    "postgres": PostgresWorkflowRepository,
    "postgresql": PostgresWorkflowRepository,
}


def _resolve_url(database_url: Optional[str], config: ProspectflowConfig) -> Optional[str]:
    return (
        database_url
        or os.getenv("PROSPECTFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )


def get_repository(
    database_url: Optional[str] = None, config: Optional[ProspectflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide workflow repository.

    With no arguments the cached repository is reused. Otherwise the URL is
    taken from ``database_url``, ``PROSPECTFLOW_DATABASE_URL``,
    ``DATABASE_URL`` or ``config.database_url`` and its scheme picks the
    backend (``sqlite://<path>`` or ``postgres[ql]://...``). Without any URL
    the sessions live in memory.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = _resolve_url(database_url, config or load_config())
    if not url:
        _repository_instance = InMemoryWorkflowRepository()
    else:
        scheme = url.split("://", 1)[0].lower()
        factory = _BACKENDS.get(scheme)
        if factory is None:
            raise ValueError(f"Unsupported database backend: {url}")
        _repository_instance = factory(url)
    logger.info(f"Using {type(_repository_instance).__name__} for workflow state")
    return _repository_instance


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
