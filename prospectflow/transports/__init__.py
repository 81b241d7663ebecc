"""Queues carrying enrichment jobs and forwarded workflow events."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProspectflowConfig, TransportConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport

TRANSPORT_ENV_VAR = "PROSPECTFLOW_TRANSPORT"


def _build(backend: str, settings: TransportConfig) -> BaseTransport:
    if backend in ("inmemory", "memory"):
        return InMemoryTransport()
    if backend == "redis":
        from .redis import RedisTransport

        return RedisTransport(**settings.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {backend}")


def get_transport(
    backend: Optional[str] = None, config: Optional[ProspectflowConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``.

    Falls back to ``$PROSPECTFLOW_TRANSPORT`` and then to
    ``config.transport.backend``. The redis client module is only imported
    when the redis backend is selected.
    """
    config = config or load_config()
    name = backend or os.getenv(TRANSPORT_ENV_VAR) or config.transport.backend
    return _build(name.lower(), config.transport)


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
