from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BATCH_CONCURRENCY,
    DEFAULT_ACCOUNTED_CACHE_SIZE,
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_JOB_BACKOFF_BASE,
    DEFAULT_MAX_JOB_ATTEMPTS,
    DEFAULT_REQUEST_DELAY,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_WEBSITE_PAGES,
    MAX_WEBSITE_PAGES,
    RATE_LIMIT_RETRY_DELAY_MS,
    SERVICE_UNAVAILABLE_RETRY_DELAY_MS,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class RetryConfig(BaseModel):
    """Backoff delays used by automated retry recovery."""

    rate_limit_delay_ms: int = Field(RATE_LIMIT_RETRY_DELAY_MS, ge=0)
    service_unavailable_delay_ms: int = Field(SERVICE_UNAVAILABLE_RETRY_DELAY_MS, ge=0)
    default_delay_ms: int = Field(DEFAULT_RETRY_DELAY_MS, ge=0)


class BatchConfig(BaseModel):
    """Admission control for batch enrichment runs."""

    concurrency: int = Field(DEFAULT_BATCH_CONCURRENCY, ge=1)
    request_delay: float = Field(DEFAULT_REQUEST_DELAY, ge=0)
    max_attempts: int = Field(DEFAULT_MAX_JOB_ATTEMPTS, ge=1)
    backoff_base: float = Field(DEFAULT_JOB_BACKOFF_BASE, ge=0)
    accounted_cache_size: int = Field(DEFAULT_ACCOUNTED_CACHE_SIZE, ge=1)


class PipelineConfig(BaseModel):
    """Per-prospect enrichment pipeline settings."""

    call_timeout: float = Field(DEFAULT_CALL_TIMEOUT, gt=0)
    website_pages: int = Field(DEFAULT_WEBSITE_PAGES, ge=1)
    max_website_pages: int = Field(MAX_WEBSITE_PAGES, ge=1)


class ProspectflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    batch_database_url: Optional[str] = None
    retry: RetryConfig = RetryConfig()
    batch: BatchConfig = BatchConfig()
    pipeline: PipelineConfig = PipelineConfig()
    log_level: str = "INFO"


# environment variable -> top-level field; the first variable set wins
ENV_OVERRIDES = (
    ("PROSPECTFLOW_DATABASE_URL", "database_url"),
    ("DATABASE_URL", "database_url"),
    ("PROSPECTFLOW_BATCH_DATABASE_URL", "batch_database_url"),
    ("PROSPECTFLOW_LOG_LEVEL", "log_level"),
)


def load_config(path: Optional[str] = None) -> ProspectflowConfig:
    """Load configuration from YAML, then apply environment overrides.

    The file is ``path``, else ``$PROSPECTFLOW_CONFIG``, else ``config.yaml``
    in the working directory. A missing file yields the defaults.
    """
    config_path = Path(path or os.getenv("PROSPECTFLOW_CONFIG", "config.yaml"))
    data = {}
    if config_path.exists():
        data = yaml.safe_load(config_path.read_text()) or {}

    overridden = set()
    for env_var, field in ENV_OVERRIDES:
        value = os.getenv(env_var)
        if value and field not in overridden:
            data[field] = value
            overridden.add(field)
    return ProspectflowConfig(**data)
