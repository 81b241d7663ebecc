"""Tests for configuration loading."""

import pydantic
import pytest

from prospectflow.config import load_config
from prospectflow.transports import get_transport
from prospectflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
retry:
  rate_limit_delay_ms: 500
batch:
  concurrency: 5
pipeline:
  call_timeout: 10
"""
    )
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.retry.rate_limit_delay_ms == 500
    assert config.retry.service_unavailable_delay_ms == 30000
    assert config.batch.concurrency == 5
    assert config.pipeline.call_timeout == 10


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PROSPECTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.database_url is None
    assert config.retry.default_delay_ms == 1000
    assert config.batch.concurrency == 3
    assert config.pipeline.max_website_pages == 10


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("PROSPECTFLOW_DATABASE_URL", "sqlite://" + str(tmp_path / "wf.db"))
    monkeypatch.setenv("PROSPECTFLOW_BATCH_DATABASE_URL", "sqlite+aiosqlite:///batches.db")
    monkeypatch.setenv("PROSPECTFLOW_LOG_LEVEL", "DEBUG")

    config = load_config()
    assert config.database_url.endswith("wf.db")
    assert config.batch_database_url == "sqlite+aiosqlite:///batches.db"
    assert config.log_level == "DEBUG"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("PROSPECTFLOW_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_invalid_batch_settings_are_rejected(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("batch:\n  concurrency: 0\n")
    monkeypatch.setenv("PROSPECTFLOW_CONFIG", str(config_path))

    with pytest.raises(pydantic.ValidationError):
        load_config()
