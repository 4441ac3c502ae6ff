import pytest

from pipewright.config import PipewrightConfig, load_config
from pipewright.constants import DEFAULT_INTERVALS


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("PIPEWRIGHT_SCHEDULER", raising=False)
    monkeypatch.delenv("PIPEWRIGHT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.scheduler.backend == "inmemory"
    assert config.packet_storage.backend == "inmemory"
    assert config.settings.max_turns == 12
    assert config.settings.enabled_tools is None
    assert config.intervals == DEFAULT_INTERVALS
    assert config.database_url is None


def test_yaml_loaded_from_env_path(tmp_path, monkeypatch):
    path = tmp_path / "pipewright.yaml"
    path.write_text(
        """
scheduler:
  backend: redis
  redis:
    host: cache
    port: 6380
packet_storage:
  backend: filesystem
  base_path: /var/lib/pipewright
settings:
  max_turns: 4
  enabled_tools:
    web_search: false
intervals:
  every_minute: 60
extra_final_statuses: [archived]
"""
    )
    monkeypatch.setenv("PIPEWRIGHT_CONFIG", str(path))
    monkeypatch.delenv("PIPEWRIGHT_SCHEDULER", raising=False)
    monkeypatch.delenv("PIPEWRIGHT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()

    assert config.scheduler.backend == "redis"
    assert config.scheduler.redis.host == "cache"
    assert config.scheduler.redis.port == 6380
    assert config.packet_storage.base_path == "/var/lib/pipewright"
    assert config.settings.max_turns == 4
    assert config.settings.enabled_tools == {"web_search": False}
    assert config.intervals == {"every_minute": 60}
    assert config.extra_final_statuses == ["archived"]


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("PIPEWRIGHT_SCHEDULER", "REDIS")
    monkeypatch.setenv("PIPEWRIGHT_DATABASE_URL", "sqlite:///jobs.db")

    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.scheduler.backend == "redis"
    assert config.database_url == "sqlite:///jobs.db"


def test_invalid_backend_rejected():
    with pytest.raises(ValueError):
        PipewrightConfig(scheduler={"backend": "kafka"})
