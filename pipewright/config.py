from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_INTERVALS, DEFAULT_MAX_TURNS, DEFAULT_TIMEOUT_HOURS


class RedisConfig(BaseModel):
    """Configuration for the Redis scheduler backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class SchedulerConfig(BaseModel):
    """Task scheduler settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class PacketStorageConfig(BaseModel):
    """Where staged data packets live between steps."""

    backend: Literal["inmemory", "filesystem"] = "inmemory"
    base_path: str = ".pipewright/packets"


class EngineSettings(BaseModel):
    """Runtime behaviour of the engine and the AI agent."""

    max_turns: int = DEFAULT_MAX_TURNS
    cleanup_job_data_on_failure: bool = True
    default_provider: str = ""
    default_model: str = ""
    # ``None`` means opt-out: every configured tool is enabled.
    enabled_tools: Optional[Dict[str, bool]] = None
    stuck_job_timeout_hours: int = DEFAULT_TIMEOUT_HOURS
    provider_timeout_seconds: float = 120.0
    tool_timeout_seconds: float = 60.0


class PipewrightConfig(BaseModel):
    """Top-level configuration model."""

    scheduler: SchedulerConfig = SchedulerConfig()
    packet_storage: PacketStorageConfig = PacketStorageConfig()
    settings: EngineSettings = EngineSettings()
    intervals: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_INTERVALS))
    extra_final_statuses: List[str] = Field(default_factory=list)
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> PipewrightConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PIPEWRIGHT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PIPEWRIGHT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PipewrightConfig(**data)
    else:
        config = PipewrightConfig()

    env_db_url = os.getenv("PIPEWRIGHT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_scheduler = os.getenv("PIPEWRIGHT_SCHEDULER")
    if env_scheduler:
        config.scheduler.backend = env_scheduler.lower()
    return config
