from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel


class EngineConfig(BaseModel):
    """Batching limits for recomputation fan-out and decision publishing."""

    recompute_batch_size: int = 25
    scheduler_scan_batch_size: int = 500
    scheduler_recompute_batch_size: int = 40
    auto_publish_decisions: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"


class StepflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> StepflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepflowConfig(**data)
    else:
        config = StepflowConfig()

    env_db_url = os.getenv("STEPFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
