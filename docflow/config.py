from __future__ import annotations

import os
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Execution engine settings."""

    sweep_interval: float = 60.0
    overdue_grace: float = Field(
        default=0.0, description="Seconds past the due date before a sweep acts"
    )
    fail_overdue_instances: bool = False
    auto_advance_start: bool = True


class IdentityConfig(BaseModel):
    """Static user to role mapping for the built-in role resolver."""

    roles: Dict[str, List[str]] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    level: str = "INFO"


class DocflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    identity: IdentityConfig = IdentityConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> DocflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DOCFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("DOCFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DocflowConfig(**data)
    else:
        config = DocflowConfig()

    env_db_url = os.getenv("DOCFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
