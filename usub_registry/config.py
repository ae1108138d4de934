"""
Configuration loading and validation.

Loads registry configuration from a YAML file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "notset")


class StoreConfig(BaseModel):
    db_path: str = "./data/subscriptions.db"
    busy_timeout_seconds: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level


class RegistryConfig(BaseModel):
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> RegistryConfig:
    """Load and validate registry configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return RegistryConfig.model_validate(raw)
