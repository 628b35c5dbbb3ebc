"""Engine configuration loaded from ``.automations/config.yaml``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".automations/config.yaml")


class ConfigError(Exception):
    """Engine configuration could not be loaded."""

    pass


class EngineConfig(BaseModel):
    """Run-loop settings. Every field has a default."""

    model_config = ConfigDict(extra="forbid")

    # single: exactly one origin required; first: legacy pick-first; all: seed every origin
    origin_policy: Literal["single", "first", "all"] = "single"
    max_parallel: int = Field(default=1, ge=1)  # 1 = strictly sequential loop
    node_timeout: float | None = Field(default=None, gt=0)  # Seconds per executor
    check_cycles: bool = False  # Reject cyclic graphs before running
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


def load_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Load engine config from YAML.

    A missing default file yields the defaults; an explicitly given path
    must exist.

    Raises:
        ConfigError: If the file is missing, is not valid YAML or has invalid values
    """
    explicit = path is not None
    config_path = Path(path) if explicit else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return EngineConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a mapping in {config_path}, got {type(data).__name__}"
        )

    # Allow the settings to live under an "engine" key next to other sections
    data = data.get("engine", data)
    try:
        config = EngineConfig.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid engine config in {config_path}: {details}") from e

    logger.debug(f"Loaded engine config from {config_path}: {config}")
    return config
