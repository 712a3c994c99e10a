"""
Project configuration for cairn.

Settings are read from a YAML file (cairn.yaml by default), then from
CAIRN_* environment variables, then from explicit overrides such as CLI
options. Later sources win.
"""

import os
from pathlib import Path
from typing import Any, Literal

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from cairn.errors import ConfigError

DEFAULT_CONFIG_FILE = "cairn.yaml"

ENV_OVERRIDES = {
    "CAIRN_REGION": "region",
    "CAIRN_STATE_PATH": "state_path",
    "CAIRN_LOG_LEVEL": "log_level",
}


class CairnConfig(BaseModel):
    """
    cairn project configuration.

    Example:
        config = CairnConfig(region="eu-west-1", parallelism=4)

        # cairn.yaml
        # project: event-notices
        # region: eu-west-1
        # state_path: .cairn/state.json
    """

    project: str = Field(default="event-notices", description="Project / stack name")
    region: str = Field(default="us-east-1", description="AWS region for every resource")
    account_id: str = Field(
        default="123456789012", description="Account ID used by the local provider for ARNs"
    )
    state_path: str = Field(default=".cairn/state.json", description="State document path")
    cloud_path: str | None = Field(
        default=".cairn/cloud.json",
        description="Local provider backing file; None keeps it in memory",
    )
    parallelism: int = Field(default=10, ge=1, description="Max nodes applied concurrently")
    package_dir: str = Field(default="build", description="Directory holding function packages")
    log_level: str = Field(default="INFO", description="Log level for structlog output")
    log_format: Literal["console", "json"] = Field(
        default="console", description="Log renderer"
    )

    class Config:
        extra = "forbid"

    @field_validator("region")
    @classmethod
    def _region_shape(cls, value: str) -> str:
        parts = value.split("-")
        if len(parts) < 3 or not parts[-1].isdigit():
            raise ValueError(f"{value!r} is not a region name like 'us-east-1'")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def load_config(path: str | Path | None = None, **overrides: Any) -> CairnConfig:
    """
    Load configuration.

    Args:
        path: YAML file to read. Defaults to ./cairn.yaml if it exists;
            an explicit path that does not exist is an error.
        **overrides: Values that win over file and environment (None ignored)

    Returns:
        Validated CairnConfig

    Raises:
        ConfigError: If the file cannot be parsed or a value is invalid
    """
    values: dict[str, Any] = {}

    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        values.update(loaded)
    elif path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    for env_var, field_name in ENV_OVERRIDES.items():
        if os.environ.get(env_var):
            values[field_name] = os.environ[env_var]

    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return CairnConfig(**values)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
