"""Deployment file loading from YAML."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from gitsync.core.exceptions import ConfigError
from gitsync.schemas.deployment_config import DeploymentConfig

logger = logging.getLogger(__name__)


def resolve_config_path(config_path: str | Path, example_path: str | Path | None = None) -> Path:
    """Pick the deployment file, falling back to the example file with a warning."""
    primary = Path(config_path).expanduser()
    if primary.is_file():
        return primary

    if example_path is not None:
        example = Path(example_path).expanduser()
        if example.is_file():
            logger.warning(
                "Deployment file not found, using example configuration",
                extra={"config_path": str(primary), "example_path": str(example)},
            )
            return example

    raise ConfigError(f"No configuration file found at '{primary}'. Please create it.")


def parse_config(content: str, *, source: str = "<string>") -> DeploymentConfig:
    """Parse and validate deployment YAML text."""
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {source}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration in {source} must be a YAML mapping")

    repos = raw.get("repos")
    if not isinstance(repos, list):
        raise ConfigError('Configuration must include a "repos" array')

    try:
        return DeploymentConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {source}: {exc}") from exc


def load_config(
    config_path: str | Path,
    example_path: str | Path | None = None,
) -> DeploymentConfig:
    """Load the deployment file once at startup.

    Raises:
        ConfigError: If no file exists or its content is invalid
    """
    path = resolve_config_path(config_path, example_path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file '{path}': {exc}") from exc

    config = parse_config(content, source=str(path))
    logger.info(
        "Configuration loaded",
        extra={
            "config_path": str(path),
            "trigger_mode": config.trigger_mode,
            "repos": [f"{r.name}@{r.branch}" for r in config.repos],
        },
    )
    return config
