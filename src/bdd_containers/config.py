"""Run configuration for bdd-containers.

Values come from an optional YAML file (./bdd-containers.yaml, or the path in
BDD_CONTAINERS_CONFIG) and environment variable overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from .shared.logging import get_logger

logger = get_logger(__name__)

# Default values
DEFAULT_CONCURRENCY = 4
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_LOG_LEVEL = "warning"
DEFAULT_LABEL_PREFIX = "bdd-containers"
DEFAULT_CONFIG_FILE = "bdd-containers.yaml"

CONFIG_PATH_ENV = "BDD_CONTAINERS_CONFIG"

# Environment variable mappings
ENV_VARS = {
    "concurrency": "BDD_CONTAINERS_CONCURRENCY",
    "poll_interval": "BDD_CONTAINERS_POLL_INTERVAL",
    "host_override": "BDD_CONTAINERS_HOST_OVERRIDE",
    "log_level": "BDD_CONTAINERS_LOG_LEVEL",
    "label_prefix": "BDD_CONTAINERS_LABEL_PREFIX",
}

_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "concurrency": int,
    "poll_interval": float,
    "host_override": str,
    "log_level": str,
    "label_prefix": str,
}


@dataclass
class ContainersConfig:
    """Settings shared by every scenario of a run."""

    concurrency: int = DEFAULT_CONCURRENCY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    host_override: str | None = None
    log_level: str = DEFAULT_LOG_LEVEL
    label_prefix: str = DEFAULT_LABEL_PREFIX

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def label(self, name: str) -> str:
        """Qualify a label name with the configured prefix."""
        return f"{self.label_prefix}.{name}"

    def to_dict(self) -> dict[str, Any]:
        """Public values as a plain dict."""
        return {key: getattr(self, key) for key in _CONVERTERS}


def get_config_path() -> Path:
    """Get the config file path.

    Returns:
        Path from BDD_CONTAINERS_CONFIG, or ./bdd-containers.yaml
    """
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def load_config() -> ContainersConfig:
    """Load run configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file
    3. Defaults

    Returns:
        ContainersConfig with values and sources
    """
    config = ContainersConfig()
    sources: dict[str, str] = {key: "default" for key in _CONVERTERS}

    config_path = get_config_path()
    if config_path.exists():
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("config_file_unreadable", path=str(config_path), error=str(e))
            file_config = {}

        for key, convert in _CONVERTERS.items():
            if key in file_config and file_config[key] is not None:
                try:
                    setattr(config, key, convert(file_config[key]))
                    sources[key] = "config file"
                except (TypeError, ValueError):
                    logger.warning("config_value_invalid", key=key, value=file_config[key])

    for key, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            setattr(config, key, _CONVERTERS[key](raw))
            sources[key] = "environment"
        except ValueError:
            logger.warning("config_env_invalid", variable=env_var, value=raw)

    if config.concurrency < 0:
        config.concurrency = DEFAULT_CONCURRENCY
        sources["concurrency"] = "default"

    config._sources = sources
    return config
