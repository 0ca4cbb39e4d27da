"""
Runtime configuration for the orchestrator.

Layering (later wins):
1. Built-in defaults
2. YAML file named by ORCHESTRATOR_CONFIG_FILE (or passed explicitly)
3. ORCHESTRATOR_* environment variables

Environment:
- ORCHESTRATOR_ENV: production|development (development shortens the
  update-check and storage-cleanup intervals to 5 seconds)
- ORCHESTRATOR_APP_ID: installation id sent to the version feed
- ORCHESTRATOR_STATE_FILE: JSON state file path
- ORCHESTRATOR_AUTO_UPDATE: seeds auto-update for a fresh installation
- ORCHESTRATOR_UPDATE_COMMAND: command the auto-update job runs
- ORCHESTRATOR_CLEANUP_COMMANDS: ';'-separated commands the cleanup job runs
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from . import __version__

logger = logging.getLogger("config")

DEVELOPMENT = "development"
PRODUCTION = "production"

DEFAULT_VERSIONS_URL = "https://get.coollabs.io/versions.json"
# Key of this product line in the document at DEFAULT_VERSIONS_URL
DEFAULT_PRODUCT = "coolify"
DEFAULT_STATE_FILE = Path("data/orchestrator_state.json")
DEFAULT_CLEANUP_COMMANDS = (
    "docker container prune -f",
    "docker image prune -f",
    "docker builder prune -f",
)

LIVENESS_INTERVAL_SECONDS = 2
UPDATE_CHECK_INTERVAL_SECONDS = 15 * 60
STORAGE_CLEANUP_INTERVAL_SECONDS = 10 * 60
DEV_TRIGGER_INTERVAL_SECONDS = 5

PRODUCTION_PORT = 3000
DEVELOPMENT_PORT = 3001

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""


@dataclass(frozen=True)
class OrchestratorConfig:
    """Runtime configuration for the control process."""
    environment: str = PRODUCTION
    app_id: Optional[str] = None
    app_version: str = __version__
    state_file: Path = DEFAULT_STATE_FILE
    product: str = DEFAULT_PRODUCT
    versions_url: str = DEFAULT_VERSIONS_URL
    docker_network: str = "orchestrator"
    auto_update_default: bool = False
    update_command: Optional[str] = None
    cleanup_commands: Tuple[str, ...] = field(default=DEFAULT_CLEANUP_COMMANDS)
    feed_timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 2.0
    host: str = "0.0.0.0"
    port: Optional[int] = None
    log_level: str = "INFO"

    @property
    def is_dev(self) -> bool:
        return self.environment == DEVELOPMENT

    @property
    def listen_port(self) -> int:
        if self.port:
            return self.port
        return DEVELOPMENT_PORT if self.is_dev else PRODUCTION_PORT

    @property
    def liveness_interval(self) -> float:
        return LIVENESS_INTERVAL_SECONDS

    @property
    def update_check_interval(self) -> float:
        return DEV_TRIGGER_INTERVAL_SECONDS if self.is_dev else UPDATE_CHECK_INTERVAL_SECONDS

    @property
    def storage_cleanup_interval(self) -> float:
        return DEV_TRIGGER_INTERVAL_SECONDS if self.is_dev else STORAGE_CLEANUP_INTERVAL_SECONDS


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


def _parse_commands(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(";") if part.strip())


# Environment variable -> (field, parser)
_ENV_FIELDS = {
    "ORCHESTRATOR_ENV": ("environment", str),
    "ORCHESTRATOR_APP_ID": ("app_id", str),
    "ORCHESTRATOR_VERSION": ("app_version", str),
    "ORCHESTRATOR_STATE_FILE": ("state_file", Path),
    "ORCHESTRATOR_PRODUCT": ("product", str),
    "ORCHESTRATOR_VERSIONS_URL": ("versions_url", str),
    "ORCHESTRATOR_DOCKER_NETWORK": ("docker_network", str),
    "ORCHESTRATOR_AUTO_UPDATE": ("auto_update_default", _parse_bool),
    "ORCHESTRATOR_UPDATE_COMMAND": ("update_command", str),
    "ORCHESTRATOR_CLEANUP_COMMANDS": ("cleanup_commands", _parse_commands),
    "ORCHESTRATOR_FEED_TIMEOUT": ("feed_timeout_seconds", float),
    "ORCHESTRATOR_PROBE_TIMEOUT": ("probe_timeout_seconds", float),
    "ORCHESTRATOR_HOST": ("host", str),
    "ORCHESTRATOR_PORT": ("port", int),
    "ORCHESTRATOR_LOG_LEVEL": ("log_level", str),
}


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> OrchestratorConfig:
    """
    Build the configuration from defaults, an optional YAML file and the environment.

    Args:
        path: YAML file to read (defaults to ORCHESTRATOR_CONFIG_FILE, if set)
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: If the YAML file exists but cannot be parsed
    """
    env = os.environ if environ is None else environ
    config = OrchestratorConfig()

    file_path = path or (Path(env["ORCHESTRATOR_CONFIG_FILE"]) if env.get("ORCHESTRATOR_CONFIG_FILE") else None)
    if file_path is not None:
        config = replace(config, **_read_yaml(Path(file_path)))

    overrides: Dict[str, Any] = {}
    for var, (name, parser) in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[name] = parser(raw.strip())
        except ValueError:
            logger.warning(f"Ignoring invalid value for {var}: {raw!r}")
    config = replace(config, **overrides)

    if config.environment not in (DEVELOPMENT, PRODUCTION):
        logger.warning(f"Unknown environment {config.environment!r}, using {PRODUCTION}")
        config = replace(config, environment=PRODUCTION)
    return config


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read known config fields from a YAML mapping."""
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(OrchestratorConfig)}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        if key == "state_file":
            value = Path(value)
        elif key == "cleanup_commands":
            value = tuple(value or ())
        values[key] = value
    return values
