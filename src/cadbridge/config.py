"""
Configuration for the bridge client and the host server.

Values come from dataclass defaults, then an optional YAML file, then
environment variables (highest precedence).

Example ~/.cadbridge/config.yaml:

    client:
      endpoint: tcp://127.0.0.1:8080
      timeout: 60
    host:
      port: 8080
    log_level: DEBUG
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".cadbridge" / "config.yaml"
DEFAULT_PORT = 8080


@dataclass
class BridgeConfig:
    """Configuration for the caller-side command channel."""

    endpoint: str = f"tcp://127.0.0.1:{DEFAULT_PORT}"
    api_key: Optional[str] = None
    timeout: float = 30.0
    connect_timeout: float = 5.0
    heartbeat_interval: float = 30.0


@dataclass
class HostConfig:
    """Configuration for the host-side command server."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    transaction_prefix: str = "MCP"


@dataclass
class Settings:
    """Top-level settings loaded from file and environment."""

    client: BridgeConfig = field(default_factory=BridgeConfig)
    host: HostConfig = field(default_factory=HostConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None


# Environment variable -> (section, attribute, converter)
_ENV_OVERRIDES = {
    "CADBRIDGE_ENDPOINT": ("client", "endpoint", str),
    "CADBRIDGE_API_KEY": ("client", "api_key", str),
    "CADBRIDGE_TIMEOUT": ("client", "timeout", float),
    "CADBRIDGE_HOST": ("host", "host", str),
    "CADBRIDGE_PORT": ("host", "port", int),
    "CADBRIDGE_LOG_LEVEL": (None, "log_level", str),
}


def _apply_section(target: Any, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(target)}
    for key, value in values.items():
        if key in known:
            setattr(target, key, value)
        else:
            logger.warning(f"Ignoring unknown config key: {key}")


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """Load settings from YAML and environment.

    Args:
        path: Config file path. Defaults to ~/.cadbridge/config.yaml when it exists.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Populated Settings

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the file or an environment value is malformed
    """
    settings = Settings()
    environ = os.environ if environ is None else environ

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if path or config_path.exists():
        data = _read_yaml(config_path)
        _apply_section(settings.client, data.pop("client", None) or {})
        _apply_section(settings.host, data.pop("host", None) or {})
        _apply_section(settings, data)
        logger.debug(f"Loaded config from {config_path}")

    for name, (section, attr, convert) in _ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from e
        target = getattr(settings, section) if section else settings
        setattr(target, attr, value)

    return settings
