"""
Settings for the tracker and its transports.

Sources, later ones win:
1. .env file (python-dotenv, never overrides variables already set)
2. Optional YAML file, ${VAR} placeholders expanded from the environment
3. CONFIRMWATCH_* environment variables

Example YAML:
    rpc_endpoint: ${NODE_RPC_URL}
    wss_endpoint: ${NODE_WSS_URL}
    request_timeout: 10
    confirmation:
      required_confirmations: 12
      max_checks: 50
      poll_interval_ms: 1000
    logging:
      level: info
      file: confirmwatch.log
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from confirmwatch.core.exceptions import ConfigError
from confirmwatch.core.http_provider import HttpProvider
from confirmwatch.core.models import ObservationConfig
from confirmwatch.core.provider import ChainProvider
from confirmwatch.core.ws_provider import WebsocketProvider
from confirmwatch.utils.logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "CONFIRMWATCH_"
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


@dataclass
class TrackerSettings:
    rpc_endpoint: Optional[str] = None
    wss_endpoint: Optional[str] = None
    observation: ObservationConfig = field(default_factory=ObservationConfig)
    request_timeout: float = 10.0
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _expand(value: Any) -> Any:
    """Replace ${VAR} in every string of a parsed YAML document."""
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        resolved = os.environ.get(name)
        if resolved is None:
            raise ConfigError(f"${{{name}}} is not set in the environment", details={"variable": name})
        return resolved

    return _PLACEHOLDER.sub(substitute, value)


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}", details={"setting": name})


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}", details={"setting": name})


def _read_yaml(path: Union[str, Path]) -> dict:
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}", details={"path": str(config_path)})

    with open(config_path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}", details={"path": str(config_path)}) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must contain a mapping", details={"path": str(config_path)})
    return _expand(raw)


def load_settings(
    path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> TrackerSettings:
    """Build TrackerSettings from .env, an optional YAML file and the environment."""
    load_dotenv(env_file or find_dotenv(usecwd=True))

    raw = _read_yaml(path) if path else {}
    confirmation = raw.get("confirmation") or {}
    logging_section = raw.get("logging") or {}
    defaults = ObservationConfig()

    values = {
        "rpc_endpoint": raw.get("rpc_endpoint"),
        "wss_endpoint": raw.get("wss_endpoint"),
        "request_timeout": raw.get("request_timeout", 10.0),
        "required_confirmations": confirmation.get("required_confirmations", defaults.required_confirmations),
        "max_checks": confirmation.get("max_checks", defaults.max_checks),
        "poll_interval_ms": confirmation.get("poll_interval_ms", defaults.poll_interval_ms),
        "log_level": logging_section.get("level", "INFO"),
        "log_file": logging_section.get("file"),
    }

    overrides = {
        "rpc_endpoint": "RPC_ENDPOINT",
        "wss_endpoint": "WSS_ENDPOINT",
        "request_timeout": "REQUEST_TIMEOUT",
        "required_confirmations": "CONFIRMATIONS",
        "max_checks": "MAX_CHECKS",
        "poll_interval_ms": "POLL_INTERVAL_MS",
        "log_level": "LOG_LEVEL",
        "log_file": "LOG_FILE",
    }
    for key, suffix in overrides.items():
        env_value = os.environ.get(ENV_PREFIX + suffix)
        if env_value:
            values[key] = env_value

    try:
        observation = ObservationConfig(
            required_confirmations=_as_int("required_confirmations", values["required_confirmations"]),
            max_checks=_as_int("max_checks", values["max_checks"]),
            poll_interval_ms=_as_int("poll_interval_ms", values["poll_interval_ms"]),
        )
    except ValueError as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e)) from e

    request_timeout = _as_float("request_timeout", values["request_timeout"])
    if request_timeout <= 0:
        raise ConfigError(f"request_timeout must be positive, got {request_timeout}")

    settings = TrackerSettings(
        rpc_endpoint=values["rpc_endpoint"] or None,
        wss_endpoint=values["wss_endpoint"] or None,
        observation=observation,
        request_timeout=request_timeout,
        log_level=str(values["log_level"]).upper(),
        log_file=values["log_file"] or None,
    )
    logger.debug(f"Settings loaded: {settings}")
    return settings


def create_provider(settings: TrackerSettings) -> ChainProvider:
    """WebSocket provider when a WSS endpoint is configured, HTTP otherwise."""
    if settings.wss_endpoint:
        logger.info(f"Using WebSocket provider: {settings.wss_endpoint[:60]}")
        return WebsocketProvider(settings.wss_endpoint, request_timeout=settings.request_timeout)
    if settings.rpc_endpoint:
        logger.info(f"Using HTTP provider: {settings.rpc_endpoint[:60]}")
        return HttpProvider(settings.rpc_endpoint, request_timeout=settings.request_timeout)
    raise ConfigError("Neither rpc_endpoint nor wss_endpoint is configured")
