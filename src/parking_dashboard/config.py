"""
Dashboard configuration.

Values come from environment variables, optionally loaded from standard env
files. Every value has a default, so an empty environment connects to the
public HiveMQ broker on the default topic.

Priority (lowest -> highest):
1) /etc/parking-dashboard.env (system install)
2) ~/.config/parking-dashboard/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
import uuid
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv

from parking_dashboard.topics import DEFAULT_TOPIC, TopicError, validate_topic_filter

DEFAULT_HOST = "broker.hivemq.com"
DEFAULT_PORT = 1883
DEFAULT_KEEPALIVE_S = 60


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def package_version() -> str:
    try:
        return _pkg_version("parking-dashboard")
    except PackageNotFoundError:
        return "0.0.0+dev"


def default_client_id() -> str:
    return f"dashboard_{uuid.uuid4().hex[:8]}"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/parking-dashboard.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "parking-dashboard" / ".env"

    # 3) project override
    yield Path(".env")


def _env(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class BrokerConfig:
    host: str
    port: int = DEFAULT_PORT
    client_id: str = ""
    username: str = ""
    password: str = ""
    keepalive_s: int = DEFAULT_KEEPALIVE_S

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("broker host must be a non-empty string")
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"MQTT_PORT out of range: {self.port}")
        if self.keepalive_s < 0:
            raise ConfigError("MQTT_KEEPALIVE must be >= 0 (0 disables)")
        if not self.client_id:
            # frozen: assign through object.__setattr__
            object.__setattr__(self, "client_id", default_client_id())


@dataclass(frozen=True, slots=True)
class DashboardConfig:
    broker: BrokerConfig
    topic: str = DEFAULT_TOPIC


def _load_env_files() -> None:
    for p in _env_paths():
        if p.is_file():
            # do not override existing env vars; later files can fill missing
            load_dotenv(p, override=False)


def load_config(*, dotenv_enabled: bool = True) -> DashboardConfig:
    """
    Load config by reading env files and then validating environment variables.

    Returns an immutable DashboardConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        _load_env_files()

    port = _parse_int("MQTT_PORT", _env("MQTT_PORT", str(DEFAULT_PORT)))
    keepalive_s = _parse_int("MQTT_KEEPALIVE", _env("MQTT_KEEPALIVE", str(DEFAULT_KEEPALIVE_S)))

    broker = BrokerConfig(
        host=_env("MQTT_HOST", DEFAULT_HOST),
        port=port,
        client_id=_env("MQTT_CLIENT_ID", ""),
        username=os.getenv("MQTT_USERNAME", ""),
        password=os.getenv("MQTT_PASSWORD", ""),
        keepalive_s=keepalive_s,
    )

    topic = _env("DASHBOARD_TOPIC", DEFAULT_TOPIC)
    try:
        validate_topic_filter(topic)
    except TopicError as exc:
        raise ConfigError(f"Invalid DASHBOARD_TOPIC: {exc}") from exc

    return DashboardConfig(broker=broker, topic=topic)
