"""Configuration loading for SMS Bridge."""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .settings import CONFIG_FILE

logger = logging.getLogger(__name__)

AUTO_PORT = "auto"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when the configuration file is missing, malformed, or invalid."""


@dataclass
class SerialConfig:
    port_name: str = AUTO_PORT
    baud_rate: int = 115200
    timeout_ms: int = 1000
    max_retry_count: int = 3
    retry_delay_ms: int = 5000
    probe_timeout_ms: int = 1000
    scan_attempts: int = 10
    scan_interval_ms: int = 10000

    @property
    def auto_detect(self) -> bool:
        return self.port_name.strip().lower() == AUTO_PORT


@dataclass
class DatabaseConfig:
    path: str = "sms.db"


@dataclass
class NotificationConfig:
    bark_server_url: str = ""
    bark_device_key: str = ""
    enabled: bool = False


@dataclass
class AppConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = "INFO"


def _section(raw: dict, name: str, *, required: bool = True) -> dict:
    value = raw.get(name)
    if value is None:
        if required:
            raise ConfigError(f"Missing [{name}] section")
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _str(data: dict, section: str, key: str, *, allow_empty: bool = True) -> str:
    if key not in data:
        raise ConfigError(f"Missing {section}.{key}")
    value = data[key]
    if not isinstance(value, str):
        raise ConfigError(f"Invalid {section}.{key}: must be a string")
    if not allow_empty and not value.strip():
        raise ConfigError(f"Invalid {section}.{key}: cannot be empty")
    return value


def _positive_int(
    data: dict, section: str, key: str, default: int | None = None
) -> int:
    if key not in data:
        if default is None:
            raise ConfigError(f"Missing {section}.{key}")
        return default
    value: Any = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Invalid {section}.{key}: must be an integer")
    if value <= 0:
        raise ConfigError(f"Invalid {section}.{key}: must be greater than 0")
    return value


def parse_config(raw: dict) -> AppConfig:
    """Build and validate an :class:`AppConfig` from decoded TOML data."""

    serial_raw = _section(raw, "serial")
    defaults = SerialConfig()
    serial = SerialConfig(
        port_name=_str(serial_raw, "serial", "port_name", allow_empty=False),
        baud_rate=_positive_int(serial_raw, "serial", "baud_rate"),
        timeout_ms=_positive_int(serial_raw, "serial", "timeout_ms"),
        max_retry_count=_positive_int(serial_raw, "serial", "max_retry_count"),
        retry_delay_ms=_positive_int(serial_raw, "serial", "retry_delay_ms"),
        probe_timeout_ms=_positive_int(
            serial_raw, "serial", "probe_timeout_ms", defaults.probe_timeout_ms
        ),
        scan_attempts=_positive_int(
            serial_raw, "serial", "scan_attempts", defaults.scan_attempts
        ),
        scan_interval_ms=_positive_int(
            serial_raw, "serial", "scan_interval_ms", defaults.scan_interval_ms
        ),
    )

    database_raw = _section(raw, "database")
    database = DatabaseConfig(
        path=_str(database_raw, "database", "path", allow_empty=False)
    )

    notify_raw = _section(raw, "notification")
    enabled = notify_raw.get("enabled")
    if not isinstance(enabled, bool):
        raise ConfigError("Invalid notification.enabled: must be true or false")
    notification = NotificationConfig(
        bark_server_url=_str(notify_raw, "notification", "bark_server_url"),
        bark_device_key=_str(notify_raw, "notification", "bark_device_key"),
        enabled=enabled,
    )
    if notification.enabled:
        if not notification.bark_server_url.strip():
            raise ConfigError(
                "Bark server URL cannot be empty when notifications are enabled"
            )
        if not notification.bark_device_key.strip():
            raise ConfigError(
                "Bark device key cannot be empty when notifications are enabled"
            )

    logging_raw = _section(raw, "logging", required=False)
    log_level = str(logging_raw.get("level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(
            f"Invalid logging.level: expected one of {', '.join(_LOG_LEVELS)}"
        )

    return AppConfig(
        serial=serial,
        database=database,
        notification=notification,
        log_level=log_level,
    )


def load_config(path: str | Path = CONFIG_FILE) -> AppConfig:
    """Load and validate the TOML configuration at *path*."""

    cfg_path = Path(path)
    try:
        with cfg_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file {cfg_path} not found") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Config file {cfg_path} is not valid TOML: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read config file {cfg_path}: {exc}") from exc

    config = parse_config(raw)
    logger.debug("Loaded configuration from %s", cfg_path)
    return config
