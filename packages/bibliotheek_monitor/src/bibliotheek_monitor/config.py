"""Monitor configuration from a JSON file, environment variables and overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

DEFAULT_STORE_PATH = "~/.bibliotheek-monitor/state.json"

# Environment variable -> config field
ENV_VARS = {
    "BIBLIOTHEEK_USERNAME": "username",
    "BIBLIOTHEEK_PASSWORD": "password",
    "BIBLIOTHEEK_POLL_INTERVAL": "poll_interval_minutes",
    "BIBLIOTHEEK_WARNING_THRESHOLD": "warning_threshold",
    "BIBLIOTHEEK_STORE": "store_path",
    "BIBLIOTHEEK_LOG_LEVEL": "log_level",
}


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""
    pass


@dataclass(frozen=True)
class MonitorConfig:
    """
    Settings of the loan monitor.

    Attributes:
        username: bibliotheek.be e-mail address
        password: bibliotheek.be password
        poll_interval_minutes: Minutes between two refresh cycles
        warning_threshold: Days remaining at or below which a loan is expiring soon
        timeout: Seconds before an HTTP request is abandoned
        settle_delay: Seconds to wait after extending before refreshing
        store_path: JSON file holding the last snapshot
        log_level: Name of the logging level
    """
    username: str = ""
    password: str = ""
    poll_interval_minutes: float = 30
    warning_threshold: int = 7
    timeout: float = 30.0
    settle_delay: float = 2.0
    store_path: str = DEFAULT_STORE_PATH
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.poll_interval_minutes <= 0:
            raise ConfigError("poll_interval_minutes must be positive")
        if self.warning_threshold < 0:
            raise ConfigError("warning_threshold must not be negative")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.settle_delay < 0:
            raise ConfigError("settle_delay must not be negative")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_minutes * 60

    @property
    def resolved_store_path(self) -> Path:
        return Path(self.store_path).expanduser()

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def merged(self, **overrides: Any) -> "MonitorConfig":
        """Return a copy with every override that is not None applied."""
        values = _coerce({k: v for k, v in overrides.items() if v is not None})
        return replace(self, **values)

    @classmethod
    def from_file(cls, path: str, base: Optional["MonitorConfig"] = None) -> "MonitorConfig":
        """
        Load settings from a JSON object file.

        Config file format:
            {"username": "me@example.com", "password": "secret",
             "poll_interval_minutes": 30, "warning_threshold": 7}

        Raises:
            ConfigError: If the file is missing, not JSON, or has unknown keys.
        """
        try:
            with open(Path(path).expanduser(), encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid config file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError("Invalid config file: expected a JSON object")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        return (base or cls()).merged(**data)

    @classmethod
    def from_env(cls, base: Optional["MonitorConfig"] = None) -> "MonitorConfig":
        """Apply the BIBLIOTHEEK_* environment variables that are set."""
        values = {
            field_name: os.environ[var]
            for var, field_name in ENV_VARS.items()
            if os.environ.get(var)
        }
        return (base or cls()).merged(**values)


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    """Convert values (often strings from the environment) to the field types."""
    types = {
        "poll_interval_minutes": float,
        "warning_threshold": int,
        "timeout": float,
        "settle_delay": float,
    }
    coerced = {}
    for key, value in values.items():
        converter = types.get(key, str)
        try:
            coerced[key] = converter(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {value!r}") from e
    return coerced
