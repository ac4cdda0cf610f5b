"""
Configuration management and loading.

Handles gateway settings loaded from a YAML file.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Set

import yaml

from quota_guard.storage.db import DEFAULT_DB_PATH

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_LOG_FORMATS = ("text", "json")


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class BillingConfig:
    """Markup applied on top of provider cost."""
    markup_percent: Decimal = Decimal("20")

    def __post_init__(self):
        if self.markup_percent < 0:
            raise ValueError("markup_percent must be >= 0")


@dataclass(frozen=True)
class SimulationConfig:
    """Rates for the simulated upstream provider."""
    provider_failure_rate: float = 0.01
    cache_hit_rate: float = 0.01

    def __post_init__(self):
        if not 0 <= self.provider_failure_rate <= 1:
            raise ValueError("provider_failure_rate must be between 0 and 1")
        if not 0 <= self.cache_hit_rate <= 1:
            raise ValueError("cache_hit_rate must be between 0 and 1")


@dataclass(frozen=True)
class GeolocationConfig:
    enabled: bool = True
    ipinfo_token: Optional[str] = None
    cache_ttl_hours: float = 24

    def __post_init__(self):
        if self.cache_ttl_hours <= 0:
            raise ValueError("cache_ttl_hours must be > 0")


@dataclass(frozen=True)
class NotificationConfig:
    """SMTP settings; email is disabled when smtp_host is unset."""
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    from_email: str = "alerts@localhost"

    def __post_init__(self):
        if not 0 < self.smtp_port < 65536:
            raise ValueError("smtp_port must be a valid port number")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "text"

    def __post_init__(self):
        if self.level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.level}. Must be one of {VALID_LOG_LEVELS}")
        if self.format not in VALID_LOG_FORMATS:
            raise ValueError(f"Invalid log format: {self.format}. Must be one of {VALID_LOG_FORMATS}")


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    geolocation: GeolocationConfig = field(default_factory=GeolocationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTION_KEYS: Dict[str, Set[str]] = {
    "database": {"path"},
    "billing": {"markup_percent"},
    "simulation": {"provider_failure_rate", "cache_hit_rate"},
    "geolocation": {"enabled", "ipinfo_token", "cache_ttl_hours"},
    "notifications": {"smtp_host", "smtp_port", "from_email"},
    "logging": {"level", "format"},
}


def load_gateway_config(path: Optional[str] = None) -> GatewayConfig:
    """Load and validate gateway configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys and
    wrongly typed values are rejected. Omitted keys keep their defaults.

    Args:
        path: Path to YAML configuration file, or None for all defaults

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return GatewayConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    database = sections["database"]
    billing = sections["billing"]
    simulation = sections["simulation"]
    geolocation = sections["geolocation"]
    notifications = sections["notifications"]
    logging_section = sections["logging"]

    return GatewayConfig(
        database=DatabaseConfig(
            path=_string(database, "path", "database", DEFAULT_DB_PATH),
        ),
        billing=BillingConfig(
            markup_percent=_decimal(billing, "markup_percent", "billing", Decimal("20")),
        ),
        simulation=SimulationConfig(
            provider_failure_rate=_number(simulation, "provider_failure_rate", "simulation", 0.01),
            cache_hit_rate=_number(simulation, "cache_hit_rate", "simulation", 0.01),
        ),
        geolocation=GeolocationConfig(
            enabled=_boolean(geolocation, "enabled", "geolocation", True),
            ipinfo_token=_string(geolocation, "ipinfo_token", "geolocation", None),
            cache_ttl_hours=_number(geolocation, "cache_ttl_hours", "geolocation", 24),
        ),
        notifications=NotificationConfig(
            smtp_host=_string(notifications, "smtp_host", "notifications", None),
            smtp_port=int(_number(notifications, "smtp_port", "notifications", 25)),
            from_email=_string(notifications, "from_email", "notifications", "alerts@localhost"),
        ),
        logging=LoggingConfig(
            level=(_string(logging_section, "level", "logging", "INFO") or "INFO").upper(),
            format=(_string(logging_section, "format", "logging", "text") or "text").lower(),
        ),
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Extract and validate one top-level section."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _string(data: Dict[str, Any], key: str, path: str, default):
    value = data.get(key, default)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value


def _number(data: Dict[str, Any], key: str, path: str, default):
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return value


def _boolean(data: Dict[str, Any], key: str, path: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be a boolean")
    return value


def _decimal(data: Dict[str, Any], key: str, path: str, default: Decimal) -> Decimal:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{key}' in {path} must be a number")
