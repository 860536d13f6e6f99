# observability/config.py
"""
Configuration for the actuator subsystem.
Provides centralized configuration loading from the environment or a dict.
"""

import os
import json
from dataclasses import dataclass, field
from typing import List

DEPENDENCY_KINDS = ("http_post", "http_get", "websocket", "database")


@dataclass
class DependencyConfig:
    """One external dependency probed by the health monitor."""

    name: str
    kind: str
    url: str

    def __post_init__(self):
        if self.kind not in DEPENDENCY_KINDS:
            raise ValueError(
                f"Unsupported dependency kind '{self.kind}' for {self.name}; "
                f"expected one of {', '.join(DEPENDENCY_KINDS)}"
            )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "DependencyConfig":
        try:
            return cls(
                name=config_dict["name"],
                kind=config_dict["kind"],
                url=config_dict["url"],
            )
        except KeyError as e:
            raise ValueError(f"Dependency definition missing field {e}: {config_dict}")


@dataclass
class MonitorConfig:
    """Configuration for the sampling, aggregation and health-check core."""

    # Deployment identity
    environment: str = "production"
    active_profiles: List[str] = field(default_factory=list)

    # Periodic task cadences (seconds)
    aggregation_interval: float = 30.0
    trend_interval: float = 60.0

    # Retention: 24 hours at one point per minute
    trend_capacity: int = 1440

    # Dependency probe bounds (seconds)
    handshake_timeout: float = 3.0
    http_timeout: float = 5.0
    database_timeout: float = 5.0

    # Alerting
    alert_timezone: str = "Asia/Kolkata"

    # Logging
    log_level: str = "INFO"

    dependencies: List[DependencyConfig] = field(default_factory=list)

    @property
    def profile(self) -> str:
        """Active profiles joined with commas, or ``default``."""
        return ",".join(self.active_profiles) if self.active_profiles else "default"

    @classmethod
    def from_environment(cls) -> "MonitorConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.environ.get("ENVIRONMENT", "production"),
            active_profiles=_split_profiles(os.environ.get("ACTIVE_PROFILES", "")),
            aggregation_interval=float(os.environ.get("ACTUATOR_AGGREGATION_INTERVAL", "30")),
            trend_interval=float(os.environ.get("ACTUATOR_TREND_INTERVAL", "60")),
            trend_capacity=int(os.environ.get("ACTUATOR_TREND_CAPACITY", "1440")),
            handshake_timeout=float(os.environ.get("ACTUATOR_HANDSHAKE_TIMEOUT", "3.0")),
            http_timeout=float(os.environ.get("ACTUATOR_HTTP_TIMEOUT", "5.0")),
            database_timeout=float(os.environ.get("ACTUATOR_DATABASE_TIMEOUT", "5.0")),
            alert_timezone=os.environ.get("ACTUATOR_ALERT_TIMEZONE", "Asia/Kolkata"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            dependencies=_parse_dependencies(os.environ.get("HEALTH_DEPENDENCIES", "")),
        )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "MonitorConfig":
        """Create configuration from dictionary."""
        profiles = config_dict.get("active_profiles", [])
        if isinstance(profiles, str):
            profiles = _split_profiles(profiles)
        return cls(
            environment=config_dict.get("environment", "production"),
            active_profiles=list(profiles),
            aggregation_interval=config_dict.get("aggregation_interval", 30.0),
            trend_interval=config_dict.get("trend_interval", 60.0),
            trend_capacity=config_dict.get("trend_capacity", 1440),
            handshake_timeout=config_dict.get("handshake_timeout", 3.0),
            http_timeout=config_dict.get("http_timeout", 5.0),
            database_timeout=config_dict.get("database_timeout", 5.0),
            alert_timezone=config_dict.get("alert_timezone", "Asia/Kolkata"),
            log_level=config_dict.get("log_level", "INFO"),
            dependencies=[
                DependencyConfig.from_dict(dep) for dep in config_dict.get("dependencies", [])
            ],
        )


def _split_profiles(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def _parse_dependencies(raw: str) -> List[DependencyConfig]:
    """Parse the HEALTH_DEPENDENCIES JSON list."""
    if not raw.strip():
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"HEALTH_DEPENDENCIES is not valid JSON: {e}")
    if not isinstance(items, list):
        raise ValueError("HEALTH_DEPENDENCIES must be a JSON list")
    return [DependencyConfig.from_dict(item) for item in items]
