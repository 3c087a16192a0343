"""
Configuration management for the escrow service.

Loads configuration from YAML with ZERO defaults for required sections.
Every required value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEYS = frozenset({"api_key", "webhook_secret"})


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class PaymentsConfig(BaseModel):
    """Payment gateway configuration."""

    model_config = ConfigDict(extra="forbid")
    provider: str
    api_key: str
    webhook_secret: str
    currency: str
    timeout_seconds: int
    webhook_tolerance_seconds: int = 300

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value != "stripe":
            msg = f"Unsupported payment provider: {value}"
            raise ValueError(msg)
        return value


class EscrowConfig(BaseModel):
    """Escrow fee and deposit limits."""

    model_config = ConfigDict(extra="forbid")
    platform_fee_percent: Decimal
    minimum_deposit: Decimal

    @field_validator("platform_fee_percent", "minimum_deposit", mode="before")
    @classmethod
    def _no_floats(cls, value: Any) -> Any:
        # YAML floats carry binary rounding; go through str
        if isinstance(value, float):
            return str(value)
        return value

    @field_validator("platform_fee_percent")
    @classmethod
    def _fee_in_range(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 100:
            msg = "platform_fee_percent must be in [0, 100)"
            raise ValueError(msg)
        return value


class ReconciliationConfig(BaseModel):
    """Pending-deposit reconciliation sweep configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    interval_seconds: int
    lookback_days: int
    intent_timeout_seconds: float
    lease_seconds: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    payments: PaymentsConfig
    escrow: EscrowConfig
    reconciliation: ReconciliationConfig


def get_config_path() -> Path:
    """
    Determine configuration file path.

    CONFIG_PATH wins; otherwise config.yaml at the repository root.
    """
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path(__file__).resolve().parents[2] / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Parse and validate a YAML config file."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Drop the cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump(mode="json"))
