"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``PHOTONIC_``, nested via ``__``)
2. YAML config file (``--config path`` or ``PHOTONIC_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class LogLevel(enum.StrEnum):
    """Root log level accepted by :func:`logging.basicConfig`."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ElectrumConfig(BaseSettings):
    """ElectrumX server pool and failover timing."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_ELECTRUM__",
        case_sensitive=False,
    )

    servers: list[str] = Field(
        default_factory=list,
        description="Interchangeable wss:// endpoints, tried in order",
    )
    failover_timeout: float = 8.0  # seconds to reach CONNECTED before moving on
    reconnect_delay: float = 5.0  # after an unexpected close
    pause_duration: float = 30.0  # cool-down once every server failed repeatedly
    pause_after_rounds: int = Field(default=2, ge=1)
    request_timeout: float = 30.0
    heartbeat: float = 30.0
    max_message_size: int = 50 * 1000 * 1000


class FeeConfig(BaseSettings):
    """Fee rate, dust policy and the emergency fee ceiling."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_FEE__",
        case_sensitive=False,
    )

    default_rate: float = Field(default=10_000, ge=0, description="Photons per byte")
    dust_multiplier: float = Field(default=1.0, gt=0)
    ceiling_multiplier: int = Field(default=10, ge=1)
    ceiling_tx_bytes: int = Field(default=100_000, ge=1)

    @property
    def max_fee(self) -> int:
        """Largest fee a single transaction may pay before selection fails closed."""
        return int(self.ceiling_multiplier * self.default_rate * self.ceiling_tx_bytes)


class DatabaseConfig(BaseSettings):
    """UTXO cache database settings."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_DB__",
        case_sensitive=False,
    )

    dsn: str = Field(
        default="sqlite+aiosqlite:///./photonic_chain.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class SyncConfig(BaseSettings):
    """Chain sync engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_SYNC__",
        case_sensitive=False,
    )

    channel_size: int = Field(default=256, ge=1)


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level chain client configuration.

    Loads settings from environment variables (``PHOTONIC_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="PHOTONIC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    log_level: LogLevel = LogLevel.INFO
    config_path: str = ""

    electrum: ElectrumConfig = Field(default_factory=ElectrumConfig)
    fee: FeeConfig = Field(default_factory=FeeConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
