from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessConfig(BaseModel):
    default_timeout_s: float | None = Field(default=5.0, gt=0)
    """Capability timeout used when neither the call nor the descriptor sets one."""
    boundary_timeout_s: float = Field(default=5.0, gt=0)
    verify_store_loads: bool = True
    """Re-check loaded values against the labels recorded at write time."""


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()


class TelemetryConfig(BaseModel):
    """OpenTelemetry tracing configuration."""

    enabled: bool = False
    endpoint: str = "localhost:4317"
    env: str = "dev"


class MetricsConfig(BaseModel):
    enabled: bool = True


class LedgerConfig(BaseModel):
    path: Path | None = None
    """SQLite file for run results; ``None`` keeps runs in memory only."""


class TaintChainSettings(BaseSettings):
    harness: HarnessConfig = Field(default_factory=HarnessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    catalogs: list[Path] = Field(default_factory=list)
    include_corpus: bool = True

    model_config = SettingsConfigDict(
        env_prefix="TAINTCHAIN_",
        env_nested_delimiter="__",
        extra="ignore",
    )


def _coerce_env_value(value: str) -> object:
    parsed = yaml.safe_load(value)
    return value if parsed is None else parsed


def _set_nested(mapping: dict[str, object], path: list[str], value: object) -> None:
    current = mapping
    for key in path[:-1]:
        existing = current.get(key)
        if not isinstance(existing, dict):
            existing = {}
            current[key] = existing
        current = existing
    current[path[-1]] = value


def _apply_env_overrides(data: dict[str, object]) -> dict[str, object]:
    merged = dict(data)
    prefix = "TAINTCHAIN_"
    for key, raw_value in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[len(prefix) :].lower().split("__")
        _set_nested(merged, path, _coerce_env_value(raw_value))
    return merged


def load_config(path: str | Path = "config/taintchain.yaml") -> TaintChainSettings:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(loaded, dict):
        raise ValueError("config file must contain a top-level mapping")

    raw = loaded.get("taintchain", loaded)
    if not isinstance(raw, dict):
        raise ValueError("taintchain config section must be a mapping")

    merged = _apply_env_overrides(raw)
    settings = TaintChainSettings.model_validate(merged)
    # Relative catalog paths are resolved against the config file's directory.
    settings.catalogs = [
        catalog if catalog.is_absolute() else config_path.parent / catalog
        for catalog in settings.catalogs
    ]
    return settings


__all__ = [
    "HarnessConfig",
    "LedgerConfig",
    "LoggingConfig",
    "MetricsConfig",
    "TaintChainSettings",
    "TelemetryConfig",
    "load_config",
]
