# src/lasvpe/core/config.py
"""
Configuration schema and loading for LaS-VPE workers.

Uses Pydantic for validation and PyYAML for the settings file.
Settings are frozen (immutable) after construction.

Precedence (highest first):
1. Environment variables (LASVPE_<SECTION>__<FIELD>, e.g. LASVPE_RETRY__MAX_ATTEMPTS)
2. Config file (YAML, with ${VAR} / ${VAR:-default} expansion)
3. Defaults from the Pydantic schema
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "LASVPE_"


class BusSettings(BaseModel):
    """Publish/subscribe transport configuration."""

    model_config = {"frozen": True}

    max_message_bytes: int = Field(
        default=1_000_000,
        gt=0,
        description="Largest message the bus accepts; larger payloads are offloaded",
    )
    consumer_group: str = Field(default="lasvpe", min_length=1, description="Consumer group of this worker")
    poll_timeout_seconds: float = Field(default=0.5, ge=0, description="Wait for records per poll")
    poll_max_records: int = Field(default=100, gt=0, description="Records drained per poll")


class RetrySettings(BaseModel):
    """Retry behavior for stage invocations."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts, first one included")
    initial_delay_seconds: float = Field(default=1.0, ge=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=60.0, ge=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Random jitter added to each delay")


class BlobStoreSettings(BaseModel):
    """Bulk store configuration."""

    model_config = {"frozen": True}

    backend: Literal["filesystem"] = Field(default="filesystem", description="Storage backend type")
    base_path: Path = Field(
        default=Path(".lasvpe/blobs"),
        description="Root directory for the filesystem backend",
    )
    config_prefix: str = Field(default="conf", description="Prefix holding broadcast configuration files")
    config_suffix: str = Field(default=".conf", description="Suffix selecting broadcast configuration files")


class WorkerSettings(BaseModel):
    """Stage colocation and concurrency for one worker process."""

    model_config = {"frozen": True}

    name: str = Field(default="worker", min_length=1, description="Worker name used in logs")
    stages: list[str] = Field(default_factory=list, description="Names of stages hosted by this worker")
    max_workers: int = Field(
        default=4,
        gt=0,
        description="Maximum tasks handled concurrently",
    )
    claim_cache_size: int = Field(
        default=100_000,
        gt=0,
        description="Claims remembered to suppress redelivered envelopes",
    )

    @field_validator("stages")
    @classmethod
    def validate_unique_stages(cls, v: list[str]) -> list[str]:
        duplicates = sorted({name for name in v if v.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage name(s): {duplicates}")
        return v


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseModel):
    """Log output configuration.

    ``loggers`` overrides the level of named loggers, e.g.
    ``{"lasvpe.core.bus": "WARNING"}``.
    """

    model_config = {"frozen": True}

    level: LogLevel = "INFO"
    json_output: bool = False
    loggers: dict[str, LogLevel] = Field(default_factory=dict)


class LasVpeSettings(BaseModel):
    """Top-level configuration of a worker process.

    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    bus: BusSettings = Field(default_factory=BusSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    blob_store: BlobStoreSettings = Field(default_factory=BlobStoreSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)
        environ: Variables to expand from

    Returns:
        New dict with environment variables expanded
    """

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)  # None if no default specified
            env_value = environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # No env var and no default - keep original (validation will likely reject it)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _apply_env_overrides(config: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    """Overlay LASVPE_<SECTION>__<FIELD> environment variables onto config.

    Values are parsed as YAML scalars so "5" becomes 5 and "true" becomes True.
    Variables without the section/field separator are ignored.
    """
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in config.items()}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or "__" not in name:
            continue
        section, _, field = name[len(ENV_PREFIX) :].lower().partition("__")
        if not section or not field:
            continue
        target = merged.setdefault(section, {})
        if not isinstance(target, dict):
            raise ValueError(f"Cannot override {name}: config section {section!r} is not a mapping")
        target[field] = yaml.safe_load(raw)
    return merged


def load_settings(config_path: Path, *, environ: dict[str, str] | None = None) -> LasVpeSettings:
    """Load settings from a YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML configuration file
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        Validated LasVpeSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
        ValueError: If the file is not a YAML mapping
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(raw).__name__}: {config_path}")

    env = dict(os.environ) if environ is None else environ
    raw_config = _expand_env_vars(raw, env)
    raw_config = _apply_env_overrides(raw_config, env)

    return LasVpeSettings(**raw_config)
