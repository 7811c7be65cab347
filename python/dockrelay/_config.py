# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Configuration loading with file -> environment precedence."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from dockrelay._stream import DEFAULT_MAX_FRAME_SIZE
from dockrelay.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

_CONFIG_FILENAME = "dockrelay.yaml"
_ENV_PREFIX = "DOCKRELAY_"
_TRUE = {"1", "true", "yes", "on"}


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Resolved dockrelay configuration."""

    logger_id: str = ""
    socket: str | None = None
    find_existing_containers: bool = False
    log_size_limit_mb: int | None = None
    state_path: str = "state.json"
    output_dir: str = "logs"
    masks_path: str = "masks.json"
    log_level: str = "info"
    log_json: bool = False
    setup_attempts: int = 3
    setup_retry_delay: float = 1.0
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
    timestamps: bool = False
    rate_limited: bool = False

    @property
    def log_size_limit(self) -> int | None:
        """Workflow-wide limit in bytes, or ``None`` for unlimited."""
        if self.log_size_limit_mb is None:
            return None
        return self.log_size_limit_mb * 1_000_000


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> RelayConfig:
    """Load configuration with precedence: environment > file > defaults.

    1. Start with defaults
    2. Overlay ``path`` or ``./dockrelay.yaml`` (if it exists)
    3. Overlay ``DOCKRELAY_*`` environment variables
    """
    overrides: dict[str, Any] = {}

    config_file = path if path is not None else Path.cwd() / _CONFIG_FILENAME
    if config_file.is_file():
        _merge_yaml(overrides, config_file)

    _merge_env(overrides, os.environ if env is None else env)
    return _build_config(overrides)


def _merge_yaml(target: dict[str, Any], path: Path) -> None:
    """Parse a YAML file and merge its values into *target*."""
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError:
        return
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if key == "logging" and isinstance(value, dict):
            # Flatten logging sub-keys into top-level config keys
            for sub_key, sub_value in value.items():
                name = sub_key if sub_key.startswith("log_") else f"log_{sub_key}"
                target[name] = sub_value
        else:
            target[key] = value


def _merge_env(target: dict[str, Any], env: Mapping[str, str]) -> None:
    """Copy ``DOCKRELAY_<FIELD>`` variables into *target*."""
    for field in dataclasses.fields(RelayConfig):
        value = env.get(_ENV_PREFIX + field.name.upper())
        if value is not None:
            target[field.name] = value


def _build_config(overrides: dict[str, Any]) -> RelayConfig:
    """Build a ``RelayConfig`` from a dict of overrides, coercing types."""
    fields = {f.name: f for f in dataclasses.fields(RelayConfig)}
    values: dict[str, Any] = {}
    for key, value in overrides.items():
        field = fields.get(key)
        if field is None:
            continue
        values[key] = _coerce(key, field.default, value)
    return RelayConfig(**values)


def _coerce(key: str, default: object, value: object) -> object:
    """Coerce a raw YAML/env value to the type of the field's default."""
    if value is None or value == "":
        return None if default is None or key == "log_size_limit_mb" else default
    try:
        if isinstance(default, bool):
            return value if isinstance(value, bool) else str(value).strip().lower() in _TRUE
        if isinstance(default, int) or key == "log_size_limit_mb":
            return int(value)  # type: ignore[call-overload]
        if isinstance(default, float):
            return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        msg = f"{key}={value!r}"
        raise ConfigError(msg) from exc
    return str(value)
