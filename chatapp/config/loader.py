"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- static defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set by the deployment
#
# The YAML file is flat: its keys are Settings field names.  Unknown keys
# are rejected so a typo cannot silently fall back to a default.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from chatapp.config.settings import Settings
from chatapp.utils.errors import ConfigurationError


def load_settings(path: str = "config/config.yaml", validate: bool = True) -> Settings:
    """Load YAML defaults, overlay env/.env values, and validate once.

    Args:
        path: Path to the YAML configuration file.  A missing file is not an
            error; the env-only settings are used.
        validate: Run :meth:`Settings.validate_for_startup` before returning.

    Returns:
        Fully resolved, validated settings.

    Raises:
        ConfigurationError: If the YAML is malformed, names unknown options,
            or the merged values fail validation.
    """
    yaml_config = _read_yaml(Path(path))

    unknown = sorted(set(yaml_config) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(
            message=f"Unknown configuration options in {path}: {', '.join(unknown)}"
        )

    try:
        env_settings = Settings()
        # Fields explicitly supplied by env/.env are in model_fields_set;
        # they win over the YAML defaults.
        env_overrides = env_settings.model_dump(include=env_settings.model_fields_set)
        merged: dict[str, Any] = {**yaml_config, **env_overrides}
        settings = Settings(**merged)
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc

    if validate:
        settings.validate_for_startup()
    return settings


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Malformed YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            message=f"{config_path} must contain a mapping of option names to values"
        )
    return data
