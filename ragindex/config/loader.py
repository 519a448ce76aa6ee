"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
#   1. config/config.yaml  -- static defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set at deploy time
#
# The YAML file groups settings into sections for readability:
#
#   chunking:
#     chunk_max_size: 1000
#   keywords:
#     keyword_max_keywords: 8
#
# Section names are only for humans; the keys inside must be Settings
# field names.  A top-level key that is not a section is taken as-is.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
import yaml

from ragindex.config.settings import Settings
from ragindex.utils.errors import ConfigurationError


def load_settings(path: str | Path = "config/config.yaml") -> Settings:
    """Build validated :class:`Settings` from YAML defaults plus the environment.

    Args:
        path: YAML file with default values; a missing file is not an error.

    Returns:
        Fully validated settings.

    Raises:
        ConfigurationError: Listing every invalid value, or when the YAML
            file cannot be parsed.
    """
    yaml_values = _flatten_sections(_read_yaml(Path(path)))
    try:
        # Settings ranks env and .env above constructor kwargs.
        return Settings(**yaml_values)
    except pydantic.ValidationError as exc:
        violations = [_format_violation(err) for err in exc.errors()]
        raise ConfigurationError(
            message="Invalid configuration: " + "; ".join(violations),
            violations=violations,
        ) from exc


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Cannot parse {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(message=f"{config_path} must contain a mapping at top level")
    return data


def _flatten_sections(config: dict[str, Any]) -> dict[str, Any]:
    """Lift the keys of each section mapping to the top level.

    Sections are merged in file order, so a key repeated in a later
    section wins.
    """
    flat: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict) and key not in Settings.model_fields:
            _deep_merge(flat, value)
        else:
            flat[key] = value
    return flat


def _format_violation(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
    return f"{location}: {error.get('msg', 'invalid value')}"


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
