"""Load defaults, heuristic tables and strings from config.yml."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

_PACKAGED_CONFIG = Path(__file__).resolve().parent / "config.yml"


def config_path() -> Path:
    """DNS_SOC_CONFIG_PATH if set, else the config.yml shipped with the package."""
    return Path(os.environ.get("DNS_SOC_CONFIG_PATH", _PACKAGED_CONFIG))


@lru_cache(maxsize=1)
def _load() -> dict[str, Any]:
    with open(config_path()) as f:
        return yaml.safe_load(f) or {}


def _section(name: str) -> dict[str, Any]:
    data = _load()
    if name not in data:
        raise KeyError(f"config.yml at {config_path()} has no '{name}' section")
    return data[name]


def reload() -> None:
    """Drop the cached file so the next access re-reads it."""
    _load.cache_clear()


def get_defaults() -> dict[str, Any]:
    """Return the defaults section, or empty dict if config is unavailable."""
    try:
        return _load().get("defaults", {})
    except (FileNotFoundError, OSError):
        return {}


def get_heuristics() -> dict[str, Any]:
    return _section("heuristics")


def get_error_descriptions() -> dict[str, dict[str, str]]:
    return _section("error_descriptions")


def get_output_strings() -> dict[str, str]:
    return _section("output")
