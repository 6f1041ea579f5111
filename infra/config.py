"""
ESG Reporting — Environment Config Loader

Three-tier configuration loading:
  1. Base YAML file (cycles/config.yaml by default)
  2. Per-environment overlay files (config/{ESG_ENV}.yaml merged over base)
  3. Environment variable overrides (ESG_ prefixed, "__" between levels)

Usage:
    from infra.config import load_config, get_config_value

    cfg = load_config(base_path="cycles/config.yaml", env="demo")
    delay = get_config_value("verification.reprocess_delay_seconds", cfg, 3.0)

Environment variables:
    ESG_ENV                  — active profile (dev, demo, test)
    ESG_CONFIG_DIR           — directory for overlay files (default: config/)
    ESG_<SECTION>__<KEY>     — nested overrides, e.g.
                               ESG_VERIFICATION__REPROCESS_DELAY_SECONDS=1
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("esg_reporting.config")

ENV_PREFIX = "ESG_"
_META_KEYS = {"ESG_ENV", "ESG_CONFIG_DIR", "ESG_VERSION"}


def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    """Set a nested dict value from a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def _parse_scalar(value: str) -> Any:
    """Parse a string as YAML so numbers, booleans and lists come through typed."""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


# ═══════════════════════════════════════════════════════════════════
# Tier 2: Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for {config_dir}/{env}.yaml, then config/{env}.yaml beside the base.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("ESG_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("ESG_CONFIG_DIR", "config")
    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(os.path.dirname(base_path)) / "config" / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            try:
                with open(path) as f:
                    overlay = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load overlay %s: %s", path, e)
                continue
            logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
            return overlay

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Tier 3: Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

def _load_env_overrides(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Load ESG_ prefixed environment variables as config overrides.

    Naming convention:
      ESG_SECTION__KEY=value → {"section": {"key": value}}
      ESG_SYSTEM_ACTOR=value → {"system_actor": value}

    Values are parsed as YAML. ESG_ENV, ESG_CONFIG_DIR and ESG_VERSION
    are meta settings and never become config keys.
    """
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in _META_KEYS:
            continue
        path = [p for p in key[len(prefix):].lower().split("__") if p]
        if not path:
            continue
        _set_nested(overrides, path, _parse_scalar(value))

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str | Path = "",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins):
      1. Environment variable overrides (ESG_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file

    Returns:
        Merged configuration dict
    """
    base_path = str(base_path)
    config: dict[str, Any] = {}
    if base_path and os.path.exists(base_path):
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("ESG_ENV", "default")
    config["_config_source"] = base_path
    return config


def get_config_value(
    path: str,
    config: dict[str, Any] | None = None,
    default: Any = None,
) -> Any:
    """
    Get a nested config value by dotted path.

    Example:
        get_config_value("retry.max_attempts", cfg, 3)
    """
    if config is None:
        config = load_config()

    current: Any = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current
