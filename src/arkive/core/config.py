"""Configuration loader for arkive."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

log = logging.getLogger(__name__)

DEFAULTS: dict = {
    "home": "~/.arkive",
    "copy": {
        "chunk_size": 1024 * 1024,
    },
    "imaging": {
        "chunk_size": 1024 * 1024,
    },
    "jobs": {
        "poll_interval": 1.0,
        "deadline": None,  # seconds; None polls until the job finishes
        "heartbeat_step": 10,
        "heartbeat_cap": 95,
    },
    "manifest": {
        "encoding": "utf-8",
    },
    "logging": {
        "level": "info",
    },
    "snapshot": {
        "provider": "passthrough",
    },
    "system_state": {
        "command": ["wbadmin", "start", "systemstaterecovery"],
    },
    "scheduler": {
        "jobs": [],
    },
}


def resolve_home() -> Path:
    """Resolve ARKIVE_HOME: env var > default ~/.arkive."""
    env_home = os.environ.get("ARKIVE_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path(DEFAULTS["home"]).expanduser().resolve()


def config_path(home: Path | None = None) -> Path:
    """Return the path to config.yaml."""
    if home is None:
        home = resolve_home()
    return home / "config.yaml"


def load_config(path: Path | None = None) -> dict:
    """Load config.yaml and merge with defaults.

    Args:
        path: Explicit path to config.yaml. If None, uses default location.

    Returns:
        Merged configuration dict.
    """
    if path is None:
        path = config_path()

    user_config: dict = {}
    if path.exists():
        try:
            raw = path.read_text(encoding="utf-8")
            user_config = yaml.safe_load(raw) or {}
        except Exception:
            log.warning("Failed to read config at %s, using defaults", path, exc_info=True)
        if not isinstance(user_config, dict):
            log.warning("Config at %s is not a mapping, using defaults", path)
            user_config = {}

    merged = _deep_merge(DEFAULTS, user_config)

    home_str = os.environ.get("ARKIVE_HOME") or merged.get("home", DEFAULTS["home"])
    merged["home"] = str(Path(home_str).expanduser().resolve())

    return merged


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
