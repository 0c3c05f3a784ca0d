"""Configuration loading: built-in defaults <- YAML file <- environment variables."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("fleetguard.config")

DEFAULT_CONFIG_DIR = Path.home() / ".fleetguard"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"

_DEFAULTS: dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
    },
    "store": {
        "path": str(DEFAULT_CONFIG_DIR / "state.db"),
    },
    "alerts": {
        "evaluation_interval": 30,
        "initial_delay": 1.0,
        "rule_change_delay": 1.0,
    },
    "repair": {
        "max_loops": 3,
        "repairable": True,
        "session_retention": 3600,
    },
    "missions": {
        "base_url": "http://127.0.0.1:8585",
        "token_env": "FLEETGUARD_MISSIONS_TOKEN",
        "timeout": 15,
    },
    "notifications": {
        "timeout": 10,
        "retry_attempts": 3,
    },
    "collectors": {
        "kubernetes": {
            "enabled": True,
            "kubeconfig": None,
            "contexts": [],
            "gpu_resource": "nvidia.com/gpu",
            "restart_threshold": 1,
        },
    },
    "serve": {
        "host": "127.0.0.1",
        "port": 8686,
    },
}

# env var -> (section, key, cast)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "FLEETGUARD_LOG_LEVEL": ("logging", "level", str),
    "FLEETGUARD_STORE_PATH": ("store", "path", str),
    "FLEETGUARD_MISSIONS_URL": ("missions", "base_url", str),
    "FLEETGUARD_EVALUATION_INTERVAL": ("alerts", "evaluation_interval", int),
    "FLEETGUARD_MAX_LOOPS": ("repair", "max_loops", int),
    "FLEETGUARD_SESSION_RETENTION": ("repair", "session_retention", float),
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with *override* merged recursively into *base*."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    for env_name, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            cfg[section][key] = cast(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: expected %s", env_name, raw, cast.__name__)


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load the effective configuration.

    Args:
        config_path: YAML file to read. Defaults to ~/.fleetguard/config.yaml.
            A missing file is not an error; defaults are used.

    Returns:
        The merged configuration dict.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    file_cfg: dict[str, Any] = {}

    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not read config %s: %s; using defaults", path, e)
            loaded = None
        if isinstance(loaded, dict):
            file_cfg = loaded
        elif loaded is not None:
            logger.warning("Config %s is not a mapping; ignoring it", path)

    cfg = _deep_merge(_DEFAULTS, file_cfg)
    _apply_env_overrides(cfg)
    return cfg


def generate_default_yaml() -> str:
    """Render the default configuration as a commented YAML document."""
    header = (
        "# fleetguard configuration\n"
        "#\n"
        "# alerts.evaluation_interval   seconds between rule evaluations\n"
        "# repair.max_loops             diagnose/repair iterations per session\n"
        "# repair.session_retention     seconds a finished session stays listed (0 = forever)\n"
        "# missions.base_url            mission runner endpoint\n"
        "# missions.token_env           env var holding the mission runner token\n"
        "# collectors.kubernetes.contexts  kubeconfig contexts to monitor (empty = all)\n"
        "#\n"
        "# Environment overrides: FLEETGUARD_LOG_LEVEL, FLEETGUARD_STORE_PATH,\n"
        "# FLEETGUARD_MISSIONS_URL, FLEETGUARD_EVALUATION_INTERVAL, FLEETGUARD_MAX_LOOPS\n\n"
    )
    return header + yaml.dump(_DEFAULTS, default_flow_style=False, sort_keys=False)
