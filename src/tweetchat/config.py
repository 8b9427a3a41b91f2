"""Configuration loading utilities for the tweetchat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable TWEETCHAT_CONFIG
3. Fallback to "config/default.yaml"

On top of the file, conventional deployment variables are honoured
(``GEMINI_API_KEY``, ``AWS_REGION``, ``S3_BUCKET_NAME``, ``AWS_ACCESS_KEY_ID``,
``AWS_SECRET_ACCESS_KEY``), followed by explicit overrides with prefix
``TWEETCHAT__`` (e.g., TWEETCHAT__LLM__MODEL_NAME=gemini-2.5-flash).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "TWEETCHAT__"

DEFAULTS: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "auth": {"tokens": {}},
    "storage": {"backend": "disk", "data_dir": "data", "bucket": None, "region": None},
    "llm": {"api_key": None, "model_name": "gemini-2.5-flash", "history_window": 4},
    "logging": {"level": "INFO"},
}

# (env var, section, key)
_CONVENTIONAL_ENV = (
    ("GEMINI_API_KEY", "llm", "api_key"),
    ("AWS_REGION", "storage", "region"),
    ("S3_BUCKET_NAME", "storage", "bucket"),
    ("AWS_ACCESS_KEY_ID", "storage", "access_key_id"),
    ("AWS_SECRET_ACCESS_KEY", "storage", "secret_access_key"),
)


def _coerce(value: str) -> Any:
    # Attempt to parse simple types (bool, int, float)
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _apply_conventional_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for var, section, key in _CONVENTIONAL_ENV:
        value = os.environ.get(var)
        if value:
            cfg.setdefault(section, {})[key] = value
    return cfg


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix TWEETCHAT__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., TWEETCHAT__STORAGE__BUCKET -> cfg["storage"]["bucket"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML configuration for the tweetchat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``TWEETCHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file contents, with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("TWEETCHAT_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        file_cfg: Dict[str, Any] = {}
    else:
        with path_obj.open("r", encoding="utf-8") as f:
            try:
                file_cfg = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

        if not isinstance(file_cfg, dict):
            raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    cfg = _merge(DEFAULTS, file_cfg)
    cfg = _apply_conventional_env(cfg)
    return _apply_env_overrides(cfg)
