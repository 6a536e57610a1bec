from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from vine_platform.core.model import DEFAULT_VERSION, is_valid_status, is_valid_version


DEFAULT_SETTINGS: dict[str, Any] = {
    # Version written into the magic line of graphs created by `vine init`.
    "version": DEFAULT_VERSION,
    # Status given to tasks added from the CLI without --status.
    "default_status": "notstarted",
    "log_level": "WARNING",
}

CONFIG_ENV = "VINE_CONFIG"
LOG_LEVEL_ENV = "VINE_LOG_LEVEL"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SettingsError(ValueError):
    pass


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      version: "1.2.0"
      default_status: planning
      log_level: INFO

    Every key is optional; unknown keys are rejected.
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError("settings file must be a mapping of name -> value")

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in DEFAULT_SETTINGS:
            raise SettingsError(f"unknown setting '{k}' (known: {', '.join(sorted(DEFAULT_SETTINGS))})")
        if not isinstance(v, str) or not v.strip():
            raise SettingsError(f"setting '{k}' must be a non-empty string")
        out[k] = v.strip()

    if "version" in out and not is_valid_version(out["version"]):
        raise SettingsError(f"setting 'version' must be dotted digits like 1.2.0: {out['version']}")
    if "default_status" in out and not is_valid_status(out["default_status"]):
        raise SettingsError(f"setting 'default_status' is not a valid status: {out['default_status']}")
    if "log_level" in out:
        out["log_level"] = out["log_level"].upper()
        if out["log_level"] not in _LOG_LEVELS:
            raise SettingsError(f"setting 'log_level' must be one of: {', '.join(_LOG_LEVELS)}")
    return out


def load_settings(path: str | Path | None = None) -> dict[str, Any]:
    """Return DEFAULT_SETTINGS merged with the settings file and environment.

    The file is `path` if given, else $VINE_CONFIG if set. $VINE_LOG_LEVEL
    wins over the file's log_level.
    """
    settings = dict(DEFAULT_SETTINGS)

    source = path or os.getenv(CONFIG_ENV)
    if source:
        settings.update(load_settings_file(source))

    env_level = os.getenv(LOG_LEVEL_ENV)
    if env_level:
        settings["log_level"] = env_level.strip().upper()
    return settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
