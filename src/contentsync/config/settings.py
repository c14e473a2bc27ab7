"""Utility functions for reading and writing the update engine settings."""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from contentsync.config.configuration import find_setting, get_settings_registry, register_setting
from contentsync.config.logging_config import get_logger
from contentsync.updates.config import EngineConfig

log = get_logger(__name__)

# Constants
SETTINGS_FILE = "settings.yaml"
SETTINGS_SECTION = "update_engine"
ENV_PREFIX = "CONTENTSYNC_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

# Scalar engine settings are registered here so that hosts can list them
# (for a settings screen or `--help` output) via get_settings_registry().

_GROUPS = {
    "default_throttle_interval": "Throttling",
    "coordination_timeout": "Coordination",
    "coordination_max_concurrent": "Coordination",
    "stale_lock_seconds": "Coordination",
    "default_size_limit": "Size",
    "warning_ratio": "Size",
    "critical_ratio": "Size",
    "emergency_ratio": "Size",
    "cleanup_keep_ratio": "Size",
    "size_monitor_interval": "Size",
    "max_rollback_attempts": "Recovery",
    "rollback_enabled": "Recovery",
    "rollback_tolerance": "Recovery",
    "corruption_detection_enabled": "Recovery",
    "excessive_size_factor": "Recovery",
    "duplicate_min_items": "Recovery",
    "duplicate_ratio": "Recovery",
    "severity_reason_threshold": "Recovery",
    "leak_min_elements": "Recovery",
    "leak_marker_ratio": "Recovery",
    "scroll_tolerance": "Viewport",
    "interaction_window": "Viewport",
    "interaction_threshold": "Viewport",
    "max_error_log_size": "Diagnostics",
    "update_history_size": "Diagnostics",
}

for _field in fields(EngineConfig):
    if _field.name not in _GROUPS:
        continue
    register_setting(
        package_name="contentsync",
        env_var=f"{ENV_PREFIX}{_field.name.upper()}",
        key=_field.name,
        group=_GROUPS[_field.name],
        description=f"Update engine setting '{_field.name.replace('_', ' ')}'",
        default=_field.default,
    )


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_system_file_path(filename: str) -> Path:
    """Return the path to the configuration file for the current OS."""
    import platform

    os_name = platform.system()
    if os_name in {"Linux", "Darwin"}:
        return Path.home() / ".config" / "contentsync" / filename
    elif os_name == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata is not None:
            return Path(appdata) / "contentsync" / filename
        return Path("data") / filename
    return Path("data") / filename


# ---------------------------------------------------------------------------
# Settings helpers
# ---------------------------------------------------------------------------


def load_settings(path: Path | None = None) -> Dict[str, Any]:
    """Load the update engine section from the YAML settings file."""
    settings_file = path or get_system_file_path(SETTINGS_FILE)
    if not settings_file.exists():
        return {}

    with open(settings_file, "r") as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, dict):
        raise ValueError(f"{settings_file} must contain a mapping")
    section = document.get(SETTINGS_SECTION) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{SETTINGS_SECTION}' in {settings_file} must be a mapping")
    return section


def save_settings(settings: Dict[str, Any], path: Path | None = None) -> None:
    """Write the update engine section back, keeping other sections intact."""
    settings_file = path or get_system_file_path(SETTINGS_FILE)
    os.makedirs(os.path.dirname(settings_file), exist_ok=True)

    document: Dict[str, Any] = {}
    if settings_file.exists():
        with open(settings_file, "r") as f:
            document = yaml.safe_load(f) or {}

    document[SETTINGS_SECTION] = settings
    with open(settings_file, "w") as f:
        yaml.safe_dump(document, f)


def _coerce(key: str, value: Any, template: Any) -> Any:
    """Convert a raw settings value to the type of the field default."""
    if isinstance(template, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Invalid boolean for {key}: {value!r}")
    if isinstance(template, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid integer for {key}: {value!r}") from None
    if isinstance(template, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid number for {key}: {value!r}") from None
    return value


def load_engine_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Build an EngineConfig from the settings file and the environment.

    Values from ``settings.yaml`` are applied first, then ``CONTENTSYNC_*``
    environment variables. Per-resource maps (``container_limits`` and
    ``throttle_intervals``) are only read from the file.
    """
    env = os.environ if env is None else env
    raw = load_settings(path)
    defaults = EngineConfig()
    values: Dict[str, Any] = {}

    for key, value in raw.items():
        if key in ("container_limits", "throttle_intervals"):
            if not isinstance(value, dict):
                raise ValueError(f"{key} must be a mapping")
            cast = int if key == "container_limits" else float
            values[key] = {str(rid): cast(v) for rid, v in value.items()}
            continue
        setting = find_setting(key)
        if setting is None:
            log.warning(f"Ignoring unknown update engine setting: {key}")
            continue
        values[key] = _coerce(key, value, getattr(defaults, key))

    for setting in get_settings_registry():
        if setting.env_var in env:
            values[setting.key] = _coerce(setting.key, env[setting.env_var], getattr(defaults, setting.key))

    log.debug("Loaded update engine settings", extra={"keys": sorted(values)})
    return EngineConfig(**values)
