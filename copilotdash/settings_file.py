"""Loading of default usage settings from a YAML file."""
from __future__ import annotations

from pathlib import Path

import yaml

from copilotdash.models import UsageSettings

_ALLOWED_KEYS = {"retention_days", "auto_cleanup", "include_prompts"}


def load_usage_settings(path: str | Path) -> UsageSettings:
    """Load and validate default usage settings.

    Validation is strict: unknown keys, wrong types and a non-positive
    retention window are rejected rather than silently ignored.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the YAML is invalid or a value is rejected
    """
    settings_path = Path(path)
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(settings_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in settings file {path}: {e}") from e

    if raw is None:
        return UsageSettings()
    if not isinstance(raw, dict):
        raise ValueError("Settings file must contain a mapping")

    unknown = set(raw) - _ALLOWED_KEYS
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")

    defaults = UsageSettings()
    retention = raw.get("retention_days", defaults.retentionDays)
    if isinstance(retention, bool) or not isinstance(retention, int):
        raise ValueError("retention_days must be an integer")
    if retention <= 0:
        raise ValueError("retention_days must be > 0")

    flags: dict[str, bool] = {}
    for key, default in (("auto_cleanup", defaults.autoCleanup), ("include_prompts", defaults.includePrompts)):
        value = raw.get(key, default)
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be true or false")
        flags[key] = value

    return UsageSettings(
        retentionDays=retention,
        autoCleanup=flags["auto_cleanup"],
        includePrompts=flags["include_prompts"],
    )
