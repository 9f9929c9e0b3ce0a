"""Platform-specific editor workspace storage roots."""
from __future__ import annotations

import sys
from pathlib import Path

from copilotdash import config

_EDITOR_FLAVOURS = ("Code", "Code - Insiders")

# Per-platform location of the editor "User" directory, relative to home.
_USER_DIR_BY_PLATFORM: dict[str, tuple[str, ...]] = {
    "win32": ("AppData", "Roaming"),
    "darwin": ("Library", "Application Support"),
    "linux": (".config",),
}


def _platform_key(platform: str) -> str:
    if platform.startswith("win"):
        return "win32"
    if platform == "darwin":
        return "darwin"
    return "linux"


def default_storage_roots(home: Path | None = None, platform: str | None = None) -> list[Path]:
    """Return the stable and Insiders workspaceStorage roots for a platform."""
    base = home or Path.home()
    prefix = _USER_DIR_BY_PLATFORM[_platform_key(platform or sys.platform)]
    return [
        base.joinpath(*prefix, flavour, "User", config.STORAGE_ROOT_SEGMENT)
        for flavour in _EDITOR_FLAVOURS
    ]


def resolve_storage_roots(overrides: list[Path] | None = None) -> list[Path]:
    if overrides:
        return list(overrides)
    if config.STORAGE_ROOTS_OVERRIDE:
        return list(config.STORAGE_ROOTS_OVERRIDE)
    return default_storage_roots()
