"""Settings storage for deployment defaults and tool locations."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "WIM_DEPLOYER_SETTINGS_PATH",
        Path.home() / ".config" / "wim-deployer" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_DRIVE_LETTER_FIRST = "E"
DEFAULT_DRIVE_LETTER_LAST = "Z"
DEFAULT_REMOVABLE_MARKERS = ("USB", "Flash")
DEFAULT_OS_LABEL = "Windows"
DEFAULT_MIN_OS_PARTITION_MB = 4096

DEFAULT_SETTINGS: dict[str, Any] = {
    "drive_letter_first": DEFAULT_DRIVE_LETTER_FIRST,
    "drive_letter_last": DEFAULT_DRIVE_LETTER_LAST,
    "removable_markers": list(DEFAULT_REMOVABLE_MARKERS),
    "os_label": DEFAULT_OS_LABEL,
    "min_os_partition_mb": DEFAULT_MIN_OS_PARTITION_MB,
    "powershell_path": "powershell.exe",
    "dism_path": "DISM.exe",
    "bcdboot_path": "bcdboot.exe",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)



def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)



def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_markers() -> tuple[str, ...]:
    """Return the configured removable-media model markers."""
    markers = get_setting("removable_markers", DEFAULT_REMOVABLE_MARKERS)
    if isinstance(markers, str):
        markers = [markers]
    return tuple(str(marker) for marker in markers if marker)


load_settings()
