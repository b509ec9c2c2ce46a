"""Settings for the store, mirrors, and sync coordinator.

Values resolve in this order: keyword argument, ``HEXANOTES_*`` environment
variable, YAML settings file, built-in default.

Example settings file::

    data_dir: ~/.hexanotes
    container_name: HexaNotes
    debounce_seconds: 2
    table_url: https://xyz.supabase.co
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from hexanotes.errors import ConfigError

_ENV_PREFIX = "HEXANOTES_"

# Field name -> environment variable suffix where it differs from the upper-cased name.
_ENV_NAMES = {
    "container_name": "CONTAINER",
    "snapshot_name": "SNAPSHOT",
    "legacy_container_name": "LEGACY_CONTAINER",
    "legacy_snapshot_name": "LEGACY_SNAPSHOT",
    "table_name": "TABLE",
    "attachment_bucket": "BUCKET",
    "debounce_seconds": "DEBOUNCE",
    "sync_interval_seconds": "SYNC_INTERVAL",
}


@dataclass
class Settings:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".hexanotes")
    #: Primary object-mirror location.
    container_name: str = "HexaNotes"
    snapshot_name: str = "notes.json"
    #: Location written by earlier releases, checked when the primary is absent.
    legacy_container_name: str = "NotesApp"
    legacy_snapshot_name: str = "notes_backup.json"
    drive_api_url: str = "https://www.googleapis.com/drive/v3"
    drive_upload_url: str = "https://www.googleapis.com/upload/drive/v3"
    table_url: str = ""
    table_key: str = ""
    table_name: str = "notes"
    attachment_bucket: str = "attachments"
    debounce_seconds: float = 1.5
    sync_interval_seconds: float = 0.0
    timeout: float = 10.0
    log_level: str = "INFO"
    log_format: str = "console"

    @staticmethod
    def env_var(name: str) -> str:
        return _ENV_PREFIX + _ENV_NAMES.get(name, name.upper())


def _coerce(name: str, default: Any, value: Any) -> Any:
    try:
        if isinstance(default, Path):
            return Path(value).expanduser()
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Malformed settings file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")
    return data


def load_settings(path: Path | str | None = None, **overrides: Any) -> Settings:
    """Build :class:`Settings` from *overrides*, the environment, and an optional YAML file."""
    file_values = _read_yaml(Path(path)) if path is not None else {}
    defaults = Settings()
    known = {f.name for f in fields(Settings)}

    unknown = (set(file_values) | set(overrides)) - known
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = {}
    for name in known:
        default = getattr(defaults, name)
        if name in overrides and overrides[name] is not None:
            raw = overrides[name]
        elif (env := os.getenv(Settings.env_var(name))) is not None:
            raw = env
        elif name in file_values:
            raw = file_values[name]
        else:
            continue
        values[name] = _coerce(name, default, raw)
    return Settings(**values)
