from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
import json
import os
import sys

import yaml

from sessionmirror.scheduler import DEBOUNCE_WINDOW_SECONDS, TRIGGER_DELAY_SECONDS


DESTINATION_ENV_VAR = "OPENCODE_BACKUP_PATH"
BACKUP_FOLDER_NAME = "opencode-sessions"

# Google Drive names its root folder after the account locale.
MY_DRIVE_NAMES = [
    "My Drive",
    "Meine Ablage",
    "Mi unidad",
    "Mon Drive",
    "Il mio Drive",
    "Meu Drive",
    "Mijn Drive",
]

_KNOWN_KEYS = {"destination", "source", "debounceSeconds", "triggerDelaySeconds", "logFile"}


@dataclass(slots=True)
class MirrorSettings:
    source: Path
    destination: Path | None
    log_file: Path
    platform_tag: str
    debounce_seconds: float = DEBOUNCE_WINDOW_SECONDS
    trigger_delay_seconds: float = TRIGGER_DELAY_SECONDS
    config_path: Path | None = None


def default_state_dir(home: Path | None = None) -> Path:
    return (home or Path.home()) / ".session-mirror"


def default_config_file(home: Path | None = None) -> Path:
    return default_state_dir(home) / "config.yaml"


def default_log_file(home: Path | None = None) -> Path:
    return default_state_dir(home) / "agent.log"


def _is_windows(platform_tag: str) -> bool:
    return platform_tag.startswith("win")


def _as_path(value: Any, field_name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string path")
    return Path(value).expanduser().absolute()


def _as_seconds(value: Any, field_name: str, default: float, allow_zero: bool) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number of seconds")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{field_name} must be {'>= 0' if allow_zero else '> 0'}")
    return float(value)


def _load_raw_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ValueError(f"Config file does not exist: {config_path}")

    suffix = config_path.suffix.lower()
    text = config_path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        loaded = yaml.safe_load(text)
    elif suffix == ".json":
        loaded = json.loads(text)
    else:
        raise ValueError("Config file must be .yaml/.yml or .json")

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("Config root must be an object")

    unknown = sorted(set(loaded) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")
    return loaded


def default_source(platform_tag: str, env: Mapping[str, str], home: Path) -> Path:
    if _is_windows(platform_tag):
        base = Path(env["LOCALAPPDATA"]) if env.get("LOCALAPPDATA") else home / "AppData" / "Local"
    else:
        base = Path(env["XDG_DATA_HOME"]) if env.get("XDG_DATA_HOME") else home / ".local" / "share"
    return base / "opencode" / "storage"


def _google_drive_root(platform_tag: str, home: Path) -> Path | None:
    candidates: list[Path] = []
    if _is_windows(platform_tag):
        candidates.append(home / "Google Drive")
        candidates.extend(home / name for name in MY_DRIVE_NAMES)
    elif platform_tag == "darwin":
        cloud_storage = home / "Library" / "CloudStorage"
        for account_dir in sorted(cloud_storage.glob("GoogleDrive-*")):
            candidates.extend(account_dir / name for name in MY_DRIVE_NAMES)
        candidates.append(cloud_storage / "GoogleDrive" / "My Drive")
    else:
        candidates.extend([home / "GoogleDrive", home / "google-drive"])

    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return None


def default_destination(platform_tag: str, home: Path) -> Path | None:
    root = _google_drive_root(platform_tag, home)
    if root is None:
        return None
    return root / BACKUP_FOLDER_NAME


def load_settings(
    config_path: Path | None = None,
    destination_override: Path | None = None,
    env: Mapping[str, str] | None = None,
    platform_tag: str | None = None,
    home: Path | None = None,
) -> MirrorSettings:
    env = os.environ if env is None else env
    platform_tag = platform_tag or sys.platform
    home = home or Path.home()

    raw: dict[str, Any] = {}
    if config_path is not None:
        raw = _load_raw_config(config_path)
    else:
        candidate = default_config_file(home)
        if candidate.exists():
            config_path = candidate
            raw = _load_raw_config(candidate)

    if destination_override is not None:
        destination: Path | None = Path(destination_override).expanduser().absolute()
    elif env.get(DESTINATION_ENV_VAR):
        destination = _as_path(env[DESTINATION_ENV_VAR], DESTINATION_ENV_VAR)
    elif raw.get("destination") is not None:
        destination = _as_path(raw["destination"], "destination")
    else:
        destination = default_destination(platform_tag, home)

    if raw.get("source") is not None:
        source = _as_path(raw["source"], "source")
    else:
        source = default_source(platform_tag, env, home).absolute()

    log_file = _as_path(raw["logFile"], "logFile") if raw.get("logFile") is not None else default_log_file(home)

    return MirrorSettings(
        source=source,
        destination=destination,
        log_file=log_file,
        platform_tag=platform_tag,
        debounce_seconds=_as_seconds(
            raw.get("debounceSeconds"), "debounceSeconds", DEBOUNCE_WINDOW_SECONDS, allow_zero=False
        ),
        trigger_delay_seconds=_as_seconds(
            raw.get("triggerDelaySeconds"), "triggerDelaySeconds", TRIGGER_DELAY_SECONDS, allow_zero=True
        ),
        config_path=config_path,
    )
