from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path

from sessionmirror.models import BackupStats


SESSION_DIR_NAME = "session"

_UNITS = ["KB", "MB", "GB"]


def _walk_session(session_dir: Path) -> tuple[int, float | None]:
    total = 0
    newest: float | None = None
    for root_str, _, files in os.walk(session_dir):
        root = Path(root_str)
        for file_name in files:
            try:
                stat = (root / file_name).stat()
            except OSError:
                continue
            total += stat.st_size
            if newest is None or stat.st_mtime > newest:
                newest = stat.st_mtime
    return total, newest


def collect_stats(destination: Path) -> BackupStats:
    session_root = Path(destination) / SESSION_DIR_NAME
    if not session_root.is_dir():
        return BackupStats()

    stats = BackupStats()
    newest: float | None = None
    for child in session_root.iterdir():
        if not child.is_dir():
            continue
        stats.entry_count += 1
        size, mtime = _walk_session(child)
        stats.total_size_bytes += size
        if mtime is not None and (newest is None or mtime > newest):
            newest = mtime

    if newest is not None:
        stats.last_modified = datetime.fromtimestamp(newest)
    return stats


def format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    value = float(size_bytes)
    unit = "B"
    for unit in _UNITS:
        value /= 1024
        # Compare the displayed value so 1048575 B reads 1.0 MB, not 1024.0 KB.
        if round(value, 1) < 1024:
            break
    return f"{value:.1f} {unit}"
