from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol


class MirrorDirection(str, Enum):
    TO_DESTINATION = "toDestination"
    TO_SOURCE = "toSource"


SKIP_DEBOUNCED = "debounced"
SKIP_IN_PROGRESS = "in-progress"
SKIP_UNCONFIRMED = "confirmation-required"


@dataclass(frozen=True, slots=True)
class SyncResult:
    success: bool
    duration_ms: int = 0
    files_changed: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SkippedSync:
    reason: str
    seconds_since_last: int | None = None
    wait_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class PathPair:
    source: Path
    destination: Path


@dataclass(slots=True)
class BackupStats:
    entry_count: int = 0
    total_size_bytes: int = 0
    last_modified: datetime | None = None


class DelayedTask(Protocol):
    def cancel(self) -> None: ...


@dataclass(slots=True)
class SchedulerState:
    last_sync_at: float | None = None
    last_sync_time: datetime | None = None
    last_sync_success: bool = False
    sync_count: int = 0
    pending: DelayedTask | None = None
    in_flight: bool = False
