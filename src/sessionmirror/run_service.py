from __future__ import annotations

from dataclasses import dataclass
import logging

from sessionmirror.config import MirrorSettings
from sessionmirror.mirror_engine import MirrorExecutor, select_tool
from sessionmirror.models import SKIP_IN_PROGRESS, SKIP_UNCONFIRMED, PathPair, SkippedSync, SyncResult
from sessionmirror.scheduler import MirrorFn, SyncScheduler
from sessionmirror.stats import collect_stats, format_size


SYNC_EVENTS = frozenset({"message.updated", "session.updated", "session.deleted"})

STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

NO_DESTINATION_ERROR = (
    "no backup destination configured (set OPENCODE_BACKUP_PATH, "
    "'destination' in the config file, or install Google Drive)"
)


@dataclass(frozen=True, slots=True)
class Report:
    status: str
    text: str

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def __str__(self) -> str:
        return self.text


def _seconds(duration_ms: int) -> str:
    return f"{duration_ms / 1000:.1f}s"


class BackupService:
    """Event subscriber and on-demand operations over one scheduler."""

    def __init__(
        self,
        settings: MirrorSettings,
        mirror: MirrorFn | None = None,
        scheduler: SyncScheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.log = logger or logging.getLogger("sessionmirror.service")

        self.paths: PathPair | None = None
        if settings.destination is not None:
            self.paths = PathPair(source=settings.source, destination=settings.destination)

        self.scheduler = scheduler
        if self.scheduler is None and self.paths is not None:
            if mirror is None:
                mirror = MirrorExecutor(select_tool(settings.platform_tag)).mirror
            self.scheduler = SyncScheduler(
                self.paths,
                mirror,
                debounce_window=settings.debounce_seconds,
                trigger_delay=settings.trigger_delay_seconds,
            )

    def handle_event(self, event_type: str) -> bool:
        if event_type not in SYNC_EVENTS:
            return False
        if self.scheduler is None:
            self.log.warning("Event %s ignored: %s", event_type, NO_DESTINATION_ERROR)
            return False
        return self.scheduler.on_trigger()

    def sync(self, force: bool = False) -> Report:
        if self.scheduler is None or self.paths is None:
            return Report(STATUS_FAILED, f"Sync failed: {NO_DESTINATION_ERROR}")

        outcome = self.scheduler.sync_now(force=force)
        if isinstance(outcome, SkippedSync):
            if outcome.reason == SKIP_IN_PROGRESS:
                return Report(STATUS_SKIPPED, "Sync skipped - a mirror operation is already running.")
            return Report(
                STATUS_SKIPPED,
                f"Sync skipped - last sync was {outcome.seconds_since_last}s ago. "
                f"Wait {outcome.wait_seconds}s or use force=true.",
            )
        if not outcome.success:
            return Report(STATUS_FAILED, f"Sync failed: {outcome.error}")

        text = f"Sync complete in {_seconds(outcome.duration_ms)}. Sessions backed up to {self.paths.destination}"
        if outcome.files_changed is not None:
            text += f" ({outcome.files_changed} files changed)"
        return Report(STATUS_OK, text)

    def restore(self, confirm: bool = False) -> Report:
        if self.scheduler is None or self.paths is None:
            return Report(STATUS_FAILED, f"Restore failed: {NO_DESTINATION_ERROR}")

        outcome: SyncResult | SkippedSync = self.scheduler.restore_now(confirm=confirm)
        if isinstance(outcome, SkippedSync):
            if outcome.reason == SKIP_UNCONFIRMED:
                return Report(
                    STATUS_SKIPPED,
                    f"Restore will overwrite {self.paths.source} with the backup in "
                    f"{self.paths.destination}. Re-run with confirm=true to proceed.",
                )
            return Report(STATUS_SKIPPED, "Restore skipped - a mirror operation is already running.")
        if not outcome.success:
            return Report(STATUS_FAILED, f"Restore failed: {outcome.error}")
        return Report(
            STATUS_OK,
            f"Restore complete in {_seconds(outcome.duration_ms)}. "
            f"Sessions restored from {self.paths.destination} to {self.paths.source}",
        )

    def status(self) -> Report:
        if self.scheduler is None or self.paths is None:
            return Report(
                STATUS_FAILED,
                f"Backup path: (unresolved)\nSource path: {self.settings.source}\n"
                f"Status unavailable: {NO_DESTINATION_ERROR}",
            )

        stats = collect_stats(self.paths.destination)
        state = self.scheduler.snapshot()
        since = self.scheduler.seconds_since_last_sync()

        last_backup = stats.last_modified.strftime("%Y-%m-%d %H:%M:%S") if stats.last_modified else "never"
        last_sync = f"{int(since)}s ago" if since is not None else "never"
        last_sync_at = state.last_sync_time.strftime("%Y-%m-%d %H:%M:%S") if state.last_sync_time else "never"
        lines = [
            f"Backup path: {self.paths.destination}",
            f"Source path: {self.paths.source}",
            f"Sessions: {stats.entry_count}",
            f"Size: {format_size(stats.total_size_bytes)}",
            f"Last backup: {last_backup}",
            f"Last sync: {last_sync}",
            f"Last sync at: {last_sync_at}",
            f"Last sync succeeded: {'yes' if state.last_sync_success else 'no'}",
            f"Syncs this session: {state.sync_count}",
            f"Sync pending: {'yes' if state.pending is not None else 'no'}",
        ]
        return Report(STATUS_OK, "\n".join(lines))

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_pending()
