from __future__ import annotations

from dataclasses import replace
from datetime import datetime
import logging
import math
from pathlib import Path
import threading
import time
from typing import Callable

from sessionmirror.models import (
    SKIP_DEBOUNCED,
    SKIP_IN_PROGRESS,
    SKIP_UNCONFIRMED,
    DelayedTask,
    MirrorDirection,
    PathPair,
    SchedulerState,
    SkippedSync,
    SyncResult,
)


DEBOUNCE_WINDOW_SECONDS = 30.0
TRIGGER_DELAY_SECONDS = 5.0

MirrorFn = Callable[[Path, Path, MirrorDirection], SyncResult]
TimerFactory = Callable[[float, Callable[[], None]], DelayedTask]


def start_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class SyncScheduler:
    """Coalesces trigger bursts into delayed backups and guards explicit syncs.

    Backups in either path share one gate: ``last_sync_at`` is stamped before
    the mirror runs, so a second caller arriving mid-run sees the gate closed.
    ``in_flight`` additionally covers forced syncs and restores, keeping at most
    one mirror process running at a time.
    """

    def __init__(
        self,
        paths: PathPair,
        mirror: MirrorFn,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
        timer_factory: TimerFactory = start_timer,
        debounce_window: float = DEBOUNCE_WINDOW_SECONDS,
        trigger_delay: float = TRIGGER_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.paths = paths
        self.debounce_window = debounce_window
        self.trigger_delay = trigger_delay
        self.state = SchedulerState()
        self.log = logger or logging.getLogger("sessionmirror.scheduler")

        self._mirror = mirror
        self._clock = clock
        self._wall_clock = wall_clock
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._generation = 0

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self.state.pending is not None

    def snapshot(self) -> SchedulerState:
        with self._lock:
            return replace(self.state)

    def seconds_since_last_sync(self) -> float | None:
        with self._lock:
            if self.state.last_sync_at is None:
                return None
            return max(0.0, self._clock() - self.state.last_sync_at)

    def _elapsed(self, now: float) -> float | None:
        if self.state.last_sync_at is None:
            return None
        return now - self.state.last_sync_at

    def _gate_closed(self, now: float) -> bool:
        elapsed = self._elapsed(now)
        return elapsed is not None and elapsed < self.debounce_window

    def _begin_backup(self, now: float) -> None:
        self.state.last_sync_at = now
        self.state.last_sync_time = self._wall_clock()
        self.state.in_flight = True

    def _run_backup(self) -> SyncResult:
        try:
            result = self._mirror(self.paths.source, self.paths.destination, MirrorDirection.TO_DESTINATION)
        except Exception as exc:
            self.log.exception("Mirror raised unexpectedly")
            result = SyncResult(success=False, error=f"Unexpected mirror error: {exc}")

        with self._lock:
            self.state.in_flight = False
            self.state.last_sync_success = result.success
            if result.success:
                self.state.sync_count += 1
            self._idle.notify_all()
        return result

    def on_trigger(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._gate_closed(now):
                self.log.debug("Trigger ignored: last sync %.1fs ago", self._elapsed(now))
                return False

            if self.state.pending is not None:
                self.state.pending.cancel()
            self._generation += 1
            generation = self._generation
            self.state.pending = self._timer_factory(self.trigger_delay, lambda: self._fire(generation))
            return True

    def _fire(self, generation: int) -> SyncResult | None:
        with self._lock:
            if generation != self._generation or self.state.pending is None:
                return None
            self.state.pending = None
            if self.state.in_flight:
                self.log.warning("Scheduled sync skipped: another mirror is in progress")
                return None
            self._begin_backup(self._clock())

        self.log.info("Starting session backup...")
        result = self._run_backup()
        if result.success:
            self.log.info("Backup complete in %.1fs", result.duration_ms / 1000)
        else:
            self.log.error("Backup failed: %s", result.error)
        return result

    def flush(self) -> SyncResult | None:
        """Run a pending scheduled sync immediately instead of waiting for its timer."""
        with self._lock:
            if self.state.pending is None:
                return None
            self.state.pending.cancel()
            generation = self._generation
        return self._fire(generation)

    def _drop_pending(self) -> None:
        if self.state.pending is not None:
            self.state.pending.cancel()
            self.state.pending = None
        self._generation += 1

    def cancel_pending(self) -> None:
        with self._lock:
            self._drop_pending()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no mirror is running; False if the timeout expired first."""
        with self._idle:
            return self._idle.wait_for(lambda: not self.state.in_flight, timeout)

    def sync_now(self, force: bool = False) -> SyncResult | SkippedSync:
        with self._lock:
            now = self._clock()
            if self.state.in_flight:
                return SkippedSync(reason=SKIP_IN_PROGRESS)
            if force:
                self.state.last_sync_at = None
            elapsed = self._elapsed(now)
            if elapsed is not None and elapsed < self.debounce_window:
                return SkippedSync(
                    reason=SKIP_DEBOUNCED,
                    seconds_since_last=int(math.floor(elapsed)),
                    wait_seconds=int(math.ceil(self.debounce_window - elapsed)),
                )
            # This run covers whatever a pending trigger would have mirrored.
            self._drop_pending()
            self._begin_backup(now)

        result = self._run_backup()
        if not result.success:
            self.log.error("Sync failed: %s", result.error)
        return result

    def restore_now(self, confirm: bool = False) -> SyncResult | SkippedSync:
        if not confirm:
            return SkippedSync(reason=SKIP_UNCONFIRMED)

        with self._lock:
            if self.state.in_flight:
                return SkippedSync(reason=SKIP_IN_PROGRESS)
            self.state.in_flight = True

        self.log.warning("Restoring %s from %s", self.paths.source, self.paths.destination)
        try:
            result = self._mirror(self.paths.source, self.paths.destination, MirrorDirection.TO_SOURCE)
        except Exception as exc:
            self.log.exception("Mirror raised unexpectedly")
            result = SyncResult(success=False, error=f"Unexpected mirror error: {exc}")
        finally:
            with self._lock:
                self.state.in_flight = False
                self._idle.notify_all()

        if not result.success:
            self.log.error("Restore failed: %s", result.error)
        return result
