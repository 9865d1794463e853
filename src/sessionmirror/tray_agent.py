from __future__ import annotations

import argparse
import os
from pathlib import Path
import subprocess
import sys
import threading
import tkinter as tk
from tkinter import messagebox
import traceback
from typing import Callable

from PIL import Image, ImageDraw
import pystray

from sessionmirror.config import MirrorSettings, load_settings
from sessionmirror.logs import configure_logging
from sessionmirror.run_service import STATUS_SKIPPED, BackupService, Report


APP_TITLE = "Session Mirror"


class TrayAgent:
    def __init__(self, settings: MirrorSettings) -> None:
        self.settings = settings
        self.logger = configure_logging(settings.log_file)
        self.service = BackupService(settings)

        self._lock = threading.Lock()
        self._busy = False

        self.icon = pystray.Icon("session-mirror", self._create_icon(), APP_TITLE, self._build_menu())

    def _create_icon(self) -> Image.Image:
        image = Image.new("RGBA", (64, 64), (28, 28, 30, 255))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, 56, 56), outline=(120, 200, 140, 255), width=4)
        draw.polygon([(32, 16), (46, 34), (18, 34)], fill=(120, 200, 140, 255))
        draw.rectangle((27, 34, 37, 48), fill=(120, 200, 140, 255))
        return image

    def _build_menu(self) -> pystray.Menu:
        return pystray.Menu(
            pystray.MenuItem("Sync now", self._menu_sync),
            pystray.MenuItem("Force sync", self._menu_force_sync),
            pystray.MenuItem("Show status", self._menu_status),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Restore from backup...", self._menu_restore),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Open backup folder", self._menu_open_backup),
            pystray.MenuItem("Open log", self._menu_open_log),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", self._menu_quit),
        )

    def run(self) -> None:
        self.logger.info(
            "Agent starting: source=%s destination=%s",
            self.settings.source,
            self.settings.destination or "(unresolved)",
        )
        self.icon.run()

    def stop(self) -> None:
        self.logger.info("Agent stopping")
        self.service.close()
        self.icon.stop()

    def _notify(self, message: str) -> None:
        try:
            self.icon.notify(message, APP_TITLE)
        except Exception:
            self.logger.debug("Tray notification unavailable")

    def _run_in_background(self, label: str, operation: Callable[[], Report]) -> None:
        with self._lock:
            if self._busy:
                self.logger.warning("%s skipped: another operation is in progress", label)
                self._notify(f"{label} skipped: already running")
                return
            self._busy = True

        def _worker() -> None:
            try:
                report = operation()
                self.logger.info("%s: %s", label, report.text.replace("\n", " | "))
                self._notify(report.text)
            except Exception:
                self.logger.error("Unhandled error during %s:\n%s", label, traceback.format_exc())
                self._notify(f"{label} failed. See log for details.")
            finally:
                with self._lock:
                    self._busy = False

        threading.Thread(target=_worker, daemon=True).start()

    def _menu_sync(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._run_in_background("Sync", lambda: self.service.sync(force=False))

    def _menu_force_sync(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._run_in_background("Forced sync", lambda: self.service.sync(force=True))

    def _menu_status(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._run_in_background("Status", self.service.status)

    def _menu_restore(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        threading.Thread(target=self._confirm_and_restore, daemon=True).start()

    def _confirm_and_restore(self) -> None:
        preview = self.service.restore(confirm=False)
        if preview.status != STATUS_SKIPPED:
            self._notify(preview.text)
            return

        root = tk.Tk()
        root.withdraw()
        try:
            confirmed = messagebox.askyesno(
                APP_TITLE,
                f"Overwrite {self.settings.source} with the backup in {self.settings.destination}?",
            )
        finally:
            root.destroy()

        if not confirmed:
            self.logger.info("Restore cancelled by user")
            return
        self._run_in_background("Restore", lambda: self.service.restore(confirm=True))

    def _menu_open_backup(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        if self.settings.destination is None:
            self._notify("No backup destination configured")
            return
        self._open_in_shell(self.settings.destination)

    def _menu_open_log(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._open_in_shell(self.settings.log_file)

    def _menu_quit(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self.stop()

    def _open_in_shell(self, path: Path) -> None:
        try:
            if os.name == "nt":
                os.startfile(str(path))  # type: ignore[attr-defined]
            else:
                opener = "open" if sys.platform == "darwin" else "xdg-open"
                subprocess.Popen([opener, str(path)])
        except Exception as exc:
            self.logger.error("Failed to open path %s: %s", path, exc)
            self._notify(f"Open failed: {path}")


def run_agent(settings: MirrorSettings) -> int:
    agent = TrayAgent(settings)
    agent.run()
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="session-mirror-agent", description="Session Mirror task tray agent")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--destination", type=Path, default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings(config_path=args.config, destination_override=args.destination)
    except Exception as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return 3
    return run_agent(settings)
