from __future__ import annotations

import logging
import os
from pathlib import Path
import re
import subprocess
import sys
import time

from sessionmirror.models import MirrorDirection, SyncResult


SYNC_LOG_NAME = "sync.log"

_RSYNC_TRANSFERRED = re.compile(r"Number of (?:regular )?files transferred:\s*([\d,]+)")
_ROBOCOPY_FILES = re.compile(r"^\s*Files\s*:\s*(\d+)\s+(\d+)", re.MULTILINE)


class MirrorTool:
    """One external mirroring utility and its command line conventions."""

    name = ""

    def command(self, copy_from: Path, copy_to: Path, direction: MirrorDirection) -> list[str]:
        raise NotImplementedError

    def is_success(self, exit_code: int) -> bool:
        return exit_code == 0

    def parse_files_changed(self, output: str) -> int | None:
        return None


class RsyncTool(MirrorTool):
    name = "rsync"

    def command(self, copy_from: Path, copy_to: Path, direction: MirrorDirection) -> list[str]:
        # Trailing slashes mirror the directory contents, not the directory itself.
        return [
            "rsync",
            "-a",
            "--delete",
            "--stats",
            f"--exclude=/{SYNC_LOG_NAME}",
            f"{copy_from}/",
            f"{copy_to}/",
        ]

    def parse_files_changed(self, output: str) -> int | None:
        match = _RSYNC_TRANSFERRED.search(output or "")
        if not match:
            return None
        try:
            return int(match.group(1).replace(",", ""))
        except ValueError:
            return None


class RobocopyTool(MirrorTool):
    name = "robocopy"

    def command(self, copy_from: Path, copy_to: Path, direction: MirrorDirection) -> list[str]:
        args = [
            "robocopy",
            str(copy_from),
            str(copy_to),
            "/MIR",
            "/MT:8",
            "/R:2",
            "/W:1",
            "/NP",
            "/NDL",
            "/NJH",
            "/XF",
            SYNC_LOG_NAME,
        ]
        if direction is MirrorDirection.TO_DESTINATION:
            args.extend([f"/LOG+:{copy_to / SYNC_LOG_NAME}", "/TEE"])
        return args

    def is_success(self, exit_code: int) -> bool:
        # 0-7 report what was copied; 8 and above mean at least one failure.
        return 0 <= exit_code < 8

    def parse_files_changed(self, output: str) -> int | None:
        matches = _ROBOCOPY_FILES.findall(output or "")
        if not matches:
            return None
        return int(matches[-1][1])


def select_tool(platform_tag: str | None = None) -> MirrorTool:
    tag = platform_tag or sys.platform
    if tag.startswith("win"):
        return RobocopyTool()
    return RsyncTool()


class MirrorExecutor:
    def __init__(self, tool: MirrorTool, logger: logging.Logger | None = None) -> None:
        self.tool = tool
        self.log = logger or logging.getLogger("sessionmirror.mirror")

    def mirror(self, source: Path, destination: Path, direction: MirrorDirection) -> SyncResult:
        if direction is MirrorDirection.TO_DESTINATION:
            copy_from, copy_to = Path(source), Path(destination)
        else:
            copy_from, copy_to = Path(destination), Path(source)

        if not copy_from.is_dir():
            return SyncResult(success=False, error=f"Source not found: {copy_from}")

        if not copy_to.exists():
            try:
                copy_to.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                return SyncResult(success=False, error=f"Failed to create destination: {exc}")

        args = self.tool.command(copy_from, copy_to, direction)
        self.log.debug("Running %s", " ".join(args))

        creationflags = 0
        if os.name == "nt":
            creationflags = subprocess.CREATE_NO_WINDOW

        started = time.monotonic()
        try:
            completed = subprocess.run(
                args,
                check=False,
                capture_output=True,
                text=True,
                errors="replace",
                creationflags=creationflags,
            )
        except OSError as exc:
            return SyncResult(
                success=False,
                duration_ms=_elapsed_ms(started),
                error=f"{self.tool.name} error: {exc}",
            )

        duration_ms = _elapsed_ms(started)
        if not self.tool.is_success(completed.returncode):
            stderr = (completed.stderr or "").strip()
            if stderr:
                self.log.debug("%s stderr: %s", self.tool.name, stderr)
            return SyncResult(
                success=False,
                duration_ms=duration_ms,
                error=f"{self.tool.name} exited with code {completed.returncode}",
            )

        return SyncResult(
            success=True,
            duration_ms=duration_ms,
            files_changed=self.tool.parse_files_changed(completed.stdout),
        )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))
