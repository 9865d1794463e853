from pathlib import Path
import subprocess

import pytest

from sessionmirror import mirror_engine
from sessionmirror.mirror_engine import MirrorExecutor, RobocopyTool, RsyncTool, select_tool
from sessionmirror.models import MirrorDirection


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class _FakeRun:
    def __init__(self, returncode: int = 0, stdout: str = "", error: Exception | None = None) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.error = error
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(args, self.returncode, stdout=self.stdout, stderr="")


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch) -> _FakeRun:
    fake = _FakeRun()
    monkeypatch.setattr(mirror_engine.subprocess, "run", fake)
    return fake


def test_missing_source_never_spawns(tmp_path: Path, fake_run: _FakeRun) -> None:
    destination = tmp_path / "dest"
    executor = MirrorExecutor(RsyncTool())

    result = executor.mirror(Path("/does/not/exist"), destination, MirrorDirection.TO_DESTINATION)

    assert result.success is False
    assert "Source not found" in (result.error or "")
    assert "/does/not/exist" in (result.error or "")
    assert fake_run.calls == []
    assert not destination.exists()


def test_restore_with_missing_backup_never_spawns(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    executor = MirrorExecutor(RsyncTool())

    result = executor.mirror(source, tmp_path / "missing-backup", MirrorDirection.TO_SOURCE)

    assert result.success is False
    assert "missing-backup" in (result.error or "")
    assert fake_run.calls == []


def test_creates_missing_destination_before_running(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    _write(source / "session" / "a.json", "{}")
    destination = tmp_path / "drive" / "nested" / "backup"

    result = MirrorExecutor(RsyncTool()).mirror(source, destination, MirrorDirection.TO_DESTINATION)

    assert result.success is True
    assert destination.is_dir()
    assert len(fake_run.calls) == 1


def test_destination_creation_failure_is_reported(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    result = MirrorExecutor(RsyncTool()).mirror(source, blocker / "backup", MirrorDirection.TO_DESTINATION)

    assert result.success is False
    assert (result.error or "").startswith("Failed to create destination")
    assert fake_run.calls == []


def test_rsync_command_mirrors_contents_with_delete(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    destination = tmp_path / "backup"
    source.mkdir()
    destination.mkdir()

    MirrorExecutor(RsyncTool()).mirror(source, destination, MirrorDirection.TO_DESTINATION)

    args = fake_run.calls[0]
    assert args[0] == "rsync"
    assert "--delete" in args
    assert args[-2:] == [f"{source}/", f"{destination}/"]


def test_restore_swaps_direction(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    destination = tmp_path / "backup"
    source.mkdir()
    destination.mkdir()

    MirrorExecutor(RsyncTool()).mirror(source, destination, MirrorDirection.TO_SOURCE)

    assert fake_run.calls[0][-2:] == [f"{destination}/", f"{source}/"]


def test_robocopy_logs_only_when_backing_up(tmp_path: Path) -> None:
    tool = RobocopyTool()
    source = tmp_path / "storage"
    destination = tmp_path / "backup"

    backup_args = tool.command(source, destination, MirrorDirection.TO_DESTINATION)
    restore_args = tool.command(destination, source, MirrorDirection.TO_SOURCE)

    assert "/MIR" in backup_args
    assert f"/LOG+:{destination / 'sync.log'}" in backup_args
    assert not any(arg.startswith("/LOG") for arg in restore_args)
    assert restore_args[restore_args.index("/XF") + 1] == "sync.log"


@pytest.mark.parametrize(
    ("code", "expected"),
    [(0, True), (1, True), (7, True), (8, False), (16, False)],
)
def test_robocopy_exit_code_threshold(code: int, expected: bool) -> None:
    assert RobocopyTool().is_success(code) is expected


def test_rsync_nonzero_exit_is_failure(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    fake_run.returncode = 23

    result = MirrorExecutor(RsyncTool()).mirror(source, tmp_path / "backup", MirrorDirection.TO_DESTINATION)

    assert result.success is False
    assert result.error == "rsync exited with code 23"


def test_robocopy_code_seven_is_success(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    fake_run.returncode = 7

    result = MirrorExecutor(RobocopyTool()).mirror(source, tmp_path / "backup", MirrorDirection.TO_DESTINATION)

    assert result.success is True
    assert result.error is None


def test_spawn_failure_is_reported(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    fake_run.error = FileNotFoundError(2, "No such file or directory", "rsync")

    result = MirrorExecutor(RsyncTool()).mirror(source, tmp_path / "backup", MirrorDirection.TO_DESTINATION)

    assert result.success is False
    assert (result.error or "").startswith("rsync error:")


def test_files_changed_parsed_from_rsync_stats(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    fake_run.stdout = "Number of files: 1,204 (reg: 1,100, dir: 104)\nNumber of regular files transferred: 1,042\n"

    result = MirrorExecutor(RsyncTool()).mirror(source, tmp_path / "backup", MirrorDirection.TO_DESTINATION)

    assert result.files_changed == 1042


def test_files_changed_absent_output_is_not_an_error(tmp_path: Path, fake_run: _FakeRun) -> None:
    source = tmp_path / "storage"
    source.mkdir()
    fake_run.stdout = "garbled output"

    result = MirrorExecutor(RsyncTool()).mirror(source, tmp_path / "backup", MirrorDirection.TO_DESTINATION)

    assert result.success is True
    assert result.files_changed is None


def test_robocopy_summary_copied_column() -> None:
    output = (
        "               Total    Copied   Skipped  Mismatch    FAILED    Extras\n"
        "    Dirs :        12         0        12         0         0         0\n"
        "   Files :       340         5       335         0         0         2\n"
    )

    assert RobocopyTool().parse_files_changed(output) == 5


def test_select_tool_by_platform() -> None:
    assert select_tool("win32").name == "robocopy"
    assert select_tool("linux").name == "rsync"
    assert select_tool("darwin").name == "rsync"
