from datetime import datetime
import os
from pathlib import Path

import pytest

from sessionmirror.stats import collect_stats, format_size


def _write_bytes(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def test_missing_destination_returns_empty_stats(tmp_path: Path) -> None:
    stats = collect_stats(tmp_path / "nope")

    assert stats.entry_count == 0
    assert stats.total_size_bytes == 0
    assert stats.last_modified is None


def test_destination_without_session_dir_is_empty(tmp_path: Path) -> None:
    _write_bytes(tmp_path / "message" / "m1.json", 10)

    stats = collect_stats(tmp_path)

    assert stats.entry_count == 0
    assert stats.total_size_bytes == 0


def test_two_sessions_sum_sizes(tmp_path: Path) -> None:
    _write_bytes(tmp_path / "session" / "proj-a" / "s1.json", 1000)
    _write_bytes(tmp_path / "session" / "proj-a" / "s2.json", 24)
    _write_bytes(tmp_path / "session" / "proj-b" / "s3.json", 2048)
    _write_bytes(tmp_path / "session" / "stray.json", 999)
    _write_bytes(tmp_path / "part" / "p1.json", 4096)

    stats = collect_stats(tmp_path)

    assert stats.entry_count == 2
    assert stats.total_size_bytes == 3072
    assert format_size(stats.total_size_bytes) == "3.0 KB"


def test_nested_files_are_counted(tmp_path: Path) -> None:
    _write_bytes(tmp_path / "session" / "proj" / "deep" / "er" / "s.json", 100)

    stats = collect_stats(tmp_path)

    assert stats.entry_count == 1
    assert stats.total_size_bytes == 100


def test_last_modified_is_newest_file(tmp_path: Path) -> None:
    older = tmp_path / "session" / "a" / "old.json"
    newer = tmp_path / "session" / "b" / "new.json"
    _write_bytes(older, 1)
    _write_bytes(newer, 1)
    os.utime(older, (1_700_000_000, 1_700_000_000))
    os.utime(newer, (1_750_000_000, 1_750_000_000))

    stats = collect_stats(tmp_path)

    assert stats.last_modified == datetime.fromtimestamp(1_750_000_000)


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.0 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (1048575, "1.0 MB"),
        (1024**3 - 1, "1.0 GB"),
        (3 * 1024**3, "3.0 GB"),
        (2048 * 1024**3, "2048.0 GB"),
    ],
)
def test_format_size(size: int, expected: str) -> None:
    assert format_size(size) == expected
