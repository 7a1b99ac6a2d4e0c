"""Tests for local sync-directory conventions."""

from pathlib import Path

from cx_tools.cli.sync.files import (
    SyncFile,
    delete_sync_files,
    get_all_sync_files,
    group_by_kind,
    read_local_files,
    read_text,
    write_text,
)
from cx_tools.cli.sync.registry import SYNC_TYPES


def _write(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_missing_directory_has_no_files(tmp_path: Path) -> None:
    """Test that an absent directory is treated as empty."""
    assert read_local_files(SYNC_TYPES["scriptforge"], tmp_path) == []


def test_read_local_files_filters_and_sorts(tmp_path: Path) -> None:
    """Test that only matching files are read, in name order."""
    _write(tmp_path / "src" / "b.js", "b")
    _write(tmp_path / "src" / "a.js", "a")
    _write(tmp_path / "src" / "notes.txt")
    (tmp_path / "src" / "nested.js").mkdir()

    files = read_local_files(SYNC_TYPES["scriptforge"], tmp_path)

    assert [f.filename for f in files] == ["a.js", "b.js"]
    assert [f.name for f in files] == ["a", "b"]
    assert files[0].content == "a"


def test_line_endings_round_trip(tmp_path: Path) -> None:
    """Test that CRLF content is neither normalized on read nor on write."""
    path = tmp_path / "file.sql"

    write_text(path, "select 1;\r\nselect 2;\r\n")

    assert path.read_bytes() == b"select 1;\r\nselect 2;\r\n"
    assert read_text(path) == "select 1;\r\nselect 2;\r\n"


def test_get_all_sync_files_and_grouping(tmp_path: Path) -> None:
    """Test listing across every registered directory."""
    _write(tmp_path / "src" / "main.js")
    _write(tmp_path / "query" / "report.sql")
    _write(tmp_path / "template" / "invoice.html")

    files = get_all_sync_files(tmp_path)
    grouped = group_by_kind(files)

    assert [f.display_path(tmp_path) for f in files] == [
        "src/main.js",
        "query/report.sql",
        "template/invoice.html",
    ]
    assert sorted(grouped) == ["query", "scriptforge", "template"]


def test_delete_isolates_failures(tmp_path: Path) -> None:
    """Test that one failed delete does not stop the others."""
    kept = _write(tmp_path / "src" / "a.js")
    gone = SyncFile(kind=SYNC_TYPES["scriptforge"], path=tmp_path / "src" / "missing.js")
    other = _write(tmp_path / "query" / "q.sql")

    result = delete_sync_files(
        [
            SyncFile(kind=SYNC_TYPES["scriptforge"], path=kept),
            gone,
            SyncFile(kind=SYNC_TYPES["query"], path=other),
        ]
    )

    assert result.deleted_count == 2
    assert [f.filename for f, _ in result.errors] == ["missing.js"]
    assert not kept.exists()
    assert not other.exists()
