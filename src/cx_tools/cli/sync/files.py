"""Local working-tree conventions for file-backed resource kinds."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cx_tools.cli.sync.registry import SYNC_TYPES, ResourceKind


@dataclass(frozen=True)
class LocalFile:
    """A file in a sync directory, read into memory."""

    kind: ResourceKind
    filename: str
    path: Path
    content: str

    @property
    def name(self) -> str:
        return self.kind.name_for(self.filename)


@dataclass(frozen=True)
class SyncFile:
    """A sync file reference without its content (listing/clearing)."""

    kind: ResourceKind
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name

    def display_path(self, work_dir: Path) -> str:
        try:
            return str(self.path.relative_to(work_dir))
        except ValueError:
            return str(self.path)


@dataclass
class DeleteResult:
    """Outcome of deleting a batch of sync files."""

    deleted: list[SyncFile] = field(default_factory=list)
    errors: list[tuple[SyncFile, str]] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def _matching_paths(kind: ResourceKind, work_dir: Path) -> list[Path]:
    directory = kind.dir_path(work_dir)
    if not directory.is_dir():
        return []
    return sorted(
        path for path in directory.iterdir() if path.is_file() and kind.matches(path.name)
    )


def read_local_files(kind: ResourceKind, work_dir: Path) -> list[LocalFile]:
    """Read every file of a kind. A missing directory means no files."""
    return [
        LocalFile(
            kind=kind,
            filename=path.name,
            path=path,
            content=read_text(path),
        )
        for path in _matching_paths(kind, work_dir)
    ]


def read_text(path: Path) -> str:
    # newline="" keeps line endings byte-for-byte; equality checks are exact.
    with path.open("r", encoding="utf-8", newline="") as handle:
        return handle.read()


def write_text(path: Path, content: str) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)


def get_all_sync_files(
    work_dir: Path,
    kinds: Mapping[str, ResourceKind] = SYNC_TYPES,
) -> list[SyncFile]:
    """List every file across all registered sync directories."""
    return [
        SyncFile(kind=kind, path=path)
        for kind in kinds.values()
        for path in _matching_paths(kind, work_dir)
    ]


def group_by_kind(files: Iterable[SyncFile]) -> dict[str, list[SyncFile]]:
    grouped: dict[str, list[SyncFile]] = {}
    for sync_file in files:
        grouped.setdefault(sync_file.kind.key, []).append(sync_file)
    return grouped


def delete_sync_files(files: Iterable[SyncFile]) -> DeleteResult:
    """Delete each file independently; one failure does not stop the rest."""
    result = DeleteResult()
    for sync_file in files:
        try:
            sync_file.path.unlink()
        except OSError as exc:
            result.errors.append((sync_file, str(exc)))
        else:
            result.deleted.append(sync_file)
    return result
