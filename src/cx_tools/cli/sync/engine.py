"""Sync engine for file-backed resource kinds.

Classification is kept separate from presentation: every operation returns plain
dataclasses that the commands render. Detail fetches for a collection are issued
concurrently in one task group and awaited together; each failure is recorded
against its item without cancelling the others.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio

from cx_tools.cli.client import ApiClient, ApiResult
from cx_tools.cli.errors import AuthError, ConfigError, CxError, HttpError
from cx_tools.cli.sync.files import (
    DeleteResult,
    LocalFile,
    SyncFile,
    delete_sync_files,
    get_all_sync_files,
    read_local_files,
    read_text,
    write_text,
)
from cx_tools.cli.sync.registry import SYNC_TYPES, ResourceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchFailure:
    """A detail fetch that failed; the rest of the batch is unaffected."""

    item: Mapping[str, Any]
    error: str
    exception: CxError | None = None

    @property
    def name(self) -> str:
        return str(self.item.get("name", self.item.get("id", "?")))


@dataclass
class DetailBatch:
    """Full records fetched for a list of summaries, in request order."""

    records: list[tuple[Mapping[str, Any], dict[str, Any]]] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteRecord:
    """Remote state of one resource, as needed for comparison and update."""

    id: Any
    name: str
    content: str
    app_id: Any = None


@dataclass(frozen=True)
class PullCandidate:
    """A remote resource that pull would write locally."""

    kind: ResourceKind
    name: str
    filename: str
    path: Path
    remote_content: str
    local_content: str | None
    record: Mapping[str, Any]

    @property
    def is_new(self) -> bool:
        return self.local_content is None

    @property
    def has_local_changes(self) -> bool:
        return self.local_content is not None and self.local_content != self.remote_content

    @property
    def is_unchanged(self) -> bool:
        return self.local_content == self.remote_content


@dataclass
class PullPreview:
    """Classification of a pull for one resource kind."""

    kind: ResourceKind
    candidates: list[PullCandidate] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)
    app_scoped: bool = False
    total: int = 0

    @property
    def with_diffs(self) -> list[PullCandidate]:
        return [candidate for candidate in self.candidates if candidate.has_local_changes]

    @property
    def to_write(self) -> list[PullCandidate]:
        return [candidate for candidate in self.candidates if not candidate.is_unchanged]

    @property
    def unchanged(self) -> list[PullCandidate]:
        return [candidate for candidate in self.candidates if candidate.is_unchanged]


@dataclass(frozen=True)
class WriteOutcome:
    candidate: PullCandidate
    success: bool
    error: str | None = None


@dataclass
class PullResult:
    """Outcome of a pull; ``outcomes`` is empty in preview mode."""

    preview: PullPreview
    outcomes: list[WriteOutcome] = field(default_factory=list)
    created_dir: bool = False

    @property
    def written(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def pulled(self) -> int:
        """Files now matching the remote: written plus already up to date."""
        return self.written + len(self.preview.unchanged)

    @property
    def total(self) -> int:
        return self.preview.total


@dataclass(frozen=True)
class PushUpdate:
    """A local file whose content differs from its remote counterpart."""

    local: LocalFile
    remote: RemoteRecord

    @property
    def filename(self) -> str:
        return self.local.filename


@dataclass
class ChangeSet:
    """Push classification for one resource kind."""

    kind: ResourceKind
    to_create: list[LocalFile] = field(default_factory=list)
    to_update: list[PushUpdate] = field(default_factory=list)
    unchanged: list[LocalFile] = field(default_factory=list)
    # Local files whose remote counterpart could not be fetched.
    skipped: list[LocalFile] = field(default_factory=list)
    remote_map: dict[str, RemoteRecord] = field(default_factory=dict)
    failures: list[FetchFailure] = field(default_factory=list)
    app_scoped: bool = False

    @property
    def total_changes(self) -> int:
        return len(self.to_create) + len(self.to_update)


@dataclass(frozen=True)
class PushOutcome:
    action: str
    filename: str
    success: bool
    error: str | None = None
    exception: CxError | None = None

    @classmethod
    def from_result(cls, action: str, filename: str, result: ApiResult) -> PushOutcome:
        return cls(action, filename, result.success, result.error, result.exception)


def classify_push(
    local_files: Iterable[LocalFile],
    remote_map: Mapping[str, RemoteRecord],
    unavailable: Iterable[str] = (),
) -> tuple[list[LocalFile], list[PushUpdate], list[LocalFile], list[LocalFile]]:
    """Split local files into create/update/unchanged/skipped.

    Content equality is exact string equality; nothing is normalized.

    Args:
        local_files: Files read from the kind's directory
        remote_map: Remote records keyed by local filename
        unavailable: Filenames listed remotely whose details could not be fetched

    Returns:
        Tuple of (to_create, to_update, unchanged, skipped)
    """
    unavailable = set(unavailable)
    to_create: list[LocalFile] = []
    to_update: list[PushUpdate] = []
    unchanged: list[LocalFile] = []
    skipped: list[LocalFile] = []

    for local in local_files:
        remote = remote_map.get(local.filename)
        if remote is None:
            if local.filename in unavailable:
                skipped.append(local)
            else:
                to_create.append(local)
        elif remote.content != local.content:
            to_update.append(PushUpdate(local=local, remote=remote))
        else:
            unchanged.append(local)

    return to_create, to_update, unchanged, skipped


def filter_by_app(
    items: Sequence[Mapping[str, Any]], app_id: str | None
) -> tuple[list[Mapping[str, Any]], bool]:
    """Keep items owned by the AppScope; without one, keep everything.

    Returns:
        Tuple of (items, whether a filter was applied)
    """
    if not app_id:
        return list(items), False
    return [item for item in items if str(item.get("app_id")) == str(app_id)], True


class SyncEngine:
    """Pull/push/clear for the registered file resource kinds."""

    def __init__(
        self,
        api: ApiClient,
        kinds: Mapping[str, ResourceKind] = SYNC_TYPES,
    ) -> None:
        self._api = api
        self._config = api.config
        self.kinds = kinds

    @property
    def work_dir(self) -> Path:
        return self._config.work_dir

    async def fetch_all_items(self, kind: ResourceKind) -> list[Mapping[str, Any]]:
        """Fetch the collection summaries (no content).

        Raises:
            CxError: If the listing fails.
        """
        data = (await self._api.get(kind.endpoint)).unwrap()
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, Mapping)]

    async def fetch_item(self, kind: ResourceKind, item_id: Any) -> dict[str, Any]:
        """Fetch one full record including its content field."""
        data = (await self._api.get(f"{kind.endpoint}/{item_id}")).unwrap()
        if not isinstance(data, dict):
            raise HttpError(f"Unexpected response for {kind.display_name} {item_id}")
        return data

    async def fetch_details(
        self, kind: ResourceKind, items: Sequence[Mapping[str, Any]]
    ) -> DetailBatch:
        """Fetch every record concurrently and collect results in request order.

        Raises:
            AuthError: If credentials failed, since no other fetch can succeed either.
        """
        records: list[dict[str, Any] | None] = [None] * len(items)
        errors: list[CxError | None] = [None] * len(items)

        async def _fetch(index: int, item: Mapping[str, Any]) -> None:
            try:
                records[index] = await self.fetch_item(kind, item.get("id"))
            except CxError as exc:
                errors[index] = exc

        async with anyio.create_task_group() as tg:
            for index, item in enumerate(items):
                tg.start_soon(_fetch, index, item)

        batch = DetailBatch()
        for item, record, error in zip(items, records, errors):
            if error is not None:
                if isinstance(error, AuthError):
                    raise error
                logger.warning("Failed to fetch %s: %s", item.get("name"), error)
                batch.failures.append(FetchFailure(item=item, error=str(error), exception=error))
            elif record is not None:
                batch.records.append((item, record))
        return batch

    async def preview_pull(self, kind: ResourceKind) -> PullPreview:
        """Classify what a pull would write without touching the filesystem."""
        items, scoped = filter_by_app(await self.fetch_all_items(kind), self._config.app_id)
        preview = PullPreview(kind=kind, app_scoped=scoped, total=len(items))
        if not items:
            return preview

        batch = await self.fetch_details(kind, items)
        preview.failures = batch.failures
        directory = kind.dir_path(self.work_dir)

        for item, record in batch.records:
            name = str(item.get("name") or record.get("name") or "")
            filename = kind.filename_for(name)
            path = directory / filename
            local_content = read_text(path) if path.is_file() else None
            preview.candidates.append(
                PullCandidate(
                    kind=kind,
                    name=name,
                    filename=filename,
                    path=path,
                    remote_content=str(record.get(kind.content_field) or ""),
                    local_content=local_content,
                    record=record,
                )
            )
        return preview

    def apply_pull(self, preview: PullPreview) -> PullResult:
        """Write new and changed files; identical files are left alone."""
        result = PullResult(preview=preview)
        pending = preview.to_write
        if not pending:
            return result

        directory = preview.kind.dir_path(self.work_dir)
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            result.created_dir = True

        for candidate in pending:
            try:
                write_text(candidate.path, candidate.remote_content)
            except OSError as exc:
                result.outcomes.append(WriteOutcome(candidate, success=False, error=str(exc)))
            else:
                result.outcomes.append(WriteOutcome(candidate, success=True))
        return result

    async def pull_items(self, kind: ResourceKind, preview: bool = False) -> PullResult:
        """Pull one kind; in preview mode only the classification is returned."""
        analysis = await self.preview_pull(kind)
        if preview:
            return PullResult(preview=analysis)
        return self.apply_pull(analysis)

    async def push_items(self, kind: ResourceKind) -> ChangeSet:
        """Compare local files with their remote counterparts."""
        local_files = read_local_files(kind, self.work_dir)
        changes = ChangeSet(kind=kind)
        if not local_files:
            return changes

        items, changes.app_scoped = filter_by_app(
            await self.fetch_all_items(kind), self._config.app_id
        )
        batch = await self.fetch_details(kind, items)
        changes.failures = batch.failures

        for item, record in batch.records:
            name = str(record.get("name") or item.get("name") or "")
            changes.remote_map[kind.filename_for(name)] = RemoteRecord(
                id=record.get("id", item.get("id")),
                name=name,
                content=str(record.get(kind.content_field) or ""),
                app_id=record.get("app_id", item.get("app_id")),
            )

        unavailable = [kind.filename_for(str(f.item.get("name") or "")) for f in batch.failures]
        (
            changes.to_create,
            changes.to_update,
            changes.unchanged,
            changes.skipped,
        ) = classify_push(local_files, changes.remote_map, unavailable)
        return changes

    async def apply_push(self, changes: ChangeSet) -> list[PushOutcome]:
        """Send updates then creates, one at a time, each isolated from the others."""
        kind = changes.kind
        outcomes: list[PushOutcome] = []

        for update in changes.to_update:
            body = {
                "name": update.remote.name,
                kind.content_field: update.local.content,
                "app_id": update.remote.app_id,
            }
            result = await self._api.put(f"{kind.endpoint}/{update.remote.id}", body)
            outcomes.append(PushOutcome.from_result("update", update.filename, result))

        for local in changes.to_create:
            app_id = self._config.app_id
            if not app_id:
                error = ConfigError(f"Cannot create {local.filename}: No APP_ID configured")
                outcomes.append(PushOutcome("create", local.filename, False, str(error), error))
                continue

            body = {
                **kind.create_fields,
                "name": local.name,
                kind.content_field: local.content,
                "app_id": app_id,
            }
            result = await self._api.post(kind.endpoint, body)
            outcomes.append(PushOutcome.from_result("create", local.filename, result))

        return outcomes

    def list_sync_files(self) -> list[SyncFile]:
        """Every file across the registered sync directories."""
        return get_all_sync_files(self.work_dir, self.kinds)

    def delete_files(self, files: Iterable[SyncFile]) -> DeleteResult:
        return delete_sync_files(files)
