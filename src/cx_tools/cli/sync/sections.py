"""Config-section sync between remote settings endpoints and ``cx.toml``."""

from __future__ import annotations

import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import tomli_w

from cx_tools.cli.client import ApiClient
from cx_tools.cli.errors import ConfigError, HttpError, NetworkError
from cx_tools.cli.sync.engine import PushOutcome
from cx_tools.cli.sync.files import write_text
from cx_tools.cli.sync.registry import CONFIG_FILE, CONFIG_SECTIONS, ConfigSection

_RECOVERABLE = (ConfigError, HttpError, NetworkError)


@dataclass(frozen=True)
class ConfigDiff:
    type: Literal["add", "change", "remove"]
    id: str
    local: Mapping[str, Any] | None = None
    remote: Mapping[str, Any] | None = None


@dataclass
class SectionPullPreview:
    section: ConfigSection
    success: bool
    error: str | None = None
    remote_data: list[dict[str, Any]] = field(default_factory=list)
    local_data: list[dict[str, Any]] = field(default_factory=list)
    diffs: list[ConfigDiff] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.remote_data)

    @property
    def has_local_data(self) -> bool:
        return bool(self.local_data)


@dataclass(frozen=True)
class SectionChange:
    id: str
    local: Mapping[str, Any]
    payload: dict[str, Any]
    remote: Mapping[str, Any] | None = None


@dataclass
class SectionChangeSet:
    section: ConfigSection
    success: bool
    error: str | None = None
    to_create: list[SectionChange] = field(default_factory=list)
    to_update: list[SectionChange] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.to_create) + len(self.to_update)


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse ``cx.toml``; a missing file is an empty config.

    Raises:
        ConfigError: If the file is not valid TOML.
    """
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc


def write_config_file(path: Path, config: Mapping[str, Any]) -> None:
    write_text(path, tomli_w.dumps(dict(config)))


def read_section(path: Path, key: str) -> list[dict[str, Any]]:
    """Entries of one section, normalized to a list of tables."""
    value = read_config_file(path).get(key)
    if isinstance(value, list):
        return [dict(item) for item in value if isinstance(item, Mapping)]
    if isinstance(value, Mapping) and value:
        return [dict(value)]
    return []


def write_section(path: Path, key: str, data: Sequence[Mapping[str, Any]]) -> None:
    """Replace one section, preserving every other section of the file."""
    config = read_config_file(path)
    config[key] = [dict(item) for item in data]
    if not data:
        config.pop(key)
    write_config_file(path, config)


def calculate_config_diffs(
    local: Sequence[Mapping[str, Any]],
    remote: Sequence[Mapping[str, Any]],
    section: ConfigSection,
) -> list[ConfigDiff]:
    """Differences a pull would apply to the local section."""
    local_by_id = {section.get_id(item): item for item in local}
    diffs: list[ConfigDiff] = []

    for remote_item in remote:
        item_id = section.get_id(remote_item)
        local_item = local_by_id.pop(item_id, None)
        if local_item is None:
            diffs.append(ConfigDiff("add", item_id, remote=remote_item))
        elif not section.is_equal(local_item, remote_item):
            diffs.append(ConfigDiff("change", item_id, local=local_item, remote=remote_item))

    for item_id, local_item in local_by_id.items():
        diffs.append(ConfigDiff("remove", item_id, local=local_item))
    return diffs


def classify_section_push(
    local: Sequence[Mapping[str, Any]],
    remote: Sequence[Mapping[str, Any]],
    section: ConfigSection,
) -> tuple[list[SectionChange], list[SectionChange]]:
    """Split local entries into create/update. Remote-only entries are left alone."""
    remote_by_id = {section.get_id(item): item for item in remote}
    to_create: list[SectionChange] = []
    to_update: list[SectionChange] = []

    for local_item in local:
        item_id = section.get_id(local_item)
        remote_item = remote_by_id.get(item_id)
        payload = section.from_toml(local_item)
        if remote_item is None:
            to_create.append(SectionChange(item_id, local_item, payload))
        elif not section.is_equal(local_item, remote_item):
            to_update.append(SectionChange(item_id, local_item, payload, remote_item))
    return to_create, to_update


class SectionSync:
    """Pull/push for the registered config sections."""

    def __init__(
        self,
        api: ApiClient,
        sections: Mapping[str, ConfigSection] = CONFIG_SECTIONS,
    ) -> None:
        self._api = api
        self._config = api.config
        self.sections = sections

    @property
    def path(self) -> Path:
        return self._config.work_dir / CONFIG_FILE

    def _require_app_id(self) -> str:
        if not self._config.app_id:
            raise ConfigError('No APP_ID configured. Run "cx configure-app" first.')
        return self._config.app_id

    async def fetch_remote(self, section: ConfigSection) -> list[dict[str, Any]]:
        """Remote entries converted to their ``cx.toml`` shape."""
        app_id = self._require_app_id()
        data = (await self._api.get(f"{section.endpoint}?app_id={app_id}")).unwrap()
        records = data if isinstance(data, list) else [data]
        return [
            section.to_toml(record)
            for record in records
            if isinstance(record, Mapping) and record
        ]

    async def preview_pull(self, section: ConfigSection) -> SectionPullPreview:
        try:
            remote = await self.fetch_remote(section)
            local = read_section(self.path, section.key)
        except _RECOVERABLE as exc:
            return SectionPullPreview(section=section, success=False, error=str(exc))

        return SectionPullPreview(
            section=section,
            success=True,
            remote_data=remote,
            local_data=local,
            diffs=calculate_config_diffs(local, remote, section),
        )

    def apply_pull(self, preview: SectionPullPreview) -> None:
        write_section(self.path, preview.section.key, preview.remote_data)

    async def preview_push(self, section: ConfigSection) -> SectionChangeSet:
        try:
            local = read_section(self.path, section.key)
            if not local:
                return SectionChangeSet(section=section, success=True)
            remote = await self.fetch_remote(section)
        except _RECOVERABLE as exc:
            return SectionChangeSet(section=section, success=False, error=str(exc))

        to_create, to_update = classify_section_push(local, remote, section)
        return SectionChangeSet(
            section=section, success=True, to_create=to_create, to_update=to_update
        )

    async def apply_push(self, changes: SectionChangeSet) -> list[PushOutcome]:
        app_id = self._require_app_id()
        endpoint = changes.section.endpoint
        outcomes: list[PushOutcome] = []

        for change in changes.to_create:
            result = await self._api.post(endpoint, {**change.payload, "app_id": app_id})
            outcomes.append(PushOutcome.from_result("create", change.id, result))

        # The identifier lives in the payload, so updates go to the collection endpoint.
        for change in changes.to_update:
            result = await self._api.put(endpoint, {**change.payload, "app_id": app_id})
            outcomes.append(PushOutcome.from_result("update", change.id, result))

        return outcomes
