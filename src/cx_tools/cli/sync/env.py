"""Environment variable sync between the remote app and ``cx.env``."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from dotenv import dotenv_values

from cx_tools.cli.client import ApiClient
from cx_tools.cli.errors import ConfigError, HttpError, NetworkError
from cx_tools.cli.sync.engine import PushOutcome
from cx_tools.cli.sync.files import write_text
from cx_tools.cli.sync.registry import ENV_VARS, EnvKind

_PLAIN_VALUE = re.compile(r"^[A-Za-z0-9_./:@+,-]*$")

DiffType = Literal["add", "remove", "change"]

# Failures reported per section; auth failures still abort the command.
_RECOVERABLE = (ConfigError, HttpError, NetworkError)


@dataclass(frozen=True)
class EnvVar:
    """A remote variable record."""

    id: Any
    key: str
    value: str
    app_id: Any = None


@dataclass(frozen=True)
class EnvDiff:
    type: DiffType
    key: str
    local_value: str | None = None
    remote_value: str | None = None


@dataclass(frozen=True)
class EnvChange:
    key: str
    value: str
    id: Any = None


@dataclass
class EnvPullPreview:
    success: bool
    error: str | None = None
    remote: dict[str, str] = field(default_factory=dict)
    local: dict[str, str] = field(default_factory=dict)
    diffs: list[EnvDiff] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.remote)


@dataclass
class EnvChangeSet:
    success: bool
    error: str | None = None
    to_create: list[EnvChange] = field(default_factory=list)
    to_update: list[EnvChange] = field(default_factory=list)
    to_delete: list[EnvChange] = field(default_factory=list)
    remote: dict[str, str] = field(default_factory=dict)

    @property
    def total_changes(self) -> int:
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)


def parse_env_file(path: Path) -> dict[str, str]:
    """Read ``KEY=value`` lines; a missing file has no variables."""
    if not path.exists():
        return {}
    return {key: value or "" for key, value in dotenv_values(path, interpolate=False).items()}


def _quote(value: str) -> str:
    if _PLAIN_VALUE.match(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def render_env_file(values: Mapping[str, str]) -> str:
    return "".join(f"{key}={_quote(value)}\n" for key, value in values.items())


def compute_env_diffs(local: Mapping[str, str], remote: Mapping[str, str]) -> list[EnvDiff]:
    """Differences a pull would apply to the local file."""
    diffs: list[EnvDiff] = []
    for key, remote_value in remote.items():
        if key not in local:
            diffs.append(EnvDiff("add", key, remote_value=remote_value))
        elif local[key] != remote_value:
            diffs.append(EnvDiff("change", key, local_value=local[key], remote_value=remote_value))
    for key, local_value in local.items():
        if key not in remote:
            diffs.append(EnvDiff("remove", key, local_value=local_value))
    return diffs


def classify_env_push(
    local: Mapping[str, str], remote: Mapping[str, EnvVar]
) -> tuple[list[EnvChange], list[EnvChange], list[EnvChange]]:
    """Split local variables into create/update and remote-only into delete."""
    to_create: list[EnvChange] = []
    to_update: list[EnvChange] = []
    for key, value in local.items():
        existing = remote.get(key)
        if existing is None:
            to_create.append(EnvChange(key, value))
        elif existing.value != value:
            to_update.append(EnvChange(key, value, existing.id))
    to_delete = [
        EnvChange(key, var.value, var.id) for key, var in remote.items() if key not in local
    ]
    return to_create, to_update, to_delete


class EnvSync:
    """Pull/push of the env-var resource kind."""

    def __init__(self, api: ApiClient, kind: EnvKind = ENV_VARS) -> None:
        self._api = api
        self._config = api.config
        self.kind = kind

    @property
    def path(self) -> Path:
        return self._config.work_dir / self.kind.filename

    def _require_app_id(self) -> str:
        if not self._config.app_id:
            raise ConfigError('No APP_ID configured. Run "cx configure-app" first.')
        return self._config.app_id

    async def fetch_remote(self) -> dict[str, EnvVar]:
        app_id = self._require_app_id()
        data = (await self._api.get(f"{self.kind.endpoint}?app_id={app_id}")).unwrap()
        records = data if isinstance(data, list) else []
        return {
            str(record["key"]): EnvVar(
                id=record.get("id"),
                key=str(record["key"]),
                value="" if record.get("value") is None else str(record.get("value")),
                app_id=record.get("app_id"),
            )
            for record in records
            if isinstance(record, Mapping) and record.get("key")
        }

    async def preview_pull(self) -> EnvPullPreview:
        try:
            remote_vars = await self.fetch_remote()
        except _RECOVERABLE as exc:
            return EnvPullPreview(success=False, error=str(exc))

        remote = {key: var.value for key, var in remote_vars.items()}
        local = parse_env_file(self.path)
        return EnvPullPreview(
            success=True,
            remote=remote,
            local=local,
            diffs=compute_env_diffs(local, remote),
        )

    def apply_pull(self, preview: EnvPullPreview) -> None:
        """Replace ``cx.env`` with the remote variables."""
        write_text(self.path, render_env_file(preview.remote))

    async def preview_push(self) -> EnvChangeSet:
        if not self.path.exists():
            return EnvChangeSet(success=True)
        try:
            remote_vars = await self.fetch_remote()
        except _RECOVERABLE as exc:
            return EnvChangeSet(success=False, error=str(exc))

        to_create, to_update, to_delete = classify_env_push(parse_env_file(self.path), remote_vars)
        return EnvChangeSet(
            success=True,
            to_create=to_create,
            to_update=to_update,
            to_delete=to_delete,
            remote={key: var.value for key, var in remote_vars.items()},
        )

    async def apply_push(self, changes: EnvChangeSet) -> list[PushOutcome]:
        app_id = self._require_app_id()
        endpoint = self.kind.endpoint
        outcomes: list[PushOutcome] = []

        for change in changes.to_create:
            body = {"key": change.key, "value": change.value, "app_id": app_id}
            result = await self._api.post(endpoint, body)
            outcomes.append(PushOutcome.from_result("create", change.key, result))

        for change in changes.to_update:
            body = {"key": change.key, "value": change.value, "app_id": app_id}
            result = await self._api.put(f"{endpoint}/{change.id}", body)
            outcomes.append(PushOutcome.from_result("update", change.key, result))

        for change in changes.to_delete:
            result = await self._api.delete(f"{endpoint}/{change.id}")
            outcomes.append(PushOutcome.from_result("delete", change.key, result))

        return outcomes
