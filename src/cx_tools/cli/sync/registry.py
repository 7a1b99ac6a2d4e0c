"""Declarative table of every resource kind the sync commands reconcile."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

ENV_FILE = "cx.env"
CONFIG_FILE = "cx.toml"


@dataclass(frozen=True)
class ResourceKind:
    """A remote collection mirrored as one file per record in a local directory."""

    key: str
    directory: str
    endpoint: str
    extension: str
    content_field: str
    display_name: str
    display_name_plural: str
    icon: str
    # The remote name may already carry the extension (``invoice.html``).
    filename_from_name: bool = False
    # Fixed fields merged into every create payload (e.g. a runtime tag).
    create_fields: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def dir_path(self, work_dir: Path) -> Path:
        return work_dir / self.directory

    def filename_for(self, name: str) -> str:
        """Local filename for a remote record name."""
        if self.filename_from_name and name.endswith(self.extension):
            return name
        return f"{name}{self.extension}"

    def name_for(self, filename: str) -> str:
        """Remote record name for a new local file; the extension is never sent."""
        return filename[: -len(self.extension)]

    def matches(self, filename: str) -> bool:
        return filename.endswith(self.extension) and len(filename) > len(self.extension)


@dataclass(frozen=True)
class EnvKind:
    """Key/value variables mirrored into a single dotenv-style file."""

    key: str
    endpoint: str
    filename: str
    display_name: str
    display_name_plural: str
    icon: str


@dataclass(frozen=True)
class ConfigSection:
    """A relational config section mirrored into one table array of ``cx.toml``."""

    key: str
    endpoint: str
    display_name: str
    display_name_plural: str
    icon: str
    to_toml: Callable[[Mapping[str, Any]], dict[str, Any]]
    from_toml: Callable[[Mapping[str, Any]], dict[str, Any]]
    get_id: Callable[[Mapping[str, Any]], str]
    fields: tuple[str, ...]

    def is_equal(self, local: Mapping[str, Any], remote: Mapping[str, Any]) -> bool:
        return all(local.get(name) == remote.get(name) for name in self.fields)


def _domain_record(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "domain": data.get("domain") or "",
        "framework_version": data.get("framework_version") or "latest",
    }


SYNC_TYPES: Mapping[str, ResourceKind] = MappingProxyType(
    {
        "scriptforge": ResourceKind(
            key="scriptforge",
            directory="src",
            endpoint="scriptforge",
            extension=".js",
            content_field="code",
            display_name="ScriptForge script",
            display_name_plural="ScriptForge scripts",
            icon="📜",
        ),
        "query": ResourceKind(
            key="query",
            directory="query",
            endpoint="setup/query",
            extension=".sql",
            content_field="query",
            display_name="SQL query",
            display_name_plural="SQL queries",
            icon="🗄️",
        ),
        "template": ResourceKind(
            key="template",
            directory="template",
            endpoint="setup/template",
            extension=".html",
            content_field="html",
            display_name="Template",
            display_name_plural="Templates",
            icon="📄",
            filename_from_name=True,
        ),
    }
)

ENV_VARS = EnvKind(
    key="env",
    endpoint="setup/var",
    filename=ENV_FILE,
    display_name="Environment variable",
    display_name_plural="Environment Variables",
    icon="🔐",
)

CONFIG_SECTIONS: Mapping[str, ConfigSection] = MappingProxyType(
    {
        "domain": ConfigSection(
            key="domain",
            endpoint="dev/domain",
            display_name="Domain",
            display_name_plural="Domains",
            icon="🌐",
            to_toml=_domain_record,
            from_toml=_domain_record,
            get_id=lambda data: str(data.get("domain") or ""),
            fields=("domain", "framework_version"),
        ),
    }
)


def get_sync_type(key: str) -> ResourceKind:
    """Look up a file resource kind.

    Raises:
        KeyError: If the kind is not registered.
    """
    try:
        return SYNC_TYPES[key]
    except KeyError:
        raise KeyError(f"Unknown sync type: {key}") from None


def get_config_section(key: str) -> ConfigSection:
    """Look up a config section.

    Raises:
        KeyError: If the section is not registered.
    """
    try:
        return CONFIG_SECTIONS[key]
    except KeyError:
        raise KeyError(f"Unknown config section: {key}") from None
