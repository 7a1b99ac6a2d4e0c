"""CLI configuration stored in the working directory's ``.env`` file."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

DEFAULT_BASE_URL = "https://app.connexcs.com/api/cp/"
ENV_FILENAME = ".env"

REFRESH_TOKEN_KEY = "CX_REFRESH_TOKEN"
APP_ID_KEY = "APP_ID"
BASE_URL_KEY = "CX_BASE_URL"

_REFRESH_TOKEN_LINE = re.compile(rf'^{REFRESH_TOKEN_KEY}="[^"]*"$', re.MULTILINE)


@dataclass
class CliConfig:
    """Settings loaded once per invocation and passed to every component."""

    work_dir: Path
    refresh_token: str | None = None
    app_id: str | None = None
    base_url: str = DEFAULT_BASE_URL
    env_path: Path = field(init=False)

    def __post_init__(self) -> None:
        self.env_path = self.work_dir / ENV_FILENAME
        if not self.base_url.endswith("/"):
            self.base_url += "/"

    @property
    def has_app_scope(self) -> bool:
        return bool(self.app_id)


def get_env_file(work_dir: Path | None = None) -> Path:
    """Get path to the configuration file.

    Returns:
        Path to ``<work_dir>/.env``
    """
    return (work_dir or Path.cwd()) / ENV_FILENAME


def load_env_values(work_dir: Path | None = None) -> dict[str, str]:
    """Load raw key/value pairs from the configuration file.

    Returns:
        Dictionary of values, or empty dict if the file doesn't exist.
    """
    env_file = get_env_file(work_dir)
    if not env_file.exists():
        return {}
    values = dotenv_values(env_file, interpolate=False)
    return {key: value for key, value in values.items() if value is not None}


def load_config(work_dir: Path | None = None) -> CliConfig:
    """Build the configuration for this invocation.

    Process environment variables take precedence over the file so a token can be
    injected without writing it to disk.
    """
    work_dir = work_dir or Path.cwd()
    values = load_env_values(work_dir)

    def _lookup(key: str) -> str | None:
        value = os.environ.get(key) or values.get(key)
        return value.strip() if value else None

    return CliConfig(
        work_dir=work_dir,
        refresh_token=_lookup(REFRESH_TOKEN_KEY),
        app_id=_lookup(APP_ID_KEY),
        base_url=_lookup(BASE_URL_KEY) or DEFAULT_BASE_URL,
    )


def replace_refresh_token(env_path: Path, token: str) -> bool:
    """Swap the refresh token line in place, leaving every other line untouched.

    Args:
        env_path: Configuration file to rewrite.
        token: New refresh token.

    Returns:
        True if the file was written, False if it does not exist.
    """
    if not env_path.exists():
        return False

    content = env_path.read_text(encoding="utf-8")
    new_line = f'{REFRESH_TOKEN_KEY}="{token}"'
    if _REFRESH_TOKEN_LINE.search(content):
        content = _REFRESH_TOKEN_LINE.sub(lambda _: new_line, content, count=1)
    else:
        content = _append_line(content, new_line)
    env_path.write_text(content, encoding="utf-8")
    return True


def set_env_value(env_path: Path, key: str, value: str, quote: bool = False) -> None:
    """Set a single key, replacing an existing assignment or appending a new one.

    Args:
        env_path: Configuration file, created if missing.
        key: Variable name.
        value: Value to store.
        quote: Wrap the value in double quotes.
    """
    content = env_path.read_text(encoding="utf-8") if env_path.exists() else ""
    new_line = f'{key}="{value}"' if quote else f"{key}={value}"
    pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
    if pattern.search(content):
        content = pattern.sub(lambda _: new_line, content, count=1)
    else:
        content = _append_line(content, new_line)
    env_path.write_text(content, encoding="utf-8")


def write_refresh_token(env_path: Path, token: str) -> None:
    set_env_value(env_path, REFRESH_TOKEN_KEY, token, quote=True)


def set_app_id(env_path: Path, app_id: str) -> None:
    set_env_value(env_path, APP_ID_KEY, app_id)


def _append_line(content: str, line: str) -> str:
    if content and not content.endswith("\n"):
        content += "\n"
    return f"{content}{line}\n"
