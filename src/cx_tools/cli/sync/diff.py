"""Diff rendering for pull/push confirmation.

Everything here only prints; classification happens in the sync modules.
"""

from __future__ import annotations

from collections.abc import Sequence
from difflib import unified_diff

from rich.console import Console
from rich.text import Text

from cx_tools.cli.sync.engine import PullCandidate, PushUpdate
from cx_tools.cli.sync.env import EnvChangeSet, EnvDiff
from cx_tools.cli.sync.registry import ENV_FILE, ConfigSection
from cx_tools.cli.sync.sections import ConfigDiff, SectionChangeSet

DIFF_WIDTH = 70


def render_unified_diff(
    filename: str,
    old_content: str,
    new_content: str,
    old_label: str = "Remote",
    new_label: str = "Local",
) -> list[str]:
    """Unified diff lines, file headers included."""
    return list(
        unified_diff(
            old_content.splitlines(),
            new_content.splitlines(),
            fromfile=f"{filename}\t{old_label}",
            tofile=f"{filename}\t{new_label}",
            lineterm="",
        )
    )


def diff_line_style(line: str) -> str | None:
    if line.startswith(("+++", "---")):
        return "bold"
    if line.startswith("+"):
        return "green"
    if line.startswith("-"):
        return "red"
    if line.startswith("@@"):
        return "cyan"
    return None


def colorize_diff_line(line: str) -> Text:
    style = diff_line_style(line)
    return Text(line, style=style) if style else Text(line)


def _header(console: Console, title: str) -> None:
    console.print()
    console.print("═" * DIFF_WIDTH)
    console.print(Text(f"📄 {title}"))
    console.print("─" * DIFF_WIDTH)


def _footer(console: Console) -> None:
    console.print("═" * DIFF_WIDTH)


def display_diff(
    console: Console,
    filename: str,
    old_content: str,
    new_content: str,
    old_label: str = "Remote",
    new_label: str = "Local",
) -> None:
    """Print one framed, colorized diff."""
    _header(console, filename)
    for line in render_unified_diff(filename, old_content, new_content, old_label, new_label):
        if line:
            console.print(colorize_diff_line(line))
    _footer(console)


def show_overwrite_summary(console: Console, candidates: Sequence[PullCandidate]) -> None:
    """Flat list of files a pull would overwrite, used when diffs are skipped."""
    if not candidates:
        return
    console.print(f"\n⚠️  {len(candidates)} file(s) will be overwritten:")
    for candidate in candidates:
        console.print(Text(f"    • {candidate.filename}"))


def show_pull_diffs(
    console: Console, candidates: Sequence[PullCandidate], show_diffs: bool = False
) -> None:
    if not candidates:
        return
    if not show_diffs:
        show_overwrite_summary(console, candidates)
        return

    console.print(f"\n📋 Showing diffs for {len(candidates)} file(s) that will be updated:")
    for candidate in candidates:
        display_diff(
            console,
            candidate.filename,
            candidate.local_content or "",
            candidate.remote_content,
            "Local (current)",
            "Remote (will download)",
        )


def show_push_diffs(console: Console, updates: Sequence[PushUpdate]) -> None:
    if not updates:
        return
    console.print(f"\n📋 Showing diffs for {len(updates)} file(s) that will be updated:")
    for update in updates:
        display_diff(
            console,
            update.filename,
            update.remote.content,
            update.local.content,
            "Remote (current)",
            "Local (will upload)",
        )


def _added(text: str) -> Text:
    return Text(f"+ {text}", style="green")


def _removed(text: str) -> Text:
    return Text(f"- {text}", style="red")


def display_env_diffs(console: Console, diffs: Sequence[EnvDiff]) -> None:
    if not diffs:
        console.print("  No differences found.")
        return

    _header(console, ENV_FILE)
    for diff in diffs:
        if diff.type in ("remove", "change"):
            console.print(_removed(f"{diff.key}={diff.local_value}"))
        if diff.type in ("add", "change"):
            console.print(_added(f"{diff.key}={diff.remote_value}"))
    _footer(console)


def display_env_push_diffs(console: Console, changes: EnvChangeSet) -> None:
    if not changes.total_changes:
        console.print("  No differences found.")
        return

    _header(console, f"{ENV_FILE} (Local → Remote)")
    for change in changes.to_create:
        console.print(_added(f"{change.key}={change.value}"))
    for change in changes.to_update:
        console.print(_removed(f"{change.key}={changes.remote.get(change.key, '')}"))
        console.print(_added(f"{change.key}={change.value}"))
    for change in changes.to_delete:
        console.print(_removed(f"{change.key}={changes.remote.get(change.key, change.value)}"))
    _footer(console)


def display_config_diffs(
    console: Console,
    diffs: Sequence[ConfigDiff],
    section: ConfigSection,
    operation: str = "pull",
) -> None:
    if not diffs:
        console.print(f"  No changes for {section.display_name_plural}")
        return

    pulling = operation == "pull"
    for diff in diffs:
        if diff.type == "add":
            console.print(Text(f"  ✨ {'New' if pulling else 'Create'}: {diff.id}"))
            for key, value in (diff.remote or {}).items():
                console.print(Text(f"     + {key}: {value}", style="green"))
        elif diff.type == "change":
            local = diff.local or {}
            console.print(Text(f"  📝 {'Changed' if pulling else 'Update'}: {diff.id}"))
            for key, value in (diff.remote or {}).items():
                if local.get(key) != value:
                    console.print(Text(f"     - {key}: {local.get(key)}", style="red"))
                    console.print(Text(f"     + {key}: {value}", style="green"))
        else:
            console.print(Text(f"  🗑️  {'Remove' if pulling else 'Delete'}: {diff.id}"))
            for key, value in (diff.local or {}).items():
                console.print(Text(f"     - {key}: {value}", style="red"))


def display_config_push_diffs(console: Console, changes: SectionChangeSet) -> None:
    for change in changes.to_update:
        remote = change.remote or {}
        console.print(Text(f"  📝 Update: {change.id}"))
        for key, value in change.local.items():
            if remote.get(key) != value:
                console.print(Text(f"     - {key}: {remote.get(key)}", style="red"))
                console.print(Text(f"     + {key}: {value}", style="green"))
    for change in changes.to_create:
        console.print(Text(f"  ✨ Create: {change.id}"))
        for key, value in change.local.items():
            console.print(Text(f"     + {key}: {value}", style="green"))
