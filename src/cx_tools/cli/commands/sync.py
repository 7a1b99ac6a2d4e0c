"""Pull, push and clear commands for the working tree."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated

import anyio
import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from cx_tools.cli.client import ApiClient, create_client
from cx_tools.cli.config import CliConfig, load_config
from cx_tools.cli.errors import CxError
from cx_tools.cli.sync.diff import (
    display_config_diffs,
    display_config_push_diffs,
    display_env_diffs,
    display_env_push_diffs,
    show_pull_diffs,
    show_push_diffs,
)
from cx_tools.cli.sync.engine import ChangeSet, FetchFailure, PullPreview, PushOutcome, SyncEngine
from cx_tools.cli.sync.env import EnvChangeSet, EnvPullPreview, EnvSync
from cx_tools.cli.sync.files import SyncFile, delete_sync_files, get_all_sync_files, group_by_kind
from cx_tools.cli.sync.registry import CONFIG_FILE, ENV_FILE, SYNC_TYPES
from cx_tools.cli.sync.sections import SectionChangeSet, SectionPullPreview, SectionSync

console = Console()
err_console = Console(stderr=True)

RULE = "═" * 50
EXISTING_PREVIEW_LIMIT = 5
OVERWRITE_MARKER = " ⚠️  (will overwrite local changes)"

SilentOption = Annotated[
    bool, typer.Option("--silent", "-s", help="Suppress decorative output and prompts")
]
RawOption = Annotated[bool, typer.Option("--raw", "-r", help="Alias for --silent")]
YesOption = Annotated[bool, typer.Option("--yes", "-y", help="Accept every confirmation")]


def _output(silent: bool) -> Console:
    """Console for progress output; silent mode swallows it."""
    return Console(quiet=True) if silent else console


def _report_error(message: str, silent: bool) -> None:
    if silent:
        err_console.print(message, markup=False, highlight=False)
    else:
        console.print(f"[red]❌ {escape(message)}[/red]")


def _fail(exc: CxError, silent: bool) -> None:
    """Render a fatal error and exit non-zero."""
    if silent:
        err_console.print(str(exc), markup=False, highlight=False)
    else:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
    raise typer.Exit(code=1)


def _choose(message: str, choices: dict[str, str], default: str) -> str:
    """Ask the operator to pick one of several actions."""
    for value, label in choices.items():
        console.print(f"  [cyan]{value}[/cyan]  {label}")
    return Prompt.ask(message, choices=list(choices), default=default, console=console)


def _confirm(message: str, default: bool, silent: bool, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    if silent:
        return default
    return typer.confirm(message, default=default)


def _report_fetch_failures(failures: Sequence[FetchFailure], silent: bool) -> None:
    for failure in failures:
        _report_error(f"Failed to fetch {failure.name}: {failure.error}", silent)


def _warn_skipped(out: Console, what: str, reason: str | None) -> None:
    out.print(f"[yellow]⚠️  Skipping {what}: {escape(reason or 'unavailable')}[/yellow]")


def _warn_unscoped(out: Console, config: CliConfig) -> None:
    if not config.has_app_scope:
        out.print(
            "[yellow]⚠️  No APP_ID configured. Showing resources from every app; "
            'run "cx configure-app" to scope sync.[/yellow]'
        )


def _show_existing_files(out: Console, files: Sequence[SyncFile]) -> None:
    out.print("📁 Existing files detected in sync directories:")
    out.print(RULE)
    for key, kind_files in group_by_kind(files).items():
        kind = SYNC_TYPES[key]
        out.print(
            f"\n{kind.icon} {kind.display_name_plural} ({kind.directory}): "
            f"{len(kind_files)} file(s)"
        )
        for sync_file in kind_files[:EXISTING_PREVIEW_LIMIT]:
            out.print(f"  • {escape(sync_file.filename)}")
        if len(kind_files) > EXISTING_PREVIEW_LIMIT:
            out.print(f"  ... and {len(kind_files) - EXISTING_PREVIEW_LIMIT} more")
    out.print(f"\n{RULE}")


def _clean_before_pull(out: Console, engine: SyncEngine, silent: bool) -> bool:
    """Offer to delete existing sync files. Returns False if the operator cancelled."""
    existing = engine.list_sync_files()
    if not existing:
        return True

    _show_existing_files(out, existing)
    choice = _choose(
        f"Found {len(existing)} existing file(s). Clean the working directory first?",
        {
            "keep": "Keep existing files (pull will overwrite matching files)",
            "clean": "Delete all sync files before pulling",
            "cancel": "Cancel pull operation",
        },
        default="keep",
    )
    if choice == "cancel":
        out.print("❌ Pull cancelled.")
        return False

    if choice == "clean":
        out.print("\n🧹 Cleaning sync directories...")
        result = engine.delete_files(existing)
        if result.errors:
            out.print(
                f"⚠️  Deleted {result.deleted_count} file(s), {len(result.errors)} error(s)"
            )
            for sync_file, error in result.errors:
                _report_error(f"{sync_file.filename}: {error}", silent)
        else:
            out.print(f"✅ Deleted {result.deleted_count} file(s)")
        out.print()
    return True


def _show_pull_summary(
    out: Console,
    previews: Sequence[PullPreview],
    env_preview: EnvPullPreview,
    section_previews: Sequence[SectionPullPreview],
) -> None:
    out.print("\n📥 Files to be pulled:")
    out.print(RULE)

    for preview in previews:
        if not preview.total:
            continue
        kind = preview.kind
        out.print(f"\n{kind.icon} {kind.display_name_plural}: {preview.total} file(s)")
        for candidate in preview.candidates:
            marker = OVERWRITE_MARKER if candidate.has_local_changes else ""
            out.print(f"  • {escape(candidate.filename)}{marker}")
        for failure in preview.failures:
            out.print(f"  • {escape(failure.name)} [red](fetch failed)[/red]")

    if env_preview.success and env_preview.total:
        out.print(f"\n🔐 Environment Variables: {env_preview.total} variable(s)")
        if env_preview.diffs:
            out.print(f"   ⚠️  {len(env_preview.diffs)} difference(s) from local")

    for preview in section_previews:
        if not preview.success or not (preview.total or preview.has_local_data):
            continue
        section = preview.section
        if preview.total:
            out.print(
                f"\n{section.icon} {section.display_name_plural}: "
                f"{preview.total} item(s) → {CONFIG_FILE}"
            )
        else:
            out.print(f"\n{section.icon} {section.display_name_plural}: 0 items (will clear local)")
        if preview.diffs:
            out.print(f"   ⚠️  {len(preview.diffs)} difference(s) from local")

    total = sum(preview.total for preview in previews)
    breakdown = ", ".join(
        f"{preview.total} {preview.kind.display_name_plural}"
        for preview in previews
        if preview.total
    )
    overwritten = sum(len(preview.with_diffs) for preview in previews)
    out.print(f"\n{RULE}")
    out.print(f"📊 Total: {total} file(s)" + (f" ({breakdown})" if breakdown else ""))
    if overwritten:
        out.print(
            f"[yellow]⚠️  Warning: {overwritten} file(s) have local changes "
            "that will be overwritten[/yellow]"
        )


def _show_all_pull_diffs(
    out: Console,
    previews: Sequence[PullPreview],
    env_preview: EnvPullPreview,
    section_previews: Sequence[SectionPullPreview],
) -> None:
    candidates = [candidate for preview in previews for candidate in preview.with_diffs]
    show_pull_diffs(out, candidates, show_diffs=True)
    if env_preview.diffs:
        out.print("\n🔐 Environment Variable Changes:")
        display_env_diffs(out, env_preview.diffs)
    for preview in section_previews:
        if preview.success and preview.diffs:
            out.print(f"\n{preview.section.icon} {preview.section.display_name} Changes:")
            display_config_diffs(out, preview.diffs, preview.section, "pull")


async def _pull_async(silent: bool, assume_yes: bool) -> None:
    out = _output(silent)
    config = load_config()
    out.print("🔄 Starting pull operation...\n")
    _warn_unscoped(out, config)

    async with ApiClient(config, create_client(config)) as api:
        engine = SyncEngine(api)
        env_sync = EnvSync(api)
        section_sync = SectionSync(api)

        if not silent and not assume_yes and not _clean_before_pull(out, engine, silent):
            return

        previews = [await engine.preview_pull(kind) for kind in engine.kinds.values()]
        env_preview = await env_sync.preview_pull()
        section_previews = [
            await section_sync.preview_pull(section) for section in section_sync.sections.values()
        ]

        if not env_preview.success:
            _warn_skipped(out, "environment variables", env_preview.error)
        for preview in section_previews:
            if not preview.success:
                _warn_skipped(out, preview.section.display_name_plural.lower(), preview.error)

        total_files = sum(preview.total for preview in previews)
        env_total = env_preview.total if env_preview.success else 0
        config_total = sum(preview.total for preview in section_previews if preview.success)
        has_local_config = any(
            preview.success and preview.has_local_data for preview in section_previews
        )

        if not (total_files or env_total or config_total or has_local_config):
            out.print("\n📭 No items found to pull.")
            return

        _show_pull_summary(out, previews, env_preview, section_previews)
        failures = [failure for preview in previews for failure in preview.failures]
        _report_fetch_failures(failures, silent)

        has_diffs = (
            any(preview.with_diffs for preview in previews)
            or bool(env_preview.diffs)
            or any(preview.diffs for preview in section_previews)
        )
        if has_diffs and not silent and not assume_yes:
            choice = _choose(
                "Files with local changes detected. What would you like to do?",
                {
                    "view": "View diffs before proceeding",
                    "skip": "Continue without viewing diffs",
                    "cancel": "Cancel pull operation",
                },
                default="view",
            )
            if choice == "cancel":
                out.print("❌ Pull cancelled.")
                return
            if choice == "view":
                _show_all_pull_diffs(out, previews, env_preview, section_previews)
            else:
                show_pull_diffs(out, [c for preview in previews for c in preview.with_diffs])

        message = f"Pull {total_files} file(s)"
        if env_total:
            message += f" and {env_total} env var(s)"
        if config_total:
            message += f" and {config_total} config item(s)"
        if not _confirm(f"{message}?", default=True, silent=silent, assume_yes=assume_yes):
            out.print("❌ Pull cancelled.")
            return

        out.print("\n📥 Pulling files...\n")
        results = [engine.apply_pull(preview) for preview in previews]
        write_failures = 0
        for result in results:
            for outcome in result.outcomes:
                if not outcome.success:
                    write_failures += 1
                    _report_error(
                        f"Failed to write {outcome.candidate.filename}: {outcome.error}", silent
                    )

        if env_preview.success and env_preview.total:
            env_sync.apply_pull(env_preview)
            out.print(f"✅ {ENV_FILE} ({env_preview.total} variables)")

        for preview in section_previews:
            if not preview.success or not (preview.total or preview.has_local_data):
                continue
            section_sync.apply_pull(preview)
            section = preview.section
            if preview.total:
                out.print(
                    f"✅ {CONFIG_FILE} \\[{section.key}] "
                    f"({preview.total} {section.display_name_plural.lower()})"
                )
            else:
                out.print(f"✅ {CONFIG_FILE} \\[{section.key}] (cleared)")

        pulled = sum(result.pulled for result in results)
        out.print(f"\n🎉 Successfully pulled {pulled}/{total_files} file(s)")
        for result in results:
            if result.total:
                kind = result.preview.kind
                out.print(
                    f"   └─ {result.pulled}/{result.total} {kind.display_name_plural} "
                    f"→ {kind.directory}"
                )

    if failures or write_failures:
        raise typer.Exit(code=1)


def pull(silent: SilentOption = False, raw: RawOption = False, yes: YesOption = False) -> None:
    """Pull remote scripts, queries, templates, env vars and config into the working tree."""
    silent = silent or raw
    try:
        anyio.run(_pull_async, silent, yes)
    except CxError as exc:
        _fail(exc, silent)


def _show_push_summary(
    out: Console,
    changesets: Sequence[ChangeSet],
    env_changes: EnvChangeSet,
    section_changes: Sequence[SectionChangeSet],
) -> None:
    out.print("\n📤 Changes to be pushed:")
    out.print(RULE)

    for changes in changesets:
        if not changes.total_changes:
            continue
        out.print(f"\n{changes.kind.icon} {changes.kind.display_name_plural}:")
        for update in changes.to_update:
            out.print(f"  📝 {escape(update.filename)} (update)")
        for local in changes.to_create:
            out.print(f"  ✨ {escape(local.filename)} (new)")

    if env_changes.success and env_changes.total_changes:
        out.print("\n🔐 Environment Variables:")
        for change in env_changes.to_create:
            out.print(f"  ✨ {escape(change.key)} (new)")
        for change in env_changes.to_update:
            out.print(f"  📝 {escape(change.key)} (update)")
        for change in env_changes.to_delete:
            out.print(f"  🗑️  {escape(change.key)} (delete)")

    for changes in section_changes:
        if not changes.success or not changes.total_changes:
            continue
        section = changes.section
        out.print(f"\n{section.icon} {section.display_name_plural} ({CONFIG_FILE}):")
        for change in changes.to_create:
            out.print(f"  ✨ {escape(change.id)} (new)")
        for change in changes.to_update:
            out.print(f"  📝 {escape(change.id)} (update)")

    updates = sum(len(changes.to_update) for changes in changesets)
    creates = sum(len(changes.to_create) for changes in changesets)
    out.print(f"\n{RULE}")
    out.print(f"📊 Total: {updates} update(s), {creates} new file(s)")
    if env_changes.success and env_changes.total_changes:
        out.print(
            f"   └─ {len(env_changes.to_create)} new, {len(env_changes.to_update)} update, "
            f"{len(env_changes.to_delete)} delete env var(s)"
        )
    config_creates = sum(len(c.to_create) for c in section_changes if c.success)
    config_updates = sum(len(c.to_update) for c in section_changes if c.success)
    if config_creates or config_updates:
        out.print(f"   └─ {config_creates} new, {config_updates} update config item(s)")


def _show_all_push_diffs(
    out: Console,
    changesets: Sequence[ChangeSet],
    env_changes: EnvChangeSet,
    section_changes: Sequence[SectionChangeSet],
) -> None:
    show_push_diffs(out, [update for changes in changesets for update in changes.to_update])
    if env_changes.success and env_changes.total_changes:
        out.print("\n🔐 Environment Variable Changes:")
        display_env_push_diffs(out, env_changes)
    for changes in section_changes:
        if changes.success and changes.total_changes:
            out.print(f"\n{changes.section.icon} {changes.section.display_name} Changes:")
            display_config_push_diffs(out, changes)


def _report_outcomes(out: Console, outcomes: Sequence[PushOutcome], silent: bool) -> int:
    """Print each write outcome. Returns the number of failures."""
    labels = {
        "create": ("Created", "create"),
        "update": ("Updated", "update"),
        "delete": ("Deleted", "delete"),
    }
    failed = 0
    for outcome in outcomes:
        done, verb = labels.get(outcome.action, (outcome.action, outcome.action))
        if outcome.success:
            out.print(f"✅ {done} {escape(outcome.filename)}")
        else:
            failed += 1
            _report_error(f"Failed to {verb} {outcome.filename}: {outcome.error}", silent)
    return failed


async def _push_async(silent: bool, assume_yes: bool) -> None:
    out = _output(silent)
    config = load_config()
    out.print("🔄 Starting push operation...\n")
    _warn_unscoped(out, config)

    async with ApiClient(config, create_client(config)) as api:
        engine = SyncEngine(api)
        env_sync = EnvSync(api)
        section_sync = SectionSync(api)

        changesets = [await engine.push_items(kind) for kind in engine.kinds.values()]
        env_changes = await env_sync.preview_push()
        section_changes = [
            await section_sync.preview_push(section) for section in section_sync.sections.values()
        ]

        failures = [failure for changes in changesets for failure in changes.failures]
        _report_fetch_failures(failures, silent)
        for changes in changesets:
            for local in changes.skipped:
                out.print(
                    f"[yellow]⚠️  Skipping {escape(local.filename)}: "
                    "remote copy could not be fetched[/yellow]"
                )
        if not env_changes.success:
            _warn_skipped(out, "environment variables", env_changes.error)
        for changes in section_changes:
            if not changes.success:
                _warn_skipped(out, changes.section.display_name_plural.lower(), changes.error)

        file_changes = sum(changes.total_changes for changes in changesets)
        env_count = env_changes.total_changes if env_changes.success else 0
        config_count = sum(c.total_changes for c in section_changes if c.success)

        if not (file_changes or env_count or config_count):
            out.print("\n✨ Everything is up to date! No changes to push.")
            if failures:
                raise typer.Exit(code=1)
            return

        _show_push_summary(out, changesets, env_changes, section_changes)

        has_updates = any(changes.to_update for changes in changesets)
        if (has_updates or env_count or config_count) and not silent and not assume_yes:
            choice = _choose(
                "Would you like to view diffs before pushing?",
                {
                    "view": "View diffs before proceeding",
                    "skip": "Continue without viewing diffs",
                    "cancel": "Cancel push operation",
                },
                default="skip",
            )
            if choice == "cancel":
                out.print("❌ Push cancelled.")
                return
            if choice == "view":
                _show_all_push_diffs(out, changesets, env_changes, section_changes)

        message = f"Push {file_changes} file change(s)"
        if env_count:
            message += f" and {env_count} env var change(s)"
        if config_count:
            message += f" and {config_count} config change(s)"
        if not _confirm(f"{message}?", default=True, silent=silent, assume_yes=assume_yes):
            out.print("❌ Push cancelled.")
            return

        out.print("\n📤 Pushing changes...\n")
        outcomes: list[PushOutcome] = []
        for changes in changesets:
            outcomes.extend(await engine.apply_push(changes))
        if env_count:
            outcomes.extend(await env_sync.apply_push(env_changes))
        for changes in section_changes:
            if changes.success and changes.total_changes:
                outcomes.extend(await section_sync.apply_push(changes))

        failed = _report_outcomes(out, outcomes, silent)
        out.print(f"\n🎉 Push complete: {len(outcomes) - failed} succeeded, {failed} failed")

    if failures or failed:
        raise typer.Exit(code=1)


def push(silent: SilentOption = False, raw: RawOption = False, yes: YesOption = False) -> None:
    """Push local changes back to the remote app."""
    silent = silent or raw
    try:
        anyio.run(_push_async, silent, yes)
    except CxError as exc:
        _fail(exc, silent)


def clear(silent: SilentOption = False, raw: RawOption = False, yes: YesOption = False) -> None:
    """Delete every file in the sync directories."""
    silent = silent or raw
    out = _output(silent)
    config = load_config()

    files = get_all_sync_files(config.work_dir)
    if not files:
        directories = " or ".join(kind.directory for kind in SYNC_TYPES.values())
        out.print(f"📁 No files found in {directories}")
        return

    out.print("\n🗑️  Files to be deleted:")
    out.print(RULE)
    for sync_file in files:
        out.print(f"  • {escape(sync_file.display_path(config.work_dir))}")
    out.print(RULE)
    out.print(f"📊 Total: {len(files)} file(s)")

    if not _confirm(
        f"⚠️  Delete all {len(files)} file(s)?", default=False, silent=silent, assume_yes=yes
    ):
        out.print("❌ Clear cancelled.")
        return

    result = delete_sync_files(files)
    for sync_file in result.deleted:
        out.print(f"✅ Deleted {escape(sync_file.display_path(config.work_dir))}")
    for sync_file, error in result.errors:
        _report_error(f"Failed to delete {sync_file.filename}: {error}", silent)

    out.print(f"\n🎉 Successfully deleted {result.deleted_count}/{len(files)} file(s)")
    if result.errors:
        raise typer.Exit(code=1)
