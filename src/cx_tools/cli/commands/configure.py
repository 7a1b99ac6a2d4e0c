"""Credential and application setup commands."""

from __future__ import annotations

from typing import Annotated

import anyio
import typer
from rich.console import Console
from rich.markup import escape

from cx_tools.cli.client import ApiClient, create_client
from cx_tools.cli.config import CliConfig, load_config, set_app_id, write_refresh_token
from cx_tools.cli.errors import CxError

console = Console()


async def _issue_token(config: CliConfig, username: str, password: str) -> str:
    async with ApiClient(config, create_client(config)) as api:
        return await api.tokens.issue_refresh_token(username, password)


def configure(
    username: Annotated[
        str | None, typer.Option("--username", "-u", help="Account username")
    ] = None,
    password: Annotated[
        str | None, typer.Option("--password", "-p", help="Account password")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Replace an existing refresh token")
    ] = False,
) -> None:
    """Exchange account credentials for a 30-day refresh token.

    The password is used once and never stored; only the refresh token is
    written to ``.env``.

    Examples:
        cx configure
        cx configure -u admin@example.com -p secret --force
    """
    config = load_config()
    if config.refresh_token and not force:
        console.print("[yellow]⚠️  A refresh token is already configured.[/yellow]")
        console.print("Use --force to replace it.")
        return

    username = username or typer.prompt("Username")
    password = password or typer.prompt("Password", hide_input=True)

    console.print("🔍 Requesting refresh token...")
    try:
        token = anyio.run(_issue_token, config, username, password)
    except CxError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc

    write_refresh_token(config.env_path, token)
    console.print(f"[green]✓[/green] Refresh token saved to [dim]{config.env_path}[/dim]")
    console.print("  Valid for 30 days and renewed automatically when used.")


def configure_app(
    app_id: Annotated[str, typer.Argument(help="Application ID to scope sync operations to")],
) -> None:
    """Set the application that pull and push operate on.

    Examples:
        cx configure-app 42
    """
    config = load_config()
    set_app_id(config.env_path, app_id.strip())
    console.print(f"[green]✓[/green] Set [cyan]APP_ID[/cyan] = [green]{escape(app_id)}[/green]")
    console.print(f"Config file: [dim]{config.env_path}[/dim]")
