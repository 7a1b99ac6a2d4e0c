"""Main CLI application using Typer."""

import logging

import typer
from rich.console import Console

from cx_tools import __version__
from cx_tools.cli.commands.configure import configure, configure_app
from cx_tools.cli.commands.sync import clear, pull, push

app = typer.Typer(
    name="cx",
    help="cx - ConnexCS command-line tools",
    add_completion=False,
)
console = Console()

# Register commands
app.command("configure")(configure)
app.command("configure-app")(configure_app)
app.command("pull")(pull)
app.command("push")(push)
app.command("clear")(clear)


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"cx-tools version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log requests and token renewal"),
) -> None:
    """cx CLI - Sync scripts, queries and templates with your ConnexCS app."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


if __name__ == "__main__":
    app()
