"""Main Typer application, entry point for the ``normandy`` CLI."""

from __future__ import annotations

import typer

from normandy import __version__
from normandy.cli.check import check_cmd
from normandy.cli.init_cmd import init_cmd
from normandy.cli.run import run_cmd

app = typer.Typer(
    name="normandy",
    help="Replay a plan of HTTP requests against a host and measure latency.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Send requests from the plan to a host.")(run_cmd)
app.command("check", help="Validate a request plan without sending anything.")(check_cmd)
app.command("init", help="Write an example request plan.")(init_cmd)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"normandy {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """normandy: a command-line HTTP load generator."""
