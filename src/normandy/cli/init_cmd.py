"""``normandy init``: write an example request plan."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from normandy._internal.config import DEFAULT_PLAN_FILE

console = Console(stderr=True)

_PLAN_TEMPLATE = '''\
# Request plan for normandy.
#
# Requests are sent in order and the list is replayed from the top until
# the total given with `normandy run HOST -n N` has been sent.
# Paths are relative to HOST.

[[requests]]
method = "GET"
path = "/"

[[requests]]
method = "POST"
path = "/items?source=normandy"
headers = ["Content-Type: application/json"]
body = { json = '{"name": "example"}' }
'''


def init_cmd(
    path: Path = typer.Argument(
        Path(DEFAULT_PLAN_FILE),
        help="Where to write the plan.",
        dir_okay=False,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing file.",
    ),
) -> None:
    """Write an example request plan."""
    if path.exists() and not force:
        console.print(f"[red]File already exists:[/red] {path}")
        raise typer.Exit(code=1)

    path.write_text(_PLAN_TEMPLATE)
    console.print(f"[green]Created request plan:[/green] {path}")
