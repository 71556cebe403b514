"""``normandy check``: validate a request plan and list its requests."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from normandy._internal.config import load_config
from normandy._internal.errors import NormandyError
from normandy.plan.loader import load_plan

console = Console(stderr=True)


def check_cmd(
    plan_file: Path | None = typer.Option(
        None,
        "--config",
        "-f",
        help="Request plan file (default: $NORMANDY_CONFIG or ./normandy.toml).",
    ),
) -> None:
    """Validate a request plan without sending anything."""
    try:
        path = plan_file or Path(load_config().plan_path)
        plan = load_plan(path)
    except NormandyError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1) from exc

    table = Table(title=f"Request plan: {escape(plan.source)}", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Headers")
    table.add_column("Body", justify="right")

    for index, request in enumerate(plan.requests, start=1):
        headers = "\n".join(f"{name}: {value}" for name, value in request.headers) or "-"
        body = f"{len(request.body)} B" if request.body is not None else "-"
        table.add_row(str(index), request.method.value, Text(request.path), Text(headers), body)

    console.print(table)
    console.print(f"[green]OK:[/green] {len(plan)} request(s) are valid.")
