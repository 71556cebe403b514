"""``normandy run``: replay the request plan against a host."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from normandy._internal.config import load_config
from normandy._internal.errors import NormandyError
from normandy._internal.logging import get_logger, setup_logging
from normandy.engine.runner import resolve_worker_count, run_load_test
from normandy.plan.loader import load_plan
from normandy.plan.request import validate_base_url

if TYPE_CHECKING:
    from normandy.engine.protocol import RequestResult
    from normandy.metrics.models import RunSummary

console = Console()
err_console = Console(stderr=True)


def _print_result(result: RequestResult) -> None:
    console.print(str(result), markup=False, highlight=False, soft_wrap=True)


def _print_summary(summary: RunSummary) -> None:
    """Print the latency statistics and a summary table.

    Args:
        summary: Statistics of the finished run.
    """
    console.print()
    console.print(f"Average request duration: {summary.latency_avg:.2f}ms", highlight=False)
    console.print(f"Standard deviation: {summary.latency_stddev:.2f}ms", highlight=False)
    console.print()

    table = Table(title="Run Complete", show_header=True, header_style="bold green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Requests", f"{summary.completed_requests} / {summary.expected_requests}")
    table.add_row("Failed", str(summary.failed_requests))
    table.add_row("Duration", f"{summary.duration_seconds:.2f}s")
    table.add_row("Requests/sec", f"{summary.requests_per_second:.1f}")
    table.add_row("Min Latency", f"{summary.latency_min:.2f}ms")
    table.add_row("p50 Latency", f"{summary.latency_p50:.2f}ms")
    table.add_row("p90 Latency", f"{summary.latency_p90:.2f}ms")
    table.add_row("p95 Latency", f"{summary.latency_p95:.2f}ms")
    table.add_row("p99 Latency", f"{summary.latency_p99:.2f}ms")
    table.add_row("Max Latency", f"{summary.latency_max:.2f}ms")
    for status, count in summary.status_counts.items():
        table.add_row(f"HTTP {status}", str(count))
    for error_type, count in summary.errors_by_type.items():
        table.add_row(escape(error_type), str(count))

    console.print(table)


def run_cmd(
    host: str = typer.Argument(
        ...,
        help="Base URL of the target, e.g. http://localhost:8080.",
    ),
    num_requests: int = typer.Option(
        ...,
        "--requests",
        "-n",
        help="Total number of requests to send.",
        min=0,
    ),
    concurrency: int = typer.Option(
        10,
        "--concurrency",
        "-c",
        help="Maximum concurrent requests, capped at the CPU count (0: CPU count).",
        min=0,
    ),
    plan_file: Path | None = typer.Option(
        None,
        "--config",
        "-f",
        help="Request plan file (default: $NORMANDY_CONFIG or ./normandy.toml).",
    ),
    result_buffer: int | None = typer.Option(
        None,
        "--result-buffer",
        help="Bound the number of buffered results (0: unbounded).",
        min=0,
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds (default: none).",
        min=0.001,
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Do not print a line per request.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit log records as JSON lines.",
    ),
) -> None:
    """Send requests from the plan to a host and report latency statistics."""
    setup_logging(
        level=logging.DEBUG if verbose else logging.WARNING,
        json_format=json_logs,
    )

    # Configuration errors stop the run before any request is sent.
    try:
        config = load_config()
        if result_buffer is not None:
            config = dataclasses.replace(config, result_buffer=result_buffer)
        if timeout is not None:
            config = dataclasses.replace(config, request_timeout=timeout)

        base_url = validate_base_url(host)
        plan = load_plan(plan_file or Path(config.plan_path))
    except NormandyError as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1) from exc

    logger = get_logger("cli.run")
    logger.debug("Request plan: %r", plan)

    workers = resolve_worker_count(concurrency)
    console.print(
        Panel(
            f"[bold]Host:[/bold]     {escape(base_url)}\n"
            f"[bold]Plan:[/bold]     {escape(plan.source)} ({len(plan)} request(s))\n"
            f"[bold]Requests:[/bold] {num_requests}\n"
            f"[bold]Workers:[/bold]  {workers}",
            title="normandy",
            border_style="cyan",
        )
    )

    try:
        summary = run_load_test(
            plan.requests,
            base_url,
            num_requests,
            max_concurrency=concurrency,
            config=config,
            on_result=None if quiet else _print_result,
            logger=logger,
        )
    except NormandyError as exc:
        err_console.print(f"[red]Load test failed:[/red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1) from exc

    _print_summary(summary)

    if summary.missing_requests:
        err_console.print(
            f"[red]FAIL:[/red] only {summary.completed_requests} of "
            f"{summary.expected_requests} request(s) produced a result",
        )
        raise typer.Exit(code=1)
