"""Entry point for healthwatch — `healthwatch` console script."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthwatch.config import settings
from healthwatch.health.engine import HealthwatchError, Report, Status
from healthwatch.health.registry import ProbeRegistry, build_aggregator

console = Console()

STATUS_STYLES = {
    Status.HEALTHY: "green",
    Status.UNHEALTHY: "bold red",
    Status.SKIPPED: "yellow",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(
        Panel.fit(
            f"[bold]healthwatch[/bold]\n"
            f"Bind:   {settings.api_host}:{settings.api_port}\n"
            f"Probes: {settings.probes_file}\n"
            f"Mode:   {'sequential' if settings.max_workers == 1 else f'{settings.max_workers} workers'}",
            border_style="green",
        )
    )
    uvicorn.run(
        "healthwatch.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


def render_report(report: Report) -> Table:
    table = Table(title=f"Health: {report.status.value}", title_style=STATUS_STYLES[report.status])
    table.add_column("Probe")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Reason")
    for name, result in report.entries:
        latency = f"{result.latency_ms:.1f}ms" if result.latency_ms is not None else "-"
        table.add_row(
            name,
            f"[{STATUS_STYLES[result.status]}]{result.status.value}[/]",
            latency,
            result.reason,
        )
    return table


def run_check(names: list[str], probes_file: str | None = None) -> int:
    """Run the probes once and print a table. Returns the process exit code."""
    registry = ProbeRegistry(path=Path(probes_file or settings.probes_file))
    try:
        aggregator = build_aggregator(registry, settings)
        report = aggregator.run_all(names=names or None)
    except (HealthwatchError, ValueError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2

    if not report.entries:
        console.print("[yellow]No probes configured[/yellow]")
    else:
        console.print(render_report(report))
    return 0 if report.is_healthy else 1


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="healthwatch: aggregated health probes")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")

    check_parser = sub.add_parser("check", help="Run probes once and print the report")
    check_parser.add_argument("names", nargs="*", help="Probe names (default: all)")
    check_parser.add_argument("--probes-file", help="Override the probes.yaml path")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check(args.names, args.probes_file))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
