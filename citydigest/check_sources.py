#!/usr/bin/env python3
"""Source health check utility."""

import asyncio
import sys
from pathlib import Path

import click
import orjson
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import HealthConfig, get_source_registry
from .ingest.circuit import CircuitStatus, get_circuit_registry
from .ingest.health import HealthReport, HealthStatus, SourceHealthMonitor
from .ingest.store import InMemoryContentStore
from .logging import get_logger, setup_logging

logger = get_logger(__name__)
console = Console()

STATUS_COLORS = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.CRITICAL: "red",
}


async def check_all_sources(store: InMemoryContentStore) -> HealthReport:
    """Check freshness of every registered source without healing."""
    monitor = SourceHealthMonitor(
        store,
        registry=get_source_registry(),
        circuits=get_circuit_registry(),
        config=HealthConfig(auto_heal=False),
    )
    return await monitor.produce_health_report(auto_heal=False)


def report_to_dict(report: HealthReport) -> dict:
    """Plain representation of a health report for JSON output."""
    return {
        "timestamp": report.timestamp,
        "overall_health": report.overall_health,
        "status": report.status.value,
        "ready_for_next_stage": report.ready_for_next_stage,
        "sources": [
            {
                "source_id": source.source_id,
                "name": source.name,
                "is_stale": source.is_stale,
                "stale_reason": source.stale_reason,
                "last_data_at": source.last_data_at,
                "hours_old": round(source.hours_old, 1) if source.hours_old is not None else None,
                "threshold_hours": source.threshold_hours,
                "item_count": source.item_count,
                "item_count_24h": source.item_count_24h,
                "priority": source.priority,
                "critical_for_digest": source.critical_for_digest,
            }
            for source in report.sources
        ],
        "circuits": {
            source_id: circuit.state.value for source_id, circuit in report.circuits.items()
        },
        "errors": report.errors,
        "recommendations": report.recommendations,
    }


def display_health_report(report: HealthReport):
    """Display health report in a formatted table."""
    console.print("\n")

    stale = len(report.stale_sources)
    color = STATUS_COLORS[report.status]
    summary_text = (
        f"[{color}]{report.status.value.upper()}[/{color}] | "
        f"Health: {report.overall_health}% | "
        f"[green]Fresh: {len(report.sources) - stale}[/green] | "
        f"[red]Stale: {stale}[/red] | "
        f"Total: {len(report.sources)}"
    )

    console.print(Panel(
        summary_text,
        title="[bold]Source Health Summary[/bold]",
        border_style="cyan"
    ))

    if report.sources:
        table = Table(
            title="\nDetailed Source Status",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan"
        )

        table.add_column("Source", style="dim", overflow="fold")
        table.add_column("Status", justify="center")
        table.add_column("Hours Old", justify="right")
        table.add_column("Threshold", justify="right")
        table.add_column("Items (48h)", justify="right")
        table.add_column("Circuit", justify="center")
        table.add_column("Reason", overflow="fold")

        for source in report.sources:
            status_text = "[red]STALE[/red]" if source.is_stale else "[green]FRESH[/green]"
            if source.is_stale and source.critical_for_digest:
                status_text = "[bold red]STALE*[/bold red]"

            hours_text = f"{source.hours_old:.1f}h" if source.hours_old is not None else "-"

            circuit = report.circuits.get(source.source_id)
            circuit_text = circuit.state.value if circuit else CircuitStatus.CLOSED.value
            if circuit and circuit.state != CircuitStatus.CLOSED:
                circuit_text = f"[red]{circuit_text}[/red]"

            reason = source.stale_reason or "-"
            if len(reason) > 50:
                reason = reason[:47] + "..."

            table.add_row(
                source.name,
                status_text,
                hours_text,
                f"{source.threshold_hours:g}h",
                str(source.item_count) if source.item_count > 0 else "-",
                circuit_text,
                reason
            )

        console.print(table)

    for recommendation in report.recommendations:
        console.print(f"[yellow]•[/yellow] {recommendation}")


@click.command()
@click.option(
    '--items',
    'items_path',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON fixture of stored items to check against'
)
@click.option('--verbose', '-v', is_flag=True, help='Show verbose output')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
def main(items_path: Path | None, verbose: bool, output_json: bool):
    """Check freshness of all registered sources."""
    setup_logging(log_level="INFO" if verbose else "ERROR", json_logging=False)

    try:
        store = InMemoryContentStore.from_json_file(items_path) if items_path else InMemoryContentStore()
        report = asyncio.run(check_all_sources(store))

        if output_json:
            click.echo(orjson.dumps(report_to_dict(report), option=orjson.OPT_INDENT_2).decode())
        else:
            display_health_report(report)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
