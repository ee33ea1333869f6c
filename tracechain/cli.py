# -*- coding: utf-8 -*-
"""
TraceChain CLI
==============

Commands:
    tracechain lineage <batch_id> --ledger FILE [--viewer ADDR]
        Resolve a batch's two-tier lineage, filtered for the viewer
    tracechain identity <address> --ledger FILE
        Show a participant's identity and authorization snapshot

Example:
    $ tracechain lineage 10 --ledger ledger.json
    $ tracechain lineage 10 --ledger ledger.json --viewer 0x2222...
    $ tracechain identity 0x2222... --ledger ledger.json --format json
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tracechain.config import TraceChainConfig, get_config
from tracechain.exceptions import TraceChainException
from tracechain.ledger import InMemoryLedger
from tracechain.models import LineageNode, LineageTree
from tracechain.setup import TraceChainService

app = typer.Typer(
    name="tracechain",
    help="Supply-chain provenance lookups over a ledger snapshot",
    no_args_is_help=True,
)

console = Console()


def _service(ledger: Optional[Path]) -> TraceChainService:
    config: TraceChainConfig = get_config()
    logging.basicConfig(level=config.log_level.upper())
    path = ledger or (Path(config.ledger_snapshot_path) if config.ledger_snapshot_path else None)
    if path is None:
        raise typer.BadParameter("--ledger is required when TRACECHAIN_LEDGER_SNAPSHOT_PATH is unset")
    return TraceChainService(config=config, ledger=InMemoryLedger.from_json_file(path))


def _fmt_time(value: Optional[int]) -> str:
    return "-" if value is None else str(value)


def _node_row(node: LineageNode) -> list:
    flags = []
    if node.is_degraded:
        flags.extend(r.value for r in node.degradation_reasons)
    if node.time_ordering_violation:
        flags.append("acquired_before_created")
    return [
        str(node.tier),
        str(node.batch_id),
        str(node.quantity),
        node.name or "-",
        node.producer_organization or "-",
        node.producer_role.value if node.producer_role else "-",
        _fmt_time(node.created_at),
        _fmt_time(node.acquired_at),
        ", ".join(flags),
    ]


def _print_tree(tree: LineageTree) -> None:
    root = tree.root
    console.print(
        f"[bold]Batch {root.batch_id}[/bold] {root.name} "
        f"by {root.producer_organization or root.producer}"
        + (f" [dim](tx {root.tx_hash})[/dim]" if root.tx_hash else "")
    )

    if not tree.nodes():
        console.print("[yellow]No ancestors disclosed[/yellow]")
        return

    table = Table(title=f"Lineage of batch {root.batch_id}")
    table.add_column("Tier", style="cyan")
    table.add_column("Batch", style="bold")
    table.add_column("Qty")
    table.add_column("Name")
    table.add_column("Organization", style="green")
    table.add_column("Role")
    table.add_column("Created")
    table.add_column("Acquired")
    table.add_column("Flags", style="red")
    for node in tree.nodes():
        table.add_row(*_node_row(node))
    console.print(table)


@app.command()
def lineage(
    batch_id: int = typer.Argument(..., help="Batch id to trace"),
    ledger: Optional[Path] = typer.Option(None, "--ledger", help="Ledger snapshot JSON file"),
    viewer: Optional[str] = typer.Option(None, "--viewer", help="Viewer address"),
    format: str = typer.Option("table", help="Output format: table, json"),
):
    """
    Resolve the lineage of a batch.

    Example:
        tracechain lineage 10 --ledger ledger.json --viewer 0x2222...
    """
    try:
        service = _service(ledger)
        tree = asyncio.run(service.lineage_for_viewer(batch_id, viewer))
    except (TraceChainException, OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps(tree.model_dump(mode="json"), indent=2))
        return
    _print_tree(tree)


@app.command()
def identity(
    address: str = typer.Argument(..., help="Participant address"),
    ledger: Optional[Path] = typer.Option(None, "--ledger", help="Ledger snapshot JSON file"),
    format: str = typer.Option("table", help="Output format: table, json"),
):
    """
    Show a participant's identity and authorization snapshot.

    Example:
        tracechain identity 0x2222... --ledger ledger.json
    """
    try:
        service = _service(ledger)
        snapshot = asyncio.run(service.refresh_identity(address))
    except (TraceChainException, OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        typer.echo(json.dumps(snapshot.model_dump(mode="json"), indent=2))
        return

    table = Table(title=f"Identity {snapshot.address}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    rows = [
        ("Registered", str(snapshot.is_registered)),
        ("Administrator", str(snapshot.is_admin)),
        ("Status", snapshot.status_label or "-"),
        ("Role", snapshot.role.value if snapshot.role else "-"),
        ("Active role", snapshot.active_role.value if snapshot.active_role else "-"),
        ("Pending role", snapshot.pending_role.value if snapshot.pending_role else "-"),
        ("Organization", snapshot.organization or "-"),
        ("Name", " ".join(p for p in (snapshot.first_name, snapshot.last_name) if p) or "-"),
        ("Last requested", snapshot.last_requested_role.value if snapshot.last_requested_role else "-"),
        ("Requested at", _fmt_time(snapshot.last_requested_at)),
    ]
    for field, value in rows:
        table.add_row(field, value)
    console.print(table)
    if snapshot.request_conflict:
        console.print("[yellow]Pending role disagrees with the latest request event[/yellow]")


if __name__ == "__main__":
    app()
