#!/usr/bin/env python3
"""
Sync, repair and query the local dependency graph of a Salesforce org.

Usage:
    # Full harvest into the local store
    depviewer sync --target-org my-org

    # Start from an empty store
    depviewer sync --target-org my-org --fresh

    # Backfill components referenced by edges but missing from the store
    depviewer repair --target-org my-org

    # Query the store
    depviewer search Account
    depviewer deps 01p000000000001
    depviewer deps 01p000000000001 --live --target-org my-org

    # Serve the graph API
    depviewer serve --port 3000 --target-org my-org

    # Any command against another store file
    depviewer --db other.db search Account
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .errors import DepViewerError, DiscoveryError, FetchError, StoreWriteError
from .graph_store import GraphStore
from .harvester import Harvester, endpoint_records
from .records import EdgeView
from .repair import ConsistencyRepairer, RepairReport
from .resolver import DependencyResolver, ResolveMode
from .salesforce_fetcher import MetadataSource, SalesforceFetcher
from .settings import Settings
from .stats_collector import StatsCollector
from .type_catalog import TypeCatalog

console = Console()


@dataclass
class SyncReport:
    """Counts from one sync run."""

    types: int = 0
    components: int = 0
    stats: int = 0
    edges: int = 0
    edge_endpoints: int = 0
    failed_inventory: dict[str, str] = field(default_factory=dict)
    failed_edges: dict[str, str] = field(default_factory=dict)
    duration: float = 0.0


def source_for(settings: Settings) -> Optional[MetadataSource]:
    """The configured remote source, or None when no target org is set."""
    if not settings.target_org:
        return None
    return SalesforceFetcher(settings.target_org, cli=settings.sf_cli, timeout=settings.remote_timeout)


def run_sync(
    store: GraphStore,
    source: MetadataSource,
    settings: Settings,
    fresh: bool = False,
    console: Console = console,
    show_progress: bool = True,
) -> SyncReport:
    """
    Harvest the source into the store.

    Order: discover types, inventory, stats, then edges (whose endpoints are
    inserted before the edges themselves).

    Raises:
        DiscoveryError: Type discovery failed; the store was not touched
        StoreWriteError: A batch write failed and was rolled back
    """
    started = time.time()
    report = SyncReport()

    console.print("\n[bold][1/3] Fetching metadata components...[/bold]")
    types = TypeCatalog(source, console=console).discover()
    report.types = len(types)

    if fresh:
        store.clear()

    harvester = Harvester(
        source,
        console=console,
        show_progress=show_progress,
        id_batch_size=settings.repair_batch_size,
    )
    inventory = harvester.fetch_inventory(types, concurrency=settings.inventory_concurrency)
    report.failed_inventory = inventory.failed
    report.components = store.upsert_nodes(inventory.records)
    console.print(f"      [green]✓[/green] Saved {report.components} components.")

    console.print("\n[bold][2/3] Fetching Apex size and coverage stats...[/bold]")
    stats = StatsCollector(source, console=console).fetch()
    report.stats = store.update_stats(stats)
    console.print(f"      [green]✓[/green] Fetched stats for {report.stats} components.")

    console.print("\n[bold][3/3] Fetching dependency edges...[/bold]")
    edges = harvester.fetch_edges(types=types, concurrency=settings.edge_concurrency)
    report.failed_edges = edges.failed
    report.edge_endpoints = store.upsert_nodes(endpoint_records(edges.records))
    report.edges = store.upsert_edges(edges.records)
    console.print(f"      [green]✓[/green] Saved {report.edges} dependency edges.")

    report.duration = time.time() - started
    return report


def run_repair(
    store: GraphStore,
    source: MetadataSource,
    settings: Settings,
    console: Console = console,
) -> RepairReport:
    """Backfill dangling edge endpoints, one id batch at a time."""
    harvester = Harvester(source, console=console, id_batch_size=settings.repair_batch_size)
    repairer = ConsistencyRepairer(store, batch_size=settings.repair_batch_size, console=console)
    return repairer.repair(harvester.fetch_edges_for_ids)


def print_sync_summary(report: SyncReport, store: GraphStore) -> None:
    counts = store.counts()

    table = Table(title="Sync Results")
    table.add_column("Step", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Failed types", justify="right")

    table.add_row("Components", str(report.components), str(len(report.failed_inventory)))
    table.add_row("Stats", str(report.stats), "-")
    table.add_row("Edges", str(report.edges), str(len(report.failed_edges)))
    table.add_row("Edge endpoints", str(report.edge_endpoints), "-")
    console.print()
    console.print(table)

    console.print(
        f"[blue]Store:[/blue] {counts['components']} components, "
        f"{counts['dependencies']} dependencies"
    )
    failed = sorted(set(report.failed_inventory) | set(report.failed_edges))
    if failed:
        console.print(f"[yellow]Types with fetch errors:[/yellow] {', '.join(failed)}")
    console.print(f"\n[green]Done![/green] Sync complete in {report.duration:.1f}s.")


def print_repair_summary(report: RepairReport) -> None:
    table = Table(title="Repair Results")
    table.add_column("Missing", justify="right")
    table.add_column("Resolved", justify="right", style="green")
    table.add_column("Unresolved", justify="right", style="yellow")
    table.add_column("Remote calls", justify="right")
    table.add_row(
        str(len(report.missing)),
        str(len(report.resolved)),
        str(len(report.unresolved)),
        str(report.remote_calls),
    )
    console.print(table)
    for component_id in sorted(report.unresolved):
        console.print(f"  [yellow]-[/yellow] {component_id}")


def print_edges(edges: list[EdgeView]) -> None:
    table = Table(title=f"{len(edges)} dependencies")
    table.add_column("Source", style="cyan")
    table.add_column("Source type", style="magenta")
    table.add_column("Target", style="cyan")
    table.add_column("Target type", style="magenta")
    for e in edges:
        table.add_row(
            e.source_name or e.source_id or "-",
            e.source_type or "-",
            e.target_name or e.target_id or "-",
            e.target_type or "-",
        )
    console.print(table)


def _require_source(settings: Settings) -> Optional[MetadataSource]:
    source = source_for(settings)
    if source is None:
        console.print("[red]Error: no target org. Pass --target-org or set SF_TARGET_ORG.[/red]")
    return source


def cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    source = _require_source(settings)
    if source is None:
        return 1

    console.print(f"\n[bold]=== Starting sync for org: {settings.target_org} ===[/bold]")
    with GraphStore.open(settings.store_url) as store:
        try:
            report = run_sync(store, source, settings, fresh=args.fresh)
        except DiscoveryError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1
        except StoreWriteError as e:
            console.print(f"[red]Database error: {e}[/red]")
            return 1
        print_sync_summary(report, store)
    return 0


def cmd_repair(args: argparse.Namespace, settings: Settings) -> int:
    source = _require_source(settings)
    if source is None:
        return 1

    with GraphStore.open(settings.store_url) as store:
        try:
            report = run_repair(store, source, settings)
        except (FetchError, StoreWriteError) as e:
            console.print(f"[red]Repair aborted: {e}[/red]")
            return 1
    print_repair_summary(report)
    return 0


def cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    with GraphStore.open(settings.store_url) as store:
        results = store.search_nodes(args.term, limit=settings.search_limit)

    table = Table(title=f"Components matching '{args.term}'")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type", style="magenta")
    table.add_column("Size", justify="right")
    table.add_column("Coverage", justify="right")
    for c in results:
        table.add_row(
            c.id,
            c.name or "-",
            c.type or "-",
            "-" if c.size is None else str(c.size),
            "-" if c.coverage is None else f"{c.coverage}%",
        )
    console.print(table)
    return 0


def cmd_deps(args: argparse.Namespace, settings: Settings) -> int:
    harvester = None
    if args.live:
        source = _require_source(settings)
        if source is None:
            return 1
        harvester = Harvester(source, console=console, show_progress=False)

    mode = ResolveMode.LIVE if args.live else ResolveMode.LOCAL
    with GraphStore.open(settings.store_url) as store:
        try:
            edges = DependencyResolver(store, harvester).resolve(args.id, mode)
        except DepViewerError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1
    print_edges(edges)
    return 0


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from .api.query import create_app

    if args.port:
        settings.api_port = args.port
    console.print(f"Server running at http://localhost:{settings.api_port}")
    if settings.target_org:
        console.print(f"Connected to Salesforce org: {settings.target_org}")
    uvicorn.run(create_app(settings), port=settings.api_port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depviewer",
        description="Salesforce metadata dependency viewer",
    )
    parser.add_argument("-d", "--db", type=str, help="Path to SQLite database file")
    sub = parser.add_subparsers(dest="command", required=True)

    org = argparse.ArgumentParser(add_help=False)
    org.add_argument("-o", "--target-org", type=str, help="Target Salesforce org (username or alias)")

    p = sub.add_parser("sync", parents=[org], help="Download metadata dependencies from Salesforce")
    p.add_argument("--fresh", action="store_true", help="Clear the store before syncing")
    p.add_argument("--concurrency", type=int, help="Max concurrent remote calls per harvest")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("repair", parents=[org], help="Backfill components referenced by edges")
    p.add_argument("--batch-size", type=int, help="Ids per remote lookup")
    p.set_defaults(func=cmd_repair)

    p = sub.add_parser("search", help="Search stored components by name or id")
    p.add_argument("term", type=str)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("deps", parents=[org], help="Show dependencies of one component")
    p.add_argument("id", type=str)
    p.add_argument("--live", action="store_true", help="Ask the org instead of the store")
    p.set_defaults(func=cmd_deps)

    p = sub.add_parser("serve", parents=[org], help="Start the web API")
    p.add_argument("-p", "--port", type=int, help="Port to run on")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv(override=False)

    args = build_parser().parse_args(argv)
    settings = Settings()

    if args.db:
        settings.database_path = args.db
    if getattr(args, "target_org", None):
        settings.target_org = args.target_org
    if getattr(args, "concurrency", None):
        settings.inventory_concurrency = args.concurrency
        settings.edge_concurrency = args.concurrency
    if getattr(args, "batch_size", None):
        settings.repair_batch_size = args.batch_size

    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
