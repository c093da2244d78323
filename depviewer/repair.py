"""
Backfill of components that stored edges point at but the node table lacks.

Inventory and edge harvests are independent, so an edge can name a component
the inventory never listed (unlisted types, filtered types, or a component
deleted between the two passes). Repair asks the source about those ids in
fixed-size batches, one batch at a time, and inserts whichever endpoint
records come back for them.

A failed batch stops the run: batches already written stay written, and the
error propagates so the caller sees the repair is incomplete.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from rich.console import Console

from .graph_store import GraphStore
from .harvester import chunked, endpoint_records
from .records import DependencyEdgeRecord

DEFAULT_REPAIR_BATCH_SIZE = 20

RemoteLookup = Callable[[Sequence[str]], list[DependencyEdgeRecord]]


@dataclass
class RepairReport:
    """Outcome of one repair run."""

    missing: set[str] = field(default_factory=set)
    resolved: set[str] = field(default_factory=set)
    unresolved: set[str] = field(default_factory=set)
    batches: int = 0
    remote_calls: int = 0


class ConsistencyRepairer:
    """Finds dangling edge endpoints and backfills them from the source."""

    def __init__(
        self,
        store: GraphStore,
        batch_size: int = DEFAULT_REPAIR_BATCH_SIZE,
        console: Console | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.console = console or Console()

    def find_dangling_ids(self) -> set[str]:
        return self.store.dangling_ids()

    def repair(self, remote_lookup: RemoteLookup) -> RepairReport:
        """
        Resolve dangling ids through `remote_lookup` (ids -> edges touching them).

        Returns:
            RepairReport; ids the source could not resolve are listed in
            `unresolved` and stay dangling.

        Raises:
            Whatever remote_lookup or the store raise, after earlier batches
            have been committed.
        """
        missing = self.find_dangling_ids()
        report = RepairReport(missing=set(missing))
        if not missing:
            self.console.print("[green]No dangling dependency endpoints.[/green]")
            return report

        batches = chunked(sorted(missing), self.batch_size)
        self.console.print(f"      Resolving {len(missing)} missing components in {len(batches)} batches...")

        for number, batch in enumerate(batches, start=1):
            report.remote_calls += 1
            try:
                edges = remote_lookup(batch)
            except Exception as e:
                self.console.print(f"[red]Repair stopped at batch {number}/{len(batches)}: {e}[/red]")
                raise

            # Any originally-missing id seen in this response lands now, even
            # if it belongs to a later batch.
            found = [r for r in endpoint_records(edges) if r.id in missing]
            self.store.upsert_nodes(found)
            report.batches += 1

        still_missing = self.find_dangling_ids()
        report.unresolved = missing & still_missing
        report.resolved = missing - still_missing

        self.console.print(
            f"[green]Resolved {len(report.resolved)} of {len(missing)} missing components.[/green]"
        )
        if report.unresolved:
            self.console.print(
                f"[yellow]{len(report.unresolved)} ids could not be resolved by the source "
                f"(deleted or inaccessible).[/yellow]"
            )
        return report
