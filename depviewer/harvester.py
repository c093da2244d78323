"""
Bounded-concurrency harvest of component inventories and dependency edges.

Each remote call runs on a fixed-size worker pool, so at most `concurrency`
calls are in flight and a finished call's slot goes straight to the next
pending one. Results, failures and the progress counter are only touched by
the thread that joins the pool (it drains completions with as_completed), so
no locking is needed around them.

Usage:
    harvester = Harvester(fetcher)
    inventory = harvester.fetch_inventory(types, concurrency=10)
    edges = harvester.fetch_edges(types=types, concurrency=5)
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from .records import ComponentRecord, DependencyEdgeRecord, EdgeScope, TypeDescriptor
from .salesforce_fetcher import MetadataSource

DEFAULT_ID_BATCH_SIZE = 20

ProgressCallback = Callable[[int, int, str], None]


def chunked(items: Sequence[str], size: int) -> list[list[str]]:
    """Split items into consecutive lists of at most `size`."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class HarvestBatch:
    """Flattened result of one pooled fetch."""

    records: list = field(default_factory=list)
    total: int = 0
    completed: int = 0
    failed: dict[str, str] = field(default_factory=dict)  # label -> error message

    @property
    def succeeded(self) -> int:
        return self.completed - len(self.failed)


class Harvester:
    """
    Pulls inventories and edges from a MetadataSource.

    A failing per-type (or per-id-batch) call is reported and contributes
    nothing; it never aborts the batch it belongs to.
    """

    def __init__(
        self,
        source: MetadataSource,
        console: Console | None = None,
        show_progress: bool = True,
        on_progress: Optional[ProgressCallback] = None,
        id_batch_size: int = DEFAULT_ID_BATCH_SIZE,
    ):
        self.source = source
        self.console = console or Console()
        self.show_progress = show_progress
        self.on_progress = on_progress
        self.id_batch_size = id_batch_size

    def _run_pool(
        self,
        description: str,
        items: list[Any],
        fetch: Callable[[Any], list],
        label: Callable[[Any], str],
        concurrency: int,
    ) -> HarvestBatch:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        batch = HarvestBatch(total=len(items))
        if not items:
            return batch

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.console,
            transient=True,
            disable=not self.show_progress,
        ) as progress, ThreadPoolExecutor(max_workers=min(concurrency, len(items))) as pool:
            task = progress.add_task(description, total=len(items))
            pending = {pool.submit(fetch, item): label(item) for item in items}

            for future in as_completed(pending):
                name = pending[future]
                try:
                    batch.records.extend(future.result())
                except Exception as e:
                    batch.failed[name] = str(e)
                    self.console.print(f"[yellow]Warning: {description} failed for {name}: {e}[/yellow]")

                batch.completed += 1
                progress.update(task, advance=1, description=f"{description} ({name})")
                if self.on_progress:
                    self.on_progress(batch.completed, batch.total, name)

        return batch

    def fetch_inventory(self, types: Iterable[TypeDescriptor], concurrency: int = 10) -> HarvestBatch:
        """
        List every component of every type.

        Returns:
            HarvestBatch of ComponentRecord; order across types is not stable.
        """
        return self._run_pool(
            "Fetching components",
            list(types),
            lambda t: self.source.list_components(t.name),
            lambda t: t.name,
            concurrency,
        )

    def fetch_edges(
        self,
        types: Optional[Iterable[TypeDescriptor]] = None,
        ids: Optional[Iterable[str]] = None,
        concurrency: int = 5,
    ) -> HarvestBatch:
        """
        Fetch dependency edges scoped by type, or by an explicit id list.

        Id lists are split into batches of `id_batch_size`, one remote call each.

        Returns:
            HarvestBatch of DependencyEdgeRecord
        """
        if (types is None) == (ids is None):
            raise ValueError("fetch_edges needs exactly one of types or ids")

        if types is not None:
            scopes = [EdgeScope.of_type(t.name) for t in types]
        else:
            scopes = [EdgeScope.by_ids(b) for b in chunked(list(ids), self.id_batch_size)]

        return self._run_pool(
            "Fetching dependencies",
            scopes,
            self.source.query_dependency_edges,
            lambda s: s.label,
            concurrency,
        )

    def fetch_edges_for_ids(self, ids: Sequence[str]) -> list[DependencyEdgeRecord]:
        """
        Fetch edges touching the given ids, one remote call per id batch, in order.

        Unlike fetch_edges, failures propagate: callers that asked for specific
        ids need to know the answer is incomplete.
        """
        edges: list[DependencyEdgeRecord] = []
        for batch in chunked(list(ids), self.id_batch_size):
            edges.extend(self.source.query_dependency_edges(EdgeScope.by_ids(batch)))
        return edges


def endpoint_records(edges: Iterable[DependencyEdgeRecord]) -> list[ComponentRecord]:
    """Distinct endpoint records of a set of edges; the first sighting of an id wins."""
    seen: dict[str, ComponentRecord] = {}
    for edge in edges:
        for record in edge.endpoints():
            seen.setdefault(record.id, record)
    return list(seen.values())
