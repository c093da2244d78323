"""
Apex size and coverage metrics, merged into one StatsRecord per component.

The aggregate queries run in parallel. A failing query contributes nothing;
the others still land. Rows are coerced one at a time, so a malformed row is
dropped with a warning instead of taking its query (or the sync) down.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError
from rich.console import Console

from .records import StatsRecord
from .salesforce_fetcher import MetadataSource


class SizeRow(BaseModel):
    Id: Optional[str] = None
    LengthWithoutComments: Optional[int] = None


class CoverageRow(BaseModel):
    ApexClassOrTriggerId: Optional[str] = None
    NumLinesCovered: Optional[int] = None
    NumLinesUncovered: Optional[int] = None


# Folds return the number of rows they had to skip.
Fold = Callable[[dict[str, dict[str, Any]], list[Any]], int]


@dataclass(frozen=True)
class MetricQuery:
    """One aggregate query and the function folding its rows into the merge map."""

    name: str
    soql: str
    fold: Fold


def coverage_percent(covered: int | None, uncovered: int | None) -> int | None:
    """round(covered / total * 100), or None when there are no lines at all."""
    covered = covered or 0
    total = covered + (uncovered or 0)
    if total <= 0:
        return None
    return round(covered / total * 100)


def fold_size(merged: dict[str, dict[str, Any]], rows: list[Any]) -> int:
    skipped = 0
    for raw in rows:
        try:
            row = SizeRow.model_validate(raw)
        except ValidationError:
            skipped += 1
            continue
        if row.Id and row.LengthWithoutComments is not None:
            merged.setdefault(row.Id, {"id": row.Id})["size"] = row.LengthWithoutComments
    return skipped


def fold_coverage(merged: dict[str, dict[str, Any]], rows: list[Any]) -> int:
    skipped = 0
    for raw in rows:
        try:
            row = CoverageRow.model_validate(raw)
        except ValidationError:
            skipped += 1
            continue
        if not row.ApexClassOrTriggerId:
            continue
        pct = coverage_percent(row.NumLinesCovered, row.NumLinesUncovered)
        if pct is None or not 0 <= pct <= 100:
            continue
        merged.setdefault(row.ApexClassOrTriggerId, {"id": row.ApexClassOrTriggerId})["coverage"] = pct
    return skipped


DEFAULT_QUERIES = (
    MetricQuery("class size", "SELECT Id, LengthWithoutComments FROM ApexClass", fold_size),
    MetricQuery("trigger size", "SELECT Id, LengthWithoutComments FROM ApexTrigger", fold_size),
    MetricQuery(
        "coverage",
        "SELECT ApexClassOrTriggerId, NumLinesCovered, NumLinesUncovered FROM ApexCodeCoverageAggregate",
        fold_coverage,
    ),
)


class StatsCollector:
    """Runs the metric queries and merges them client-side."""

    def __init__(
        self,
        source: MetadataSource,
        queries: tuple[MetricQuery, ...] = DEFAULT_QUERIES,
        console: Console | None = None,
    ):
        self.source = source
        self.queries = queries
        self.console = console or Console()

    def _run(self, query: MetricQuery) -> list[Any]:
        try:
            rows = self.source.query(query.soql)
        except Exception as e:
            self.console.print(f"[yellow]Warning: {query.name} query failed: {e}[/yellow]")
            return []
        if not isinstance(rows, list):
            self.console.print(f"[yellow]Warning: {query.name} query returned no row list[/yellow]")
            return []
        return rows

    def fetch(self) -> list[StatsRecord]:
        """One StatsRecord per component id seen by any query."""
        if not self.queries:
            return []

        with ThreadPoolExecutor(max_workers=len(self.queries)) as pool:
            results = list(pool.map(self._run, self.queries))

        # Fold in declaration order so later queries refine earlier ones.
        merged: dict[str, dict[str, Any]] = {}
        for query, rows in zip(self.queries, results):
            skipped = query.fold(merged, rows)
            if skipped:
                self.console.print(
                    f"[yellow]Warning: skipped {skipped} malformed {query.name} rows[/yellow]"
                )

        return [StatsRecord(**data) for data in merged.values()]
