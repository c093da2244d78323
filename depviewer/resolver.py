"""Per-component dependency lookup, from the store or live from the source."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .errors import DependencyLookupError, FetchError
from .graph_store import GraphStore
from .harvester import Harvester
from .records import DependencyEdgeRecord, EdgeView


class ResolveMode(str, Enum):
    LOCAL = "local"
    LIVE = "live"


class DependencyResolver:
    """
    Serves the edges touching one component.

    LOCAL reads the stored graph. LIVE asks the source and returns its answer
    without writing anything, filling size/coverage from stored rows where
    they exist. A live record missing an endpoint id is still returned, with
    that side left None.
    """

    def __init__(self, store: GraphStore, harvester: Optional[Harvester] = None):
        self.store = store
        self.harvester = harvester

    def resolve(self, component_id: str, mode: ResolveMode = ResolveMode.LOCAL) -> list[EdgeView]:
        if mode is ResolveMode.LOCAL:
            return self.store.edges_touching(component_id)
        return self._resolve_live(component_id)

    def _resolve_live(self, component_id: str) -> list[EdgeView]:
        if self.harvester is None:
            raise DependencyLookupError("No target org connected; live lookup unavailable")

        try:
            records = self.harvester.fetch_edges_for_ids([component_id])
        except FetchError as e:
            raise DependencyLookupError(f"Live dependency lookup for {component_id} failed: {e}") from e

        known = self.store.get_nodes(
            i for r in records for i in (r.source_id, r.target_id) if i
        )
        return [self._enrich(r, known) for r in records]

    @staticmethod
    def _enrich(record: DependencyEdgeRecord, known: dict) -> EdgeView:
        source = known.get(record.source_id)
        target = known.get(record.target_id)
        return EdgeView(
            id=EdgeView.edge_id(record.source_id, record.target_id),
            source_id=record.source_id,
            source_name=record.source_name,
            source_type=record.source_type,
            source_size=source.size if source else None,
            source_coverage=source.coverage if source else None,
            target_id=record.target_id,
            target_name=record.target_name,
            target_type=record.target_type,
            target_size=target.size if target else None,
            target_coverage=target.coverage if target else None,
        )
