"""Per-component dependency lookup in LOCAL and LIVE modes."""

import pytest

from conftest import FakeSource, edge
from depviewer.errors import DependencyLookupError
from depviewer.harvester import Harvester
from depviewer.records import DependencyEdgeRecord, StatsRecord
from depviewer.resolver import DependencyResolver, ResolveMode


def test_local_mode_reads_the_store(store, a1, b1):
    store.upsert_nodes([a1, b1])
    store.update_stats([StatsRecord(id="b1", size=300, coverage=90)])
    store.upsert_edges([edge(a1, b1)])

    edges = DependencyResolver(store).resolve("b1", ResolveMode.LOCAL)

    assert len(edges) == 1
    assert edges[0].id == "a1-b1"
    assert edges[0].target_size == 300
    assert edges[0].target_coverage == 90


def test_live_mode_uses_remote_and_enriches_from_store(store, quiet, a1, a2, b1):
    store.upsert_nodes([a1])
    store.update_stats([StatsRecord(id="a1", size=42, coverage=None)])
    source = FakeSource(edges=[edge(a1, b1), edge(a2, b1)])
    resolver = DependencyResolver(store, Harvester(source, console=quiet, show_progress=False))

    edges = {e.id: e for e in resolver.resolve("b1", ResolveMode.LIVE)}

    assert set(edges) == {"a1-b1", "a2-b1"}
    assert edges["a1-b1"].source_size == 42
    assert edges["a1-b1"].target_name == "Billing"
    assert edges["a2-b1"].source_size is None
    # Live answers are not written back.
    assert store.counts() == {"components": 1, "dependencies": 0}


def test_live_failure_is_recoverable_error(store, quiet):
    source = FakeSource(failing={"edges-by-id"})
    resolver = DependencyResolver(store, Harvester(source, console=quiet, show_progress=False))

    with pytest.raises(DependencyLookupError):
        resolver.resolve("b1", ResolveMode.LIVE)


def test_live_without_source_is_recoverable_error(store):
    with pytest.raises(DependencyLookupError):
        DependencyResolver(store).resolve("b1", ResolveMode.LIVE)


def test_live_mode_keeps_records_with_an_unresolved_endpoint(store, quiet):
    source = FakeSource(
        edges=[DependencyEdgeRecord(target_id="b1", target_name="Billing", source_name="Hidden")]
    )
    resolver = DependencyResolver(store, Harvester(source, console=quiet, show_progress=False))

    edges = resolver.resolve("b1", ResolveMode.LIVE)

    assert len(edges) == 1
    assert edges[0].id == "-b1"
    assert edges[0].source_id is None
    assert edges[0].source_name == "Hidden"
    assert edges[0].target_id == "b1"
    assert not edges[0].is_self_loop
