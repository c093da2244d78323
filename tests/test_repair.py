"""Dangling endpoint detection and batched backfill."""

import pytest

from conftest import FakeSource, edge
from depviewer.errors import TransientFetchError
from depviewer.records import ComponentRecord, DependencyEdgeRecord, EdgeScope
from depviewer.repair import ConsistencyRepairer


def _lookup(source):
    return lambda ids: source.query_dependency_edges(EdgeScope.by_ids(ids))


def _seed(store, a1, a2, c):
    store.upsert_nodes([a1, a2])
    store.upsert_edges([edge(a1, c)])


def test_repair_backfills_resolvable_ids(store, quiet, a1, a2):
    c = ComponentRecord(id="c1", name="Contract", type="C")
    _seed(store, a1, a2, c)
    repairer = ConsistencyRepairer(store, console=quiet)
    assert repairer.find_dangling_ids() == {"c1"}

    source = FakeSource(edges=[edge(a1, c)])
    report = repairer.repair(_lookup(source))

    assert report.resolved == {"c1"}
    assert report.unresolved == set()
    assert repairer.find_dangling_ids() == set()
    assert store.get_nodes(["c1"])["c1"].name == "Contract"


def test_repair_reports_ids_the_source_cannot_resolve(store, quiet, a1, a2):
    _seed(store, a1, a2, ComponentRecord(id="c1"))
    repairer = ConsistencyRepairer(store, console=quiet)

    report = repairer.repair(_lookup(FakeSource()))

    assert report.missing == {"c1"}
    assert report.unresolved == {"c1"}
    assert report.resolved == set()
    assert repairer.find_dangling_ids() == {"c1"}


def test_repair_only_inserts_missing_ids(store, quiet, a1, a2):
    c = ComponentRecord(id="c1", name="Contract", type="C")
    other = ComponentRecord(id="zz", name="Unrelated", type="Z")
    _seed(store, a1, a2, c)
    renamed_a1 = ComponentRecord(id="a1", name="Renamed", type="A")
    source = FakeSource(edges=[edge(renamed_a1, c), edge(c, other)])

    ConsistencyRepairer(store, console=quiet).repair(_lookup(source))

    assert store.get_nodes(["a1"])["a1"].name == "AccountService"
    assert "zz" not in store.get_nodes(["zz"])


def test_missing_id_from_a_later_batch_lands_with_the_earlier_response(store, quiet, a1):
    store.upsert_nodes([a1])
    store.upsert_edges(
        [
            DependencyEdgeRecord(source_id="a1", target_id="m1"),
            DependencyEdgeRecord(source_id="a1", target_id="m2"),
        ]
    )
    present_at_second_call = []

    def lookup(ids):
        if ids == ["m1"]:
            return [DependencyEdgeRecord(source_id="m1", source_name="One", target_id="m2", target_name="Two")]
        present_at_second_call.extend(store.get_nodes(["m2"]))
        return []

    report = ConsistencyRepairer(store, batch_size=1, console=quiet).repair(lookup)

    assert present_at_second_call == ["m2"]
    assert report.resolved == {"m1", "m2"}
    assert store.get_nodes(["m2"])["m2"].name == "Two"


def test_repair_batches_sequentially(store, quiet, a1):
    store.upsert_nodes([a1])
    store.upsert_edges(DependencyEdgeRecord(source_id="a1", target_id=f"m{i:02d}") for i in range(45))
    seen = []

    def lookup(ids):
        seen.append(list(ids))
        return [DependencyEdgeRecord(source_id="a1", target_id=i, target_name=i) for i in ids]

    report = ConsistencyRepairer(store, batch_size=20, console=quiet).repair(lookup)

    assert [len(b) for b in seen] == [20, 20, 5]
    assert report.remote_calls == 3
    assert len(report.resolved) == 45


def test_failed_batch_stops_run_but_keeps_committed_batches(store, quiet, a1):
    store.upsert_nodes([a1])
    store.upsert_edges(DependencyEdgeRecord(source_id="a1", target_id=f"m{i}") for i in range(4))
    calls = []

    def lookup(ids):
        calls.append(list(ids))
        if len(calls) == 2:
            raise TransientFetchError("timed out")
        return [DependencyEdgeRecord(source_id="a1", target_id=i) for i in ids]

    repairer = ConsistencyRepairer(store, batch_size=2, console=quiet)
    with pytest.raises(TransientFetchError):
        repairer.repair(lookup)

    assert len(calls) == 2
    assert repairer.find_dangling_ids() == {"m2", "m3"}


def test_nothing_dangling_means_no_remote_calls(store, quiet, a1, b1):
    store.upsert_nodes([a1, b1])
    store.upsert_edges([edge(a1, b1)])

    def lookup(ids):
        raise AssertionError("should not be called")

    report = ConsistencyRepairer(store, console=quiet).repair(lookup)
    assert report.remote_calls == 0
    assert report.missing == set()
