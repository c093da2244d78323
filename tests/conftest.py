"""Shared fixtures: an in-memory metadata source and a throwaway store."""

from __future__ import annotations

import random
import threading
import time
from typing import Any

import pytest
from rich.console import Console

from depviewer.errors import TransientFetchError
from depviewer.graph_store import GraphStore
from depviewer.records import ComponentRecord, DependencyEdgeRecord, EdgeScope, TypeDescriptor
from depviewer.salesforce_fetcher import MetadataSource


def edge(source: ComponentRecord, target: ComponentRecord) -> DependencyEdgeRecord:
    return DependencyEdgeRecord(
        source_id=source.id,
        source_name=source.name,
        source_type=source.type,
        target_id=target.id,
        target_name=target.name,
        target_type=target.type,
    )


class FakeSource(MetadataSource):
    """
    Scriptable MetadataSource.

    inventories: type name -> components
    edges: every edge the "org" knows about
    rows: FROM object of a tooling query -> rows
    failing: names (types, FROM objects, or "describe") whose calls raise
    max_delay: upper bound of a random per-call sleep, to shuffle completion order
    """

    def __init__(
        self,
        types: list[str] | None = None,
        inventories: dict[str, list[ComponentRecord]] | None = None,
        edges: list[DependencyEdgeRecord] | None = None,
        rows: dict[str, list[dict[str, Any]]] | None = None,
        failing: set[str] | None = None,
        max_delay: float = 0.0,
    ):
        self.inventories = inventories or {}
        self.types = types if types is not None else list(self.inventories)
        self.edges = edges or []
        self.rows = rows or {}
        self.failing = failing or set()
        self.max_delay = max_delay

        self.calls: list[tuple[str, Any]] = []
        self.opened: list[str] = []
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def _enter(self, kind: str, arg: Any) -> None:
        with self._lock:
            self.calls.append((kind, arg))
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        if self.max_delay:
            time.sleep(random.uniform(0, self.max_delay))

    def _leave(self) -> None:
        with self._lock:
            self._in_flight -= 1

    def calls_of(self, kind: str) -> list[Any]:
        return [arg for k, arg in self.calls if k == kind]

    def describe_types(self) -> list[TypeDescriptor]:
        self.calls.append(("describe", None))
        if "describe" in self.failing:
            raise TransientFetchError("describe timed out", operation="describe")
        return [TypeDescriptor(name=t) for t in self.types]

    def list_components(self, type_name: str) -> list[ComponentRecord]:
        self._enter("inventory", type_name)
        try:
            if type_name in self.failing:
                raise TransientFetchError(f"inventory {type_name} timed out", operation="inventory")
            return list(self.inventories.get(type_name, []))
        finally:
            self._leave()

    def query_dependency_edges(self, scope: EdgeScope) -> list[DependencyEdgeRecord]:
        self._enter("edges", scope)
        try:
            if scope.type_name:
                if scope.type_name in self.failing:
                    raise TransientFetchError(f"edges {scope.type_name} timed out", operation="edges")
                return [e for e in self.edges if e.source_type == scope.type_name]
            if "edges-by-id" in self.failing:
                raise TransientFetchError("edges by id timed out", operation="edges")
            wanted = set(scope.ids)
            return [e for e in self.edges if e.source_id in wanted or e.target_id in wanted]
        finally:
            self._leave()

    def query(self, soql: str) -> list[dict[str, Any]]:
        sobject = soql.split(" FROM ")[1].split()[0]
        self._enter("query", sobject)
        try:
            if sobject in self.failing:
                raise TransientFetchError(f"query on {sobject} failed", operation="query")
            return list(self.rows.get(sobject, []))
        finally:
            self._leave()

    def open_component(self, component_id: str) -> None:
        self.opened.append(component_id)


@pytest.fixture
def quiet() -> Console:
    """Console that swallows output."""
    return Console(quiet=True)


@pytest.fixture
def store(tmp_path):
    s = GraphStore.open(f"sqlite:///{tmp_path / 'dependencies.db'}")
    yield s
    s.close()


@pytest.fixture
def a1() -> ComponentRecord:
    return ComponentRecord(id="a1", name="AccountService", type="A")


@pytest.fixture
def a2() -> ComponentRecord:
    return ComponentRecord(id="a2", name="AccountTrigger", type="A")


@pytest.fixture
def b1() -> ComponentRecord:
    return ComponentRecord(id="b1", name="Billing", type="B")
