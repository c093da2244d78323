"""
Salesforce metadata source for the dependency harvest.

Uses the `sf` CLI to talk to an org, so any org the CLI is authenticated
against works without extra credentials handling here.

Usage:
    from depviewer.salesforce_fetcher import SalesforceFetcher

    fetcher = SalesforceFetcher("my-org-alias")
    types = fetcher.describe_types()
    components = fetcher.list_components("ApexClass")
    edges = fetcher.query_dependency_edges(EdgeScope.of_type("ApexClass"))
"""

from __future__ import annotations

import json
import subprocess
from abc import ABC, abstractmethod
from typing import Any

from .errors import MalformedResponseError, TransientFetchError
from .records import ComponentRecord, DependencyEdgeRecord, EdgeScope, TypeDescriptor

EDGE_FIELDS = (
    "MetadataComponentId, MetadataComponentName, MetadataComponentType, "
    "RefMetadataComponentId, RefMetadataComponentName, RefMetadataComponentType"
)


def soql_quote(value: str) -> str:
    """Quote a value for use inside a SOQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def build_edge_query(scope: EdgeScope) -> str:
    """
    Build the MetadataComponentDependency query for a scope.

    A type scope matches edges whose source is of that type. An id scope
    matches edges where any listed id is the source or the target.
    """
    base = f"SELECT {EDGE_FIELDS} FROM MetadataComponentDependency"
    if scope.type_name:
        return f"{base} WHERE MetadataComponentType = {soql_quote(scope.type_name)}"
    if scope.ids:
        id_list = ", ".join(soql_quote(i) for i in scope.ids)
        return f"{base} WHERE MetadataComponentId IN ({id_list}) OR RefMetadataComponentId IN ({id_list})"
    raise ValueError("EdgeScope needs a type name or at least one id")


class MetadataSource(ABC):
    """
    Remote metadata source the harvest runs against.

    Implementations raise FetchError subclasses; callers decide whether a
    failure degrades to an empty result or stops the run.
    """

    @abstractmethod
    def describe_types(self) -> list[TypeDescriptor]:
        """All component type names the source knows about."""

    @abstractmethod
    def list_components(self, type_name: str) -> list[ComponentRecord]:
        """Inventory of one component type."""

    @abstractmethod
    def query_dependency_edges(self, scope: EdgeScope) -> list[DependencyEdgeRecord]:
        """Dependency edges for a type or an explicit id list."""

    @abstractmethod
    def query(self, soql: str) -> list[dict[str, Any]]:
        """Raw rows for an aggregate/tooling query."""

    @abstractmethod
    def open_component(self, component_id: str) -> None:
        """Open a component in the source's own UI."""


class SalesforceFetcher(MetadataSource):
    """
    Fetches metadata from a Salesforce org using the sf CLI.

    Requires `sf` to be installed and authenticated against the target org.
    """

    def __init__(self, target_org: str, cli: str = "sf", timeout: float = 300.0):
        """
        Initialize fetcher.

        Args:
            target_org: Org username or alias
            cli: sf executable
            timeout: Seconds before a single CLI call is abandoned
        """
        self.target_org = target_org
        self.cli = cli
        self.timeout = timeout

    def _run_sf(self, args: list[str], operation: str) -> Any:
        """
        Run an sf command and return the `result` member of its JSON envelope.

        Raises:
            TransientFetchError: CLI missing, timed out, or reported failure
            MalformedResponseError: Output was not the expected JSON envelope
        """
        cmd = [self.cli, *args, "--target-org", self.target_org, "--json"]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise TransientFetchError(
                f"sf CLI '{self.cli}' not found. Install from https://developer.salesforce.com/tools/salesforcecli",
                operation=operation,
            )
        except subprocess.TimeoutExpired:
            raise TransientFetchError(
                f"{operation} timed out after {self.timeout:.0f}s", operation=operation
            )

        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            if result.returncode != 0:
                raise TransientFetchError(
                    f"{operation} failed: {result.stderr.strip() or 'no output'}", operation=operation
                )
            raise MalformedResponseError(f"Invalid JSON response for {operation}", operation=operation)

        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Unexpected response shape for {operation}", operation=operation)

        if payload.get("status") != 0:
            message = payload.get("message") or "Unknown error"
            raise TransientFetchError(f"Salesforce API error in {operation}: {message}", operation=operation)

        return payload.get("result")

    def describe_types(self) -> list[TypeDescriptor]:
        result = self._run_sf(["org", "list", "metadata-types"], "describe")
        objects = result.get("metadataObjects") if isinstance(result, dict) else None
        if not isinstance(objects, list):
            raise MalformedResponseError("describe returned no metadataObjects", operation="describe")
        return [TypeDescriptor.from_payload(o) for o in objects]

    def list_components(self, type_name: str) -> list[ComponentRecord]:
        result = self._run_sf(["org", "list", "metadata", "-m", type_name], f"inventory {type_name}")
        if result is None:
            return []
        # A type with exactly one member comes back as a bare object.
        items = result if isinstance(result, list) else [result]
        records = []
        for item in items:
            record = ComponentRecord.from_payload(item, type_name=type_name)
            if record is not None:
                records.append(record)
        return records

    def query(self, soql: str) -> list[dict[str, Any]]:
        result = self._run_sf(["data", "query", "--use-tooling-api", "--query", soql], "query")
        records = result.get("records") if isinstance(result, dict) else None
        if not isinstance(records, list):
            raise MalformedResponseError("query returned no records list", operation="query")
        return records

    def query_dependency_edges(self, scope: EdgeScope) -> list[DependencyEdgeRecord]:
        rows = self.query(build_edge_query(scope))
        return [DependencyEdgeRecord.from_payload(row) for row in rows]

    def open_component(self, component_id: str) -> None:
        self._run_sf(["org", "open", "--path", f"/{component_id}"], "open")
