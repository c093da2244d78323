"""
depviewer: Salesforce metadata dependency graph.

Harvests component inventories and dependency edges from an org into a local
store, keeps the two consistent, and answers graph queries.
"""

from .errors import (
    DependencyLookupError,
    DepViewerError,
    DiscoveryError,
    FetchError,
    MalformedResponseError,
    StoreWriteError,
    TransientFetchError,
)
from .graph_store import GraphStore
from .harvester import HarvestBatch, Harvester
from .records import (
    Component,
    ComponentRecord,
    DependencyEdgeRecord,
    EdgeScope,
    EdgeView,
    StatsRecord,
    TypeDescriptor,
)
from .repair import ConsistencyRepairer, RepairReport
from .resolver import DependencyResolver, ResolveMode
from .salesforce_fetcher import MetadataSource, SalesforceFetcher
from .settings import Settings
from .stats_collector import StatsCollector
from .type_catalog import TypeCatalog

__version__ = "0.4.0"

__all__ = [
    "Component",
    "ComponentRecord",
    "ConsistencyRepairer",
    "DependencyEdgeRecord",
    "DependencyLookupError",
    "DependencyResolver",
    "DepViewerError",
    "DiscoveryError",
    "EdgeScope",
    "EdgeView",
    "FetchError",
    "GraphStore",
    "HarvestBatch",
    "Harvester",
    "MalformedResponseError",
    "MetadataSource",
    "RepairReport",
    "ResolveMode",
    "SalesforceFetcher",
    "Settings",
    "StatsCollector",
    "StatsRecord",
    "StoreWriteError",
    "TransientFetchError",
    "TypeCatalog",
]
