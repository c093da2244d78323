"""Discovery and filtering of the component types worth harvesting."""

from __future__ import annotations

from rich.console import Console

from .errors import DiscoveryError, FetchError
from .records import TypeDescriptor
from .salesforce_fetcher import MetadataSource

# Account/user/org level system types: not metadata, or fail to list.
BLOCKED_TYPES = frozenset({"User", "Group", "Organization", "DataType", "EntityDefinition"})
NOISE_SUFFIXES = ("History", "Share", "Feed")


def is_harvestable(type_name: str) -> bool:
    """True unless the type is blocklisted or ends in a noise suffix."""
    if not type_name or type_name in BLOCKED_TYPES:
        return False
    return not type_name.endswith(NOISE_SUFFIXES)


class TypeCatalog:
    """Discovers the filtered set of type names a sync harvests."""

    def __init__(self, source: MetadataSource, console: Console | None = None):
        self.source = source
        self.console = console or Console()

    def discover(self) -> list[TypeDescriptor]:
        """
        Query the source for all types and drop the ones not worth harvesting.

        Raises:
            DiscoveryError: The describe call failed; the sync cannot continue.
        """
        try:
            types = self.source.describe_types()
        except FetchError as e:
            raise DiscoveryError(f"Failed to describe metadata types: {e}", operation="describe") from e

        valid = [t for t in types if is_harvestable(t.name)]
        self.console.print(f"      Found {len(valid)} valid metadata types to scan ({len(types)} reported).")
        return valid
