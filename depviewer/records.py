"""
Record shapes exchanged between the remote source, the harvester and the store.

Remote payloads are loosely typed JSON. Everything crossing into the core is
coerced into one of the models below by the from_payload() constructors, which
raise MalformedResponseError instead of leaking KeyError/ValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedResponseError

# Display-name precedence, first non-empty wins.
INVENTORY_NAME_FIELDS = ("fullName", "fileName")
INVENTORY_ID_FIELDS = ("id", "fileName")
EDGE_SOURCE_NAME_FIELDS = ("MetadataComponentName",)
EDGE_TARGET_NAME_FIELDS = ("RefMetadataComponentName", "RefMetadataComponentComponentName")


def resolve_name(payload: dict[str, Any], fields: Iterable[str]) -> Optional[str]:
    """
    Resolve a display value from a remote payload.

    Args:
        payload: Raw remote record
        fields: Candidate keys in precedence order

    Returns:
        The first value that is a non-empty string, or None
    """
    for key in fields:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _require_mapping(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"Expected an object for {what}, got {type(payload).__name__}", operation=what
        )
    return payload


class TypeDescriptor(BaseModel):
    """A component type name reported by the remote source."""

    name: str

    @classmethod
    def from_payload(cls, payload: Any) -> TypeDescriptor:
        data = _require_mapping(payload, "type descriptor")
        try:
            return cls(name=data.get("xmlName") or data.get("name"))
        except ValidationError as e:
            raise MalformedResponseError(f"Bad type descriptor: {e}", operation="describe") from e


class ComponentRecord(BaseModel):
    """One component as seen by a harvest (inventory, edge endpoint or repair)."""

    id: str
    name: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any, type_name: Optional[str] = None) -> Optional[ComponentRecord]:
        """
        Build a record from an inventory listing entry.

        Returns None when the entry carries no usable id.
        """
        data = _require_mapping(payload, "component")
        component_id = resolve_name(data, INVENTORY_ID_FIELDS)
        if not component_id:
            return None
        try:
            return cls(
                id=component_id,
                name=resolve_name(data, INVENTORY_NAME_FIELDS),
                type=data.get("type") or type_name,
            )
        except ValidationError as e:
            raise MalformedResponseError(f"Bad component: {e}", operation="inventory") from e


class DependencyEdgeRecord(BaseModel):
    """A directed dependency with both endpoints as known at fetch time."""

    source_id: Optional[str] = None
    source_name: Optional[str] = None
    source_type: Optional[str] = None
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    target_type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> DependencyEdgeRecord:
        data = _require_mapping(payload, "dependency edge")
        try:
            return cls(
                source_id=data.get("MetadataComponentId") or None,
                source_name=resolve_name(data, EDGE_SOURCE_NAME_FIELDS),
                source_type=data.get("MetadataComponentType"),
                target_id=data.get("RefMetadataComponentId") or None,
                target_name=resolve_name(data, EDGE_TARGET_NAME_FIELDS),
                target_type=data.get("RefMetadataComponentType"),
            )
        except ValidationError as e:
            raise MalformedResponseError(f"Bad dependency edge: {e}", operation="edges") from e

    def endpoints(self) -> list[ComponentRecord]:
        """Component records for whichever endpoints carry an id."""
        found = []
        if self.source_id:
            found.append(ComponentRecord(id=self.source_id, name=self.source_name, type=self.source_type))
        if self.target_id:
            found.append(ComponentRecord(id=self.target_id, name=self.target_name, type=self.target_type))
        return found


class StatsRecord(BaseModel):
    """Auxiliary metrics for one component. Absent fields mean "no new value"."""

    id: str
    size: Optional[int] = None
    coverage: Optional[int] = Field(default=None, ge=0, le=100)


class Component(BaseModel):
    """A stored component row."""

    id: str
    name: Optional[str] = None
    type: Optional[str] = None
    size: Optional[int] = None
    coverage: Optional[int] = None


class EdgeView(BaseModel):
    """
    An edge joined with both endpoint rows; dangling endpoints read as None.

    Serialized with the keys the web client reads (metadataComponent* for the
    source, refMetadataComponent* for the target). Stored edges always carry
    both ids; a live answer may lack one.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    source_id: Optional[str] = Field(default=None, alias="metadataComponentId")
    source_name: Optional[str] = Field(default=None, alias="metadataComponentName")
    source_type: Optional[str] = Field(default=None, alias="metadataComponentType")
    source_size: Optional[int] = Field(default=None, alias="metadataComponentSize")
    source_coverage: Optional[int] = Field(default=None, alias="metadataComponentCoverage")
    target_id: Optional[str] = Field(default=None, alias="refMetadataComponentId")
    target_name: Optional[str] = Field(default=None, alias="refMetadataComponentName")
    target_type: Optional[str] = Field(default=None, alias="refMetadataComponentType")
    target_size: Optional[int] = Field(default=None, alias="refMetadataComponentSize")
    target_coverage: Optional[int] = Field(default=None, alias="refMetadataComponentCoverage")

    @staticmethod
    def edge_id(source_id: Optional[str], target_id: Optional[str]) -> str:
        return f"{source_id or ''}-{target_id or ''}"

    @property
    def is_self_loop(self) -> bool:
        return self.source_id is not None and self.source_id == self.target_id


@dataclass(frozen=True)
class EdgeScope:
    """Which dependency edges to ask the remote source for."""

    type_name: Optional[str] = None
    ids: tuple[str, ...] = ()

    @classmethod
    def of_type(cls, type_name: str) -> EdgeScope:
        return cls(type_name=type_name)

    @classmethod
    def by_ids(cls, ids: Iterable[str]) -> EdgeScope:
        return cls(ids=tuple(ids))

    @property
    def label(self) -> str:
        if self.type_name:
            return self.type_name
        if len(self.ids) == 1:
            return self.ids[0]
        return f"{len(self.ids)} ids"
