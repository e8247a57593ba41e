"""Dataclass models for OMF v1.0 messages.

Each record knows how to render itself as the JSON-ready dict the OMF
endpoint expects (``to_omf()``).  Keys are case sensitive on the wire.
Serialization to bytes happens only at the transport boundary; see
:func:`omf_device_client.encoder.encode_body`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional, Union

LINK_TYPE_ID = "__Link"
ROOT_INDEX = "_ROOT"


class MessageType(str, enum.Enum):
    """Value of the ``messagetype`` header."""

    TYPE = "Type"
    CONTAINER = "Container"
    DATA = "Data"


class Classification(str, enum.Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class PropertyDescriptor:
    """One property of a :class:`TypeDefinition`."""

    data_kind: str = "number"
    is_index: bool = False
    format: Optional[str] = None

    def to_omf(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.data_kind}
        if self.format:
            out["format"] = self.format
        if self.is_index:
            out["isindex"] = True
        return out


@dataclass(frozen=True)
class TypeDefinition:
    """A named schema; ``properties`` keeps insertion order on the wire."""

    id: str
    classification: Classification
    properties: dict[str, PropertyDescriptor] = field(default_factory=dict)

    @property
    def index_properties(self) -> list[str]:
        return [name for name, prop in self.properties.items() if prop.is_index]

    def to_omf(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "object",
            "classification": self.classification.value,
            "properties": {name: prop.to_omf() for name, prop in self.properties.items()},
        }


@dataclass(frozen=True)
class ContainerDeclaration:
    """Binds a stream id to a previously declared dynamic type."""

    id: str
    type_id: str

    def to_omf(self) -> dict[str, Any]:
        return {"id": self.id, "typeid": self.type_id}


@dataclass(frozen=True)
class AssetRecord:
    """An instance of a static type (becomes an AF element)."""

    type_id: str
    values: dict[str, Any] = field(default_factory=dict)

    def to_omf(self) -> dict[str, Any]:
        return {"typeid": self.type_id, "values": [dict(self.values)]}


@dataclass(frozen=True)
class LinkEndpoint:
    """Either a static-type instance (``type_id`` + ``index``) or a container."""

    type_id: Optional[str] = None
    index: Optional[str] = None
    container_id: Optional[str] = None

    def to_omf(self) -> dict[str, Any]:
        if self.container_id is not None:
            return {"containerid": self.container_id}
        return {"typeid": self.type_id, "index": self.index}


@dataclass(frozen=True)
class LinkRecord:
    """A directed edge between two :class:`LinkEndpoint` objects."""

    source: LinkEndpoint
    target: LinkEndpoint

    def to_omf(self) -> dict[str, Any]:
        return {"Source": self.source.to_omf(), "Target": self.target.to_omf()}


@dataclass(frozen=True)
class LinkBatch:
    """All links of one message, grouped under the reserved ``__Link`` type."""

    links: tuple[LinkRecord, ...] = ()

    def to_omf(self) -> dict[str, Any]:
        return {
            "typeid": LINK_TYPE_ID,
            "values": [link.to_omf() for link in self.links],
        }


@dataclass(frozen=True)
class DataEvent:
    """Time-indexed rows destined for one container."""

    container_id: str
    values: tuple[dict[str, Any], ...] = ()

    def to_omf(self) -> dict[str, Any]:
        return {
            "containerid": self.container_id,
            "values": [dict(row) for row in self.values],
        }


OmfRecord = Union[TypeDefinition, ContainerDeclaration, AssetRecord, LinkBatch, DataEvent]


@dataclass(frozen=True)
class OmfMessage:
    """One request body: a tagged list of records sharing a ``messagetype``."""

    message_type: MessageType
    records: tuple[OmfRecord, ...] = ()

    def to_omf(self) -> list[dict[str, Any]]:
        return [record.to_omf() for record in self.records]
